"""Command executor: the single retry/backoff choke point.

Every board operation is expressed as one or more ``run`` calls, so
flaky SSH links are handled here and nowhere else.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from sdrfleet.errors import CommandFailure, ConnectFailure
from sdrfleet.sessions import SessionPool

logger = logging.getLogger(__name__)


class CommandExecutor:
    """Runs commands on boards with bounded retries and linear backoff."""

    def __init__(
        self,
        pool: SessionPool,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")
        self._pool = pool
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self._sleep = sleep

    async def run(
        self,
        device_id: str,
        command: str,
        max_attempts: int | None = None,
    ) -> str:
        """Run ``command`` on the board and return its trimmed stdout.

        On a non-zero exit or transport failure the session is discarded
        and the attempt repeated after ``attempt * base_delay`` seconds.
        The last error is re-raised once ``max_attempts`` is exhausted.
        """
        attempts = max_attempts if max_attempts is not None else self.max_attempts
        if attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {attempts}")

        for attempt in range(1, attempts + 1):
            try:
                session = await self._pool.acquire(device_id)
                result = await session.run(command)
                if result.returncode == 0:
                    return result.stdout.strip()
                output = (result.stderr or result.stdout).strip()
                raise CommandFailure(
                    f"Command '{command}' failed with code {result.returncode}: {output}",
                    device_id,
                    command=command,
                    exit_code=result.returncode,
                    output=output,
                )
            except (CommandFailure, ConnectFailure) as exc:
                exc.device_id = device_id
                logger.warning(
                    "Command attempt %d/%d failed for %s: %s",
                    attempt, attempts, device_id, exc,
                )
                await self._pool.discard(device_id)
                if attempt == attempts:
                    raise
                await self._sleep(attempt * self.base_delay)
