"""Command shells: SSH to the boards, and the controller host itself.

Everything above this module talks to a ``Shell``: run one text command,
get back exit code and output. Uses asyncssh for real SSH; a
MockSSHConnection is provided for tests.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Protocol

from sdrfleet.errors import CommandFailure, ConnectFailure

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    stdout: str = ""
    stderr: str = ""
    returncode: int = 0


class Shell(Protocol):
    """Protocol for command shells: real asyncssh, the local host, or a mock."""

    async def run(self, command: str) -> CommandResult:
        ...

    async def close(self) -> None:
        ...

    async def wait_closed(self) -> None:
        ...


# ── SSH ───────────────────────────────────────────────────────────


class AsyncSSHConnection:
    """Real SSH connection using asyncssh."""

    def __init__(self, conn) -> None:
        self._conn = conn

    async def run(self, command: str) -> CommandResult:
        import asyncssh

        try:
            result = await self._conn.run(command, check=False)
        except (asyncssh.Error, OSError) as exc:
            raise CommandFailure(
                f"Transport failure running '{command}': {exc}", command=command
            ) from exc
        # exit_status is None when the remote side was killed by a signal
        returncode = result.exit_status if result.exit_status is not None else -1
        return CommandResult(
            stdout=result.stdout or "",
            stderr=result.stderr or "",
            returncode=returncode,
        )

    async def close(self) -> None:
        self._conn.close()
        await self._conn.wait_closed()

    async def wait_closed(self) -> None:
        await self._conn.wait_closed()


async def connect_ssh(
    host: str,
    username: str = "root",
    password: str | None = None,
    port: int = 22,
    connect_timeout: float = 10.0,
    keepalive_interval: float = 10.0,
    keepalive_count_max: int = 3,
) -> AsyncSSHConnection:
    """Open an asyncssh connection to a board, bounded by ``connect_timeout``."""
    import asyncssh

    kwargs: dict = {
        "host": host,
        "port": port,
        "username": username,
        "known_hosts": None,  # boards are reflashed often, host keys change
        "connect_timeout": connect_timeout,
        "keepalive_interval": keepalive_interval,
        "keepalive_count_max": keepalive_count_max,
    }
    if password:
        kwargs["password"] = password

    try:
        conn = await asyncssh.connect(**kwargs)
    except (asyncssh.Error, OSError, asyncio.TimeoutError) as exc:
        raise ConnectFailure(f"SSH connect to {host}:{port} failed: {exc}") from exc
    return AsyncSSHConnection(conn)


# ── Controller host ───────────────────────────────────────────────


class LocalShell:
    """Runs commands on the controller host (uhubctl, relay GPIO)."""

    async def run(self, command: str) -> CommandResult:
        proc = await asyncio.create_subprocess_shell(
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout_bytes, stderr_bytes = await proc.communicate()
        return CommandResult(
            stdout=stdout_bytes.decode("utf-8", errors="replace"),
            stderr=stderr_bytes.decode("utf-8", errors="replace"),
            returncode=proc.returncode if proc.returncode is not None else -1,
        )

    async def close(self) -> None:
        pass

    async def wait_closed(self) -> None:
        # The host shell never closes on its own
        await asyncio.Event().wait()


# ── Mock ──────────────────────────────────────────────────────────


class MockSSHConnection:
    """Mock shell for testing; returns pre-configured responses.

    Every command run is appended to ``commands``. ``drop()`` simulates
    the remote end closing the session.
    """

    def __init__(self, responses: dict[str, CommandResult] | None = None) -> None:
        self._responses = responses or {}
        self._default = CommandResult(stdout="", returncode=1)
        self._closed = asyncio.Event()
        self.commands: list[str] = []

    async def run(self, command: str) -> CommandResult:
        self.commands.append(command)
        # Check exact match first, then prefix match
        if command in self._responses:
            return self._responses[command]
        for key, val in self._responses.items():
            if command.startswith(key):
                return val
        return self._default

    def drop(self) -> None:
        self._closed.set()

    async def close(self) -> None:
        self._closed.set()

    async def wait_closed(self) -> None:
        await self._closed.wait()
