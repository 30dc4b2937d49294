"""SSH session pool: at most one live session per board.

Concurrent ``acquire`` calls for a board that is mid-handshake all await
the same in-flight attempt, so a board never sees two handshakes at once.
The pool does not retry; that is the command executor's job.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from sdrfleet.config import BoardConfig, FleetSettings
from sdrfleet.errors import ConnectFailure, UnknownDevice
from sdrfleet.state import StateStore
from sdrfleet.transport import Shell, connect_ssh

logger = logging.getLogger(__name__)

Connector = Callable[[BoardConfig], Awaitable[Shell]]


def ssh_connector(settings: FleetSettings) -> Connector:
    """Build a connector that opens asyncssh sessions with the fleet credentials."""

    async def _connect(board: BoardConfig) -> Shell:
        return await connect_ssh(
            board.host,
            username=settings.ssh_username,
            password=settings.ssh_password,
            port=settings.ssh_port,
            connect_timeout=settings.connect_timeout,
            keepalive_interval=settings.keepalive_interval,
            keepalive_count_max=settings.keepalive_count_max,
        )

    return _connect


class SessionPool:
    """Owns the live session and the in-flight handshake for each board."""

    def __init__(
        self,
        boards: dict[str, BoardConfig],
        store: StateStore,
        connector: Connector,
    ) -> None:
        self._boards = boards
        self._store = store
        self._connector = connector
        self._sessions: dict[str, Shell] = {}
        self._pending: dict[str, asyncio.Task] = {}
        self._watchers: dict[str, asyncio.Task] = {}

    async def acquire(self, device_id: str) -> Shell:
        """Return the board's session, connecting if needed (single-flight)."""
        if device_id not in self._boards:
            raise UnknownDevice(f"SDR not found: {device_id}", device_id)

        session = self._sessions.get(device_id)
        if session is not None:
            return session

        pending = self._pending.get(device_id)
        if pending is None:
            pending = asyncio.create_task(self._establish(device_id))
            self._pending[device_id] = pending
        # Shielded so one waiter being cancelled doesn't abort the others
        return await asyncio.shield(pending)

    def is_connected(self, device_id: str) -> bool:
        return device_id in self._sessions

    async def discard(self, device_id: str) -> None:
        """Drop the cached session so the next command re-handshakes."""
        session = self._sessions.pop(device_id, None)
        watcher = self._watchers.pop(device_id, None)
        if watcher is not None:
            watcher.cancel()
        if session is None:
            return
        logger.debug("Discarding SSH session for %s", device_id)
        try:
            await session.close()
        except Exception as exc:
            logger.debug("Error closing SSH session for %s: %s", device_id, exc)

    async def close_all(self) -> None:
        for device_id in list(self._sessions):
            await self.discard(device_id)
        for task in list(self._pending.values()):
            task.cancel()
        self._pending.clear()

    # ── Internal ───────────────────────────────────────────────────

    async def _establish(self, device_id: str) -> Shell:
        board = self._boards[device_id]
        state = self._store.get(device_id)
        try:
            session = await self._connector(board)
        except ConnectFailure as exc:
            exc.device_id = device_id
            self._mark_failed(device_id, str(exc))
            raise
        except (OSError, asyncio.TimeoutError) as exc:
            message = f"SSH connect to {board.host} failed: {exc or type(exc).__name__}"
            self._mark_failed(device_id, message)
            raise ConnectFailure(message, device_id) from exc
        else:
            self._sessions[device_id] = session
            self._watchers[device_id] = asyncio.create_task(
                self._watch(device_id, session)
            )
            state.connected = True
            state.error = None
            logger.info("SSH connected to %s (%s)", device_id, board.host)
            return session
        finally:
            self._pending.pop(device_id, None)

    def _mark_failed(self, device_id: str, message: str) -> None:
        state = self._store.get(device_id)
        state.connected = False
        state.error = message
        logger.error("SSH error for %s: %s", device_id, message)

    async def _watch(self, device_id: str, session: Shell) -> None:
        """Clear the slot when the remote end closes the session."""
        await session.wait_closed()
        if self._sessions.get(device_id) is not session:
            return
        del self._sessions[device_id]
        self._watchers.pop(device_id, None)
        state = self._store.get(device_id)
        state.connected = False
        state.initialized = False
        logger.warning("SSH connection closed for %s", device_id)
