"""SDR fleet manager.

Composition root for the core: owns the state store and the session pool,
wires the executor, synchronizer, initializer, mode controller and power
orchestrator together, and exposes the operations the request layer uses.
Mutating operations on one board run one at a time (per-board lock);
different boards never wait on each other.
"""

from __future__ import annotations

import asyncio
import logging
import math
from typing import Any, Awaitable, Callable

from sdrfleet.baseline import Initializer
from sdrfleet.commands import write_attr
from sdrfleet.config import BoardConfig, FleetSettings
from sdrfleet.errors import (
    CommandFailure,
    ConnectFailure,
    FleetError,
    InvalidValue,
    NotInitialized,
    UnknownDevice,
)
from sdrfleet.executor import CommandExecutor
from sdrfleet.modes import ModeController
from sdrfleet.power import PowerCycleReport, PowerOrchestrator
from sdrfleet.sessions import Connector, SessionPool, ssh_connector
from sdrfleet.state import DeviceState, StateStore
from sdrfleet.sync import StatePoller, Synchronizer
from sdrfleet.transport import LocalShell, Shell

logger = logging.getLogger(__name__)

UpdateListener = Callable[[dict], Awaitable[None]]


class FleetManager:
    """Central manager for all SDR board operations."""

    def __init__(
        self,
        boards: list[BoardConfig],
        settings: FleetSettings | None = None,
        connector: Connector | None = None,
        host: Shell | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.settings = settings or FleetSettings()
        self.boards: dict[str, BoardConfig] = {board.id: board for board in boards}
        self.store = StateStore(self.boards)

        self.pool = SessionPool(
            self.boards, self.store, connector or ssh_connector(self.settings)
        )
        self.executor = CommandExecutor(
            self.pool,
            max_attempts=self.settings.command_attempts,
            base_delay=self.settings.retry_delay,
            sleep=sleep,
        )
        self.synchronizer = Synchronizer(self.executor, self.store)
        self.modes = ModeController(self.executor, self.store, self.synchronizer)
        self.initializer = Initializer(
            self.executor, self.store, self.synchronizer, self.modes
        )
        self.power = PowerOrchestrator(
            self.boards,
            self.store,
            host or LocalShell(),
            self.settings,
            pool=self.pool,
            sleep=sleep,
        )
        self.poller = StatePoller(
            self.synchronizer,
            interval=self.settings.poll_interval,
            on_cycle=self._on_poll_cycle,
        )

        self.modes.on_transition(self.power.on_mode_change)
        self.power.set_bring_up(self.reconnect)

        self._locks: dict[str, asyncio.Lock] = {
            device_id: asyncio.Lock() for device_id in self.boards
        }
        self._listeners: list[UpdateListener] = []

    # ── Lifecycle ──────────────────────────────────────────────────

    async def start(self, bring_up: bool = True) -> dict[str, str]:
        """Bring every board up (sequentially), then start polling."""
        failures: dict[str, str] = {}
        if bring_up:
            failures = await self.bring_up_all()
        await self.poller.start()
        logger.info("FleetManager started with %d boards", len(self.boards))
        return failures

    async def stop(self) -> None:
        await self.poller.stop()
        await self.pool.close_all()
        logger.info("FleetManager stopped")

    async def bring_up_all(self) -> dict[str, str]:
        """Connect and init each board in turn; returns ``{id: error}`` for failures."""
        failures: dict[str, str] = {}
        for device_id in self.boards:
            try:
                await self.init(device_id)
            except FleetError as exc:
                failures[device_id] = str(exc)
                logger.error("Initial setup failed for %s: %s", device_id, exc)
        return failures

    def on_update(self, listener: UpdateListener) -> None:
        """Register a coroutine receiving ``sdrUpdate`` / ``initialStates`` events."""
        self._listeners.append(listener)

    # ── Operations ─────────────────────────────────────────────────

    async def init(self, device_id: str) -> DeviceState:
        state = self.store.get(device_id)
        async with self._locks[device_id]:
            await self.initializer.init(device_id)
        await self._publish_update(device_id)
        return state

    async def reconnect(self, device_id: str) -> DeviceState:
        """Drop the board's session and re-run the baseline init."""
        state = self.store.get(device_id)
        async with self._locks[device_id]:
            await self.pool.discard(device_id)
            await self.initializer.init(device_id)
        await self._publish_update(device_id)
        return state

    async def set_gain(self, device_id: str, value: Any) -> DeviceState:
        return await self._write(device_id, "gain", _number(value, device_id))

    async def set_freq(self, device_id: str, value: Any) -> DeviceState:
        return await self._write(device_id, "freq", _hertz(value, device_id))

    async def set_sampling_freq(self, device_id: str, value: Any) -> DeviceState:
        return await self._write(device_id, "sampling_freq", _hertz(value, device_id))

    async def set_mode(self, device_id: str, mode: Any) -> DeviceState:
        state = self.store.get(device_id)
        async with self._locks[device_id]:
            try:
                await self.modes.set_mode(device_id, mode)
            except (CommandFailure, ConnectFailure) as exc:
                state.error = str(exc)
                logger.error("Set mode %s failed for %s: %s", mode, device_id, exc)
                raise
        await self._publish_update(device_id)
        return state

    async def restart_power(self, device_id: str | None = None) -> PowerCycleReport:
        """Power-cycle one board or the whole fleet and bring it back up."""
        if device_id is not None:
            self.store.get(device_id)
        try:
            report = await self.power.restart(device_id)
        finally:
            if device_id is None:
                await self._publish({"type": "initialStates", "states": self.store.snapshot()})
            else:
                await self._publish_update(device_id)
        if not report.success:
            logger.warning(
                "Power cycle finished with failures: ports %s, boards %s",
                report.failed_ports, report.failed,
            )
        return report

    # ── Queries ────────────────────────────────────────────────────

    def get_state(self, device_id: str) -> DeviceState:
        return self.store.get(device_id)

    def get_board(self, device_id: str) -> dict:
        board = self.boards.get(device_id)
        if board is None:
            raise UnknownDevice(f"SDR not found: {device_id}", device_id)
        return {**board.to_dict(), "state": self.store.get(device_id).to_dict()}

    def list_boards(self) -> list[dict]:
        return [self.get_board(device_id) for device_id in self.boards]

    # ── Internal ───────────────────────────────────────────────────

    async def _write(self, device_id: str, attr: str, value: int | float) -> DeviceState:
        state = self.store.get(device_id)
        async with self._locks[device_id]:
            if not state.initialized:
                raise NotInitialized(f"SDR {device_id} not initialized", device_id)
            try:
                await self.executor.run(device_id, write_attr(attr, value))
            except FleetError as exc:
                state.error = str(exc)
                logger.error("Set %s=%s failed for %s: %s", attr, value, device_id, exc)
                raise
            await self.synchronizer.refresh(device_id)
        await self._publish_update(device_id)
        return state

    async def _on_poll_cycle(self, results: dict[str, bool]) -> None:
        for device_id in results:
            await self._publish_update(device_id)

    async def _publish_update(self, device_id: str) -> None:
        await self._publish({
            "type": "sdrUpdate",
            "id": device_id,
            "state": self.store.get(device_id).to_dict(),
        })

    async def _publish(self, event: dict) -> None:
        for listener in self._listeners:
            try:
                await listener(event)
            except Exception:
                logger.exception("Update listener failed for %s", event.get("type"))


def _number(value: Any, device_id: str) -> int | float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidValue(f"Value must be a number, got {value!r}", device_id)
    if not math.isfinite(value):
        raise InvalidValue(f"Value must be finite, got {value!r}", device_id)
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def _hertz(value: Any, device_id: str) -> int:
    number = _number(value, device_id)
    if number < 0:
        raise InvalidValue(f"Frequency must not be negative, got {value!r}", device_id)
    return int(round(number))
