"""Power orchestration: USB port cycling and the shared TX relays.

Both act on the controller host, not on the boards:
  - ``restart``: uhubctl off, settle, on, then bring the boards back up
  - ``update_relays``: each shared relay is energized while any board
    mapped to it is transmitting (active-low GPIO)
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from sdrfleet.commands import set_line, usb_power
from sdrfleet.config import RELAY_COUNT, BoardConfig, FleetSettings
from sdrfleet.errors import FleetError, PowerCycleFailure, UnknownDevice
from sdrfleet.sessions import SessionPool
from sdrfleet.state import MODE_NONE, DeviceState, StateStore
from sdrfleet.transport import Shell

logger = logging.getLogger(__name__)

BringUp = Callable[[str], Awaitable[None]]


@dataclass
class PowerCycleReport:
    ports: list = field(default_factory=list)
    failed_ports: list = field(default_factory=list)
    recovered: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return not self.failed and not self.failed_ports

    def to_dict(self) -> dict:
        return {
            "ports": list(self.ports),
            "failed_ports": list(self.failed_ports),
            "recovered": list(self.recovered),
            "failed": dict(self.failed),
        }


class PowerOrchestrator:
    """Cycles USB power ports on the host and keeps the TX relays in step."""

    def __init__(
        self,
        boards: dict[str, BoardConfig],
        store: StateStore,
        host: Shell,
        settings: FleetSettings,
        pool: SessionPool | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._boards = boards
        self._store = store
        self._host = host
        self._settings = settings
        self._pool = pool
        self._sleep = sleep
        self._bring_up: BringUp | None = None
        self.relay_states: list[bool] = [False] * RELAY_COUNT

    def set_bring_up(self, bring_up: BringUp) -> None:
        """Set the connect → init → refresh sequence run after a power cycle."""
        self._bring_up = bring_up

    # ── Power cycle ────────────────────────────────────────────────

    async def restart(self, device_id: str | None = None) -> PowerCycleReport:
        """Power-cycle one board's port, or every fleet port when ``device_id`` is None."""
        if device_id is None:
            targets = list(self._boards)
            ports = self._fleet_ports()
        else:
            board = self._boards.get(device_id)
            if board is None:
                raise UnknownDevice(f"SDR not found: {device_id}", device_id)
            if board.usb_port is None:
                raise PowerCycleFailure(
                    f"SDR {device_id} has no USB power port configured", device_id
                )
            targets = [device_id]
            ports = [board.usb_port]

        hub = self._settings.usb_hub
        logger.warning("Power cycling hub %s ports %s", hub, ports)

        report = PowerCycleReport(ports=list(ports))
        for port in ports:
            if not await self._port_power(port, on=False):
                report.failed_ports.append(port)

        # Unpowered boards lose their session and TX state
        for target in targets:
            await self._mark_powered_off(target)

        await self._sleep(self._settings.power_settle)

        for port in ports:
            if not await self._port_power(port, on=True) and port not in report.failed_ports:
                report.failed_ports.append(port)

        await self.update_relays()

        if report.failed_ports:
            message = f"USB power command failed for hub {hub} ports {report.failed_ports}"
            for target in targets:
                if self._boards[target].usb_port in report.failed_ports:
                    self._store.get(target).error = message
                    report.failed[target] = message
            if device_id is not None or len(report.failed_ports) == len(ports):
                raise PowerCycleFailure(message, device_id)
            logger.error("%s; bringing up the remaining boards", message)

        for target in targets:
            if self._bring_up is None:
                break
            if target in report.failed:
                continue
            try:
                await self._bring_up(target)
                report.recovered.append(target)
            except FleetError as exc:
                report.failed[target] = str(exc)
                logger.error("Re-init after power cycle failed for %s: %s", target, exc)
        return report

    def _fleet_ports(self) -> list:
        ports: list = list(self._settings.usb_ports)
        for board in self._boards.values():
            if board.usb_port is not None and board.usb_port not in ports:
                ports.append(board.usb_port)
        return ports

    async def _port_power(self, port, on: bool) -> bool:
        command = usb_power(self._settings.usb_hub, port, on)
        try:
            result = await self._host.run(command)
        except OSError as exc:
            logger.error("USB %s failed for port %s: %s", "on" if on else "off", port, exc)
            return False
        if result.returncode != 0:
            logger.error(
                "USB %s failed for port %s: %s",
                "on" if on else "off", port, (result.stderr or result.stdout).strip(),
            )
            return False
        return True

    async def _mark_powered_off(self, device_id: str) -> None:
        if self._pool is not None:
            await self._pool.discard(device_id)
        state = self._store.get(device_id)
        state.connected = False
        state.initialized = False
        state.set_mode(MODE_NONE)

    # ── Relays ─────────────────────────────────────────────────────

    async def on_mode_change(self, device_id: str, state: DeviceState) -> None:
        await self.update_relays()

    def desired_relays(self) -> list[bool]:
        """OR of each board's relay vector, gated by its ``tx_on``."""
        energized = [False] * RELAY_COUNT
        for device_id, board in self._boards.items():
            if board.relays is None or not self._store.get(device_id).tx_on:
                continue
            for index, active in enumerate(board.relays):
                if active:
                    energized[index] = True
        return energized

    async def update_relays(self) -> list[bool]:
        """Drive every shared relay line to match the fleet's TX state."""
        energized = self.desired_relays()
        chip = self._settings.relay_chip
        for index, (line, on) in enumerate(zip(self._settings.relay_lines, energized)):
            # Active-low: driving the line to 0 energizes the relay
            command = set_line(chip, line, 0 if on else 1)
            try:
                result = await self._host.run(command)
            except OSError as exc:
                logger.error("Relay %d write failed: %s", index, exc)
                continue
            if result.returncode != 0:
                logger.error(
                    "Relay %d write failed: %s",
                    index, (result.stderr or result.stdout).strip(),
                )
                continue
            self.relay_states[index] = on
        logger.debug("Relays: %s", self.relay_states)
        return energized
