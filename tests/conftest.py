"""pytest configuration and simulated boards for SDR fleet tests."""

from __future__ import annotations

import asyncio

import pytest

from sdrfleet.config import BoardConfig, FleetSettings
from sdrfleet.manager import FleetManager
from sdrfleet.transport import CommandResult


# Configure asyncio mode for pytest-asyncio
def pytest_configure(config):
    config.addinivalue_line(
        "markers", "asyncio: mark test as async"
    )


# ── Simulated board ───────────────────────────────────────────────


class FakeBoard:
    """In-memory PlutoSDR: iio attributes, sysfs files and GPIO lines.

    ``fail`` holds command prefixes that exit 1. ``refuse_connects`` makes
    the next N handshakes fail.
    """

    def __init__(self) -> None:
        self.attrs: dict[str, str] = {
            "voltage0/gain_control_mode": "manual",
            "voltage0/hardwaregain": "10.000000 dB",
            "altvoltage1/frequency": "2400000000",
            "voltage0/sampling_frequency": "30720000",
        }
        self.sysfs: dict[str, str] = {
            "/sys/bus/iio/devices/iio:device2/scan_elements/out_voltage0_en": "0",
            "/sys/bus/iio/devices/iio:device2/scan_elements/out_voltage1_en": "0",
            "/sys/bus/iio/devices/iio:device2/buffer/length": "4096",
            "/sys/bus/iio/devices/iio:device2/buffer/enable": "0",
        }
        self.gpio: dict[int, int] = {}
        self.commands: list[str] = []
        self.writes: list[str] = []
        self.fail: set[str] = set()
        self.refuse_connects = 0
        self.connect_count = 0
        self.connect_delay = 0.0
        self.sessions: list[FakeSession] = []

    async def connect(self) -> FakeSession:
        self.connect_count += 1
        if self.connect_delay:
            await asyncio.sleep(self.connect_delay)
        if self.refuse_connects > 0:
            self.refuse_connects -= 1
            raise ConnectionRefusedError("Connection refused")
        session = FakeSession(self)
        self.sessions.append(session)
        return session

    def execute(self, command: str) -> CommandResult:
        self.commands.append(command)
        if any(command.startswith(prefix) for prefix in self.fail):
            return CommandResult(stderr="Device or resource busy\n", returncode=1)

        parts = command.split()
        if command.startswith("iio_attr -c ad9361-phy "):
            key = f"{parts[3]}/{parts[4]}"
            if key not in self.attrs:
                return CommandResult(stderr="attribute not found\n", returncode=1)
            if len(parts) > 5:
                self.writes.append(command)
                value = parts[5]
                if parts[4] == "hardwaregain":
                    value = f"{float(value):.6f} dB"
                self.attrs[key] = value
                return CommandResult()
            return CommandResult(stdout=self.attrs[key] + "\n")

        if parts[0] == "cat":
            if parts[1] not in self.sysfs:
                return CommandResult(stderr="No such file\n", returncode=1)
            return CommandResult(stdout=self.sysfs[parts[1]] + "\n")

        if parts[0] == "echo":
            left, path = command.split(" > ")
            self.writes.append(command)
            self.sysfs[path.strip()] = left[len("echo "):].strip()
            return CommandResult()

        if parts[0] == "gpioset":
            line, value = parts[2].split("=")
            self.writes.append(command)
            self.gpio[int(line)] = int(value)
            return CommandResult()

        return CommandResult(stderr=f"{parts[0]}: not found\n", returncode=127)

    def lines_on(self) -> list[int]:
        return sorted(line for line, value in self.gpio.items() if value == 1)


class FakeSession:
    def __init__(self, board: FakeBoard) -> None:
        self._board = board
        self._closed = asyncio.Event()

    async def run(self, command: str) -> CommandResult:
        return self._board.execute(command)

    def drop(self) -> None:
        """Simulate the board closing the connection."""
        self._closed.set()

    async def close(self) -> None:
        self._closed.set()

    async def wait_closed(self) -> None:
        await self._closed.wait()


class FakeHost:
    """Controller host shell recording uhubctl / relay commands."""

    def __init__(self) -> None:
        self.commands: list[str] = []
        self.fail: set[str] = set()

    async def run(self, command: str) -> CommandResult:
        self.commands.append(command)
        if any(command.startswith(prefix) for prefix in self.fail):
            return CommandResult(stderr="failed\n", returncode=1)
        return CommandResult()

    async def close(self) -> None:
        pass

    async def wait_closed(self) -> None:
        await asyncio.Event().wait()


class Fleet:
    """A manager wired to fake boards and a fake host."""

    def __init__(self, boards: list[BoardConfig], **overrides) -> None:
        self.fakes = {board.id: FakeBoard() for board in boards}
        self.host = FakeHost()
        self.delays: list[float] = []
        settings = FleetSettings(
            retry_delay=1.0,
            poll_interval=3600.0,
            power_settle=5.0,
            static_dir="/nonexistent",
        )
        for key, value in overrides.items():
            setattr(settings, key, value)
        self.manager = FleetManager(
            boards,
            settings,
            connector=self._connect,
            host=self.host,
            sleep=self._sleep,
        )

    async def _connect(self, board: BoardConfig) -> FakeSession:
        return await self.fakes[board.id].connect()

    async def _sleep(self, seconds: float) -> None:
        self.delays.append(seconds)

    def state(self, device_id: str):
        return self.manager.get_state(device_id)


DEFAULT_BOARDS = [
    BoardConfig(id="d1", host="192.168.2.1", usb_port=1, relays=(1, 0, 0)),
    BoardConfig(id="d2", host="192.168.2.2", usb_port=2, relays=(0, 1, 1)),
]


@pytest.fixture
def fleet():
    return Fleet(DEFAULT_BOARDS)


@pytest.fixture
def make_fleet():
    def _make(boards=None, **overrides) -> Fleet:
        return Fleet(boards or DEFAULT_BOARDS, **overrides)
    return _make
