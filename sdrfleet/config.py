"""Configuration for the SDR fleet controller.

Two sources:
  - ``FleetSettings``: process settings from ``SDRFLEET_*`` environment
    variables (credentials, timeouts, USB hub, relay lines, server).
  - ``boards.json``: the static board list, loaded once at startup.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

_ENV_PREFIX = "SDRFLEET_"

RELAY_COUNT = 3


def _env(name: str, default: str) -> str:
    return os.environ.get(_ENV_PREFIX + name, default)


def _env_list(name: str, default: str) -> list[int]:
    raw = _env(name, default)
    return [int(part) for part in raw.split(",") if part.strip()]


@dataclass(frozen=True)
class BoardConfig:
    """Static description of one SDR board."""

    id: str
    host: str
    name: str = ""
    usb_port: int | str | None = None
    relays: tuple[int, ...] | None = None  # one 0/1 entry per shared relay

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "ip": self.host,
            "name": self.name,
            "usb_port": self.usb_port,
            "relays": list(self.relays) if self.relays is not None else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> BoardConfig:
        board_id = data.get("id")
        if not board_id:
            raise ValueError(f"Board entry without id: {data!r}")
        host = data.get("host") or data.get("ip")
        if not host:
            raise ValueError(f"Board {board_id} has no host/ip")

        relays = data.get("relays")
        if relays is not None:
            if len(relays) != RELAY_COUNT or any(r not in (0, 1) for r in relays):
                raise ValueError(
                    f"Board {board_id}: relays must be {RELAY_COUNT} values of 0 or 1"
                )
            relays = tuple(int(r) for r in relays)

        return cls(
            id=str(board_id),
            host=str(host),
            name=data.get("name", "") or "",
            usb_port=data.get("usb_port"),
            relays=relays,
        )


def load_boards(path: str | Path) -> list[BoardConfig]:
    """Load and validate the board list from a JSON array."""
    path = Path(path)
    with open(path) as f:
        data = json.load(f)
    if not isinstance(data, list):
        raise ValueError(f"{path}: expected a JSON array of boards")

    boards: list[BoardConfig] = []
    seen: set[str] = set()
    for entry in data:
        board = BoardConfig.from_dict(entry)
        if board.id in seen:
            raise ValueError(f"{path}: duplicate board id {board.id}")
        seen.add(board.id)
        boards.append(board)

    logger.info("Loaded %d SDR boards from %s", len(boards), path)
    return boards


@dataclass
class FleetSettings:
    """Process-wide settings. Defaults match a PlutoSDR rack on a Pi host."""

    # SSH
    ssh_username: str = "root"
    ssh_password: str = "analog"
    ssh_port: int = 22
    connect_timeout: float = 10.0
    keepalive_interval: float = 10.0
    keepalive_count_max: int = 3

    # Command execution
    command_attempts: int = 3
    retry_delay: float = 1.0

    # Polling
    poll_interval: float = 30.0

    # Power
    usb_hub: str = "1-1"
    usb_ports: list[int] = field(default_factory=lambda: [1, 2, 3, 4])
    power_settle: float = 5.0
    relay_chip: str = "gpiochip0"
    relay_lines: list[int] = field(default_factory=lambda: [17, 27, 22])

    # Server
    boards_file: str = "boards.json"
    static_dir: str = "build"
    host: str = "0.0.0.0"
    port: int = 3000

    def __post_init__(self) -> None:
        if self.command_attempts < 1:
            raise ValueError(
                f"command_attempts must be at least 1, got {self.command_attempts}"
            )

    @classmethod
    def from_env(cls) -> FleetSettings:
        return cls(
            ssh_username=_env("SSH_USERNAME", "root"),
            ssh_password=_env("SSH_PASSWORD", "analog"),
            ssh_port=int(_env("SSH_PORT", "22")),
            connect_timeout=float(_env("CONNECT_TIMEOUT", "10")),
            keepalive_interval=float(_env("KEEPALIVE_INTERVAL", "10")),
            keepalive_count_max=int(_env("KEEPALIVE_COUNT_MAX", "3")),
            command_attempts=int(_env("COMMAND_ATTEMPTS", "3")),
            retry_delay=float(_env("RETRY_DELAY", "1")),
            poll_interval=float(_env("POLL_INTERVAL", "30")),
            usb_hub=_env("USB_HUB", "1-1"),
            usb_ports=_env_list("USB_PORTS", "1,2,3,4"),
            power_settle=float(_env("POWER_SETTLE", "5")),
            relay_chip=_env("RELAY_CHIP", "gpiochip0"),
            relay_lines=_env_list("RELAY_LINES", "17,27,22"),
            boards_file=_env("BOARDS_FILE", "boards.json"),
            static_dir=_env("STATIC_DIR", "build"),
            host=_env("HOST", "0.0.0.0"),
            port=int(_env("PORT", "3000")),
        )
