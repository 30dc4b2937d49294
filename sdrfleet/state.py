"""In-memory device state records.

One ``DeviceState`` per board, held by a ``StateStore`` that the fleet
manager owns and hands to each component. Nothing here talks to hardware.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone

from sdrfleet.errors import UnknownDevice

# Generation modes in display order. "none" means TX off.
MODE_NAMES = ("wn", "fsk", "bpsk", "qpsk", "ntsc")
MODE_NONE = "none"
ALL_MODES = (MODE_NONE,) + MODE_NAMES


def _all_off() -> dict[str, bool]:
    return {name: False for name in MODE_NAMES}


@dataclass
class DeviceState:
    connected: bool = False
    initialized: bool = False
    error: str | None = None
    last_updated: str | None = None

    gain: int = 0
    gain_mode: str | None = None  # "manual" | "auto"
    freq: int = 0
    sampling_freq: int = 0

    modes: dict[str, bool] = field(default_factory=_all_off)
    tx_on: bool = False

    @property
    def mode(self) -> str:
        """Name of the active generation mode, or ``"none"``."""
        for name in MODE_NAMES:
            if self.modes[name]:
                return name
        return MODE_NONE

    def set_mode(self, mode: str) -> None:
        """Replace the mode vector so that only ``mode`` is on."""
        modes = _all_off()
        if mode != MODE_NONE:
            modes[mode] = True
        self.modes = modes
        self.tx_on = mode != MODE_NONE

    def touch(self) -> None:
        self.last_updated = datetime.now(timezone.utc).isoformat()

    def to_dict(self) -> dict:
        return {
            "connected": self.connected,
            "initialized": self.initialized,
            "gain": self.gain,
            "gen_mode": self.gain_mode,
            "freq": self.freq,
            "sampling_freq": self.sampling_freq,
            "modes": dict(self.modes),
            "mode": self.mode,
            "tx_on": self.tx_on,
            "lastUpdated": self.last_updated,
            "error": self.error,
        }


class StateStore:
    """Per-device state records keyed by board id."""

    def __init__(self, device_ids) -> None:
        self._states: dict[str, DeviceState] = {
            device_id: DeviceState() for device_id in device_ids
        }

    def get(self, device_id: str) -> DeviceState:
        try:
            return self._states[device_id]
        except KeyError:
            raise UnknownDevice(f"SDR not found: {device_id}", device_id) from None

    def __contains__(self, device_id: object) -> bool:
        return device_id in self._states

    def ids(self) -> list[str]:
        return list(self._states)

    def items(self):
        return self._states.items()

    def snapshot(self) -> dict[str, dict]:
        return {device_id: state.to_dict() for device_id, state in self._states.items()}
