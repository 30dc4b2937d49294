"""Shell command vocabulary for PlutoSDR boards and the controller host.

Attribute paths and GPIO line numbers are configuration constants of the
board firmware, kept here as lookup tables.
"""

from __future__ import annotations

# ── AD9361 attributes (iio_attr) ──────────────────────────────────

PHY_DEVICE = "ad9361-phy"

# name -> (channel, attribute)
PHY_ATTRS = {
    "gain_mode": ("voltage0", "gain_control_mode"),
    "gain": ("voltage0", "hardwaregain"),
    "freq": ("altvoltage1", "frequency"),
    "sampling_freq": ("voltage0", "sampling_frequency"),
}

GAIN_MODE_MANUAL = "manual"
# Auto-tracking modes the boards must never be left in
SELF_HEALING_GAIN_MODES = frozenset({"slow_attack"})

NTSC_SAMPLING_FREQ = 20_000_000

# ── Baseline sysfs attributes ─────────────────────────────────────

IIO_TX_DEVICE = "/sys/bus/iio/devices/iio:device2"

# Checked and written in this order; values compared as trimmed text
BASELINE_ATTRS = (
    (f"{IIO_TX_DEVICE}/scan_elements/out_voltage0_en", "1"),
    (f"{IIO_TX_DEVICE}/scan_elements/out_voltage1_en", "1"),
    (f"{IIO_TX_DEVICE}/buffer/length", "1024"),
    (f"{IIO_TX_DEVICE}/buffer/enable", "1"),
)

# ── Generation-mode GPIO lines (absolute, gpiochip0) ──────────────

MODE_CHIP = "gpiochip0"
MODE_LINES = {
    "wn": 71,
    "fsk": 69,
    "bpsk": 70,
    "qpsk": 64,
    "ntsc": 68,
}


def read_attr(name: str) -> str:
    channel, attr = PHY_ATTRS[name]
    return f"iio_attr -c {PHY_DEVICE} {channel} {attr}"


def write_attr(name: str, value: object) -> str:
    return f"{read_attr(name)} {value}"


def read_sysfs(path: str) -> str:
    return f"cat {path}"


def write_sysfs(path: str, value: str) -> str:
    return f"echo {value} > {path}"


def set_line(chip: str, line: int, value: int) -> str:
    return f"gpioset {chip} {line}={value}"


def usb_power(hub: str, port: int | str, on: bool) -> str:
    return f"sudo uhubctl -l {hub} -p {port} -a {'on' if on else 'off'}"
