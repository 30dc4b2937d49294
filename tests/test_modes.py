"""Tests for the generation-mode state machine."""

from __future__ import annotations

import pytest

from sdrfleet.commands import MODE_LINES
from sdrfleet.errors import CommandFailure, InvalidMode, NotInitialized
from sdrfleet.state import MODE_NAMES


async def _ready(fleet, device_id="d1"):
    await fleet.manager.init(device_id)
    fleet.fakes[device_id].commands.clear()
    fleet.fakes[device_id].writes.clear()
    return fleet.fakes[device_id]


class TestModeController:
    @pytest.mark.asyncio
    async def test_set_wn(self, fleet):
        fake = await _ready(fleet)

        state = await fleet.manager.set_mode("d1", "wn")

        assert state.modes == {"wn": True, "fsk": False, "bpsk": False, "qpsk": False, "ntsc": False}
        assert state.mode == "wn"
        assert state.tx_on is True
        assert fake.lines_on() == [71]

    @pytest.mark.asyncio
    async def test_all_lines_low_before_target_high(self, fleet):
        fake = await _ready(fleet)

        await fleet.manager.set_mode("d1", "bpsk")

        gpio = [w for w in fake.writes if w.startswith("gpioset")]
        off = [f"gpioset gpiochip0 {line}=0" for line in MODE_LINES.values()]
        assert gpio[:len(off)] == off
        assert gpio[len(off)] == "gpioset gpiochip0 70=1"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("mode", MODE_NAMES)
    async def test_exactly_one_line_on(self, fleet, mode):
        fake = await _ready(fleet)
        await fleet.manager.set_mode("d1", "qpsk")

        state = await fleet.manager.set_mode("d1", mode)

        assert sum(state.modes.values()) == 1
        assert fake.lines_on() == [MODE_LINES[mode]]

    @pytest.mark.asyncio
    async def test_ntsc_forces_sampling_rate(self, fleet):
        fake = await _ready(fleet)

        state = await fleet.manager.set_mode("d1", "ntsc")

        assert "iio_attr -c ad9361-phy voltage0 sampling_frequency 20000000" in fake.writes
        assert state.sampling_freq == 20_000_000
        assert state.mode == "ntsc"

    @pytest.mark.asyncio
    async def test_none_turns_everything_off(self, fleet):
        fake = await _ready(fleet)
        await fleet.manager.set_mode("d1", "fsk")

        state = await fleet.manager.set_mode("d1", "none")

        assert state.mode == "none"
        assert state.tx_on is False
        assert not any(state.modes.values())
        assert fake.lines_on() == []

    @pytest.mark.asyncio
    async def test_invalid_mode(self, fleet):
        fake = await _ready(fleet)
        with pytest.raises(InvalidMode):
            await fleet.manager.set_mode("d1", "am")
        assert fake.commands == []

    @pytest.mark.asyncio
    async def test_requires_init(self, fleet):
        with pytest.raises(NotInitialized):
            await fleet.manager.set_mode("d1", "wn")
        assert fleet.fakes["d1"].connect_count == 0

    @pytest.mark.asyncio
    async def test_failed_target_line_leaves_tx_off(self, fleet):
        fake = await _ready(fleet)
        fake.fail.add("gpioset gpiochip0 69=1")

        with pytest.raises(CommandFailure):
            await fleet.manager.set_mode("d1", "fsk")

        state = fleet.state("d1")
        assert state.mode == "none"
        assert state.tx_on is False
        assert fake.lines_on() == []
        assert "69=1" in state.error
        assert fleet.manager.power.relay_states == [False, False, False]

    @pytest.mark.asyncio
    async def test_failed_all_off_after_active_line_dropped(self, fleet):
        fake = await _ready(fleet)
        await fleet.manager.set_mode("d1", "wn")
        assert fleet.manager.power.relay_states == [True, False, False]
        fake.fail.add("gpioset gpiochip0 69=0")

        with pytest.raises(CommandFailure):
            await fleet.manager.set_mode("d1", "bpsk")

        # Line 71 went low before line 69 failed
        state = fleet.state("d1")
        assert fake.lines_on() == []
        assert state.mode == "none"
        assert state.tx_on is False
        assert fleet.manager.power.relay_states == [False, False, False]

    @pytest.mark.asyncio
    async def test_failed_all_off_before_active_line_keeps_mode(self, fleet):
        fake = await _ready(fleet)
        await fleet.manager.set_mode("d1", "qpsk")
        fake.fail.add("gpioset gpiochip0 69=0")

        with pytest.raises(CommandFailure):
            await fleet.manager.set_mode("d1", "none")

        # Line 64 comes after 69, so qpsk is still transmitting
        state = fleet.state("d1")
        assert fake.lines_on() == [64]
        assert state.mode == "qpsk"
        assert state.tx_on is True
        assert fleet.manager.power.relay_states == [True, False, False]
