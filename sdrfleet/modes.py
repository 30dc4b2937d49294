"""Generation-mode state machine.

Exactly one of ``none, wn, fsk, bpsk, qpsk, ntsc`` is active per board.
A transition always drives every mode line low first, then raises the
target line, so two generators are never enabled together.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable

from sdrfleet.commands import (
    MODE_CHIP,
    MODE_LINES,
    NTSC_SAMPLING_FREQ,
    set_line,
    write_attr,
)
from sdrfleet.errors import InvalidMode, NotInitialized
from sdrfleet.executor import CommandExecutor
from sdrfleet.state import ALL_MODES, MODE_NONE, DeviceState, StateStore
from sdrfleet.sync import Synchronizer

logger = logging.getLogger(__name__)

TransitionListener = Callable[[str, DeviceState], Awaitable[None]]


class ModeController:
    """Drives the generation-mode GPIO lines and keeps the mode vector in step."""

    def __init__(
        self,
        executor: CommandExecutor,
        store: StateStore,
        synchronizer: Synchronizer,
    ) -> None:
        self._executor = executor
        self._store = store
        self._sync = synchronizer
        self._listeners: list[TransitionListener] = []

    def on_transition(self, listener: TransitionListener) -> None:
        """Register a coroutine called after every transition attempt, failed or not."""
        self._listeners.append(listener)

    async def set_mode(self, device_id: str, target: str) -> DeviceState:
        """Switch the board to ``target`` (or all off for ``"none"``)."""
        if target not in ALL_MODES:
            raise InvalidMode(
                f"Invalid mode {target!r}; expected one of {', '.join(ALL_MODES)}",
                device_id,
            )
        state = self._store.get(device_id)
        if not state.initialized:
            raise NotInitialized(f"SDR {device_id} not initialized", device_id)

        previous = state.mode

        # Listeners must see the lines as they are, even after a partial failure
        try:
            await self._drive_all_off(device_id, state)
            if target != MODE_NONE:
                await self._executor.run(
                    device_id, set_line(MODE_CHIP, MODE_LINES[target], 1)
                )
                state.set_mode(target)
                if target == "ntsc":
                    await self._executor.run(
                        device_id, write_attr("sampling_freq", NTSC_SAMPLING_FREQ)
                    )
                    state.sampling_freq = NTSC_SAMPLING_FREQ
        finally:
            await self._notify(device_id, state)

        logger.info("SDR %s mode %s -> %s", device_id, previous, target)
        await self._sync.refresh(device_id)
        return state

    async def force_off(self, device_id: str) -> None:
        """Drive every mode line low regardless of init state (TX disabled)."""
        state = self._store.get(device_id)
        try:
            await self._drive_all_off(device_id, state)
        finally:
            await self._notify(device_id, state)

    async def _drive_all_off(self, device_id: str, state: DeviceState) -> None:
        """Drive every line low; the record drops a mode once its line is low."""
        for name, line in MODE_LINES.items():
            await self._executor.run(device_id, set_line(MODE_CHIP, line, 0))
            if state.mode == name:
                state.set_mode(MODE_NONE)
        state.set_mode(MODE_NONE)

    async def _notify(self, device_id: str, state: DeviceState) -> None:
        for listener in self._listeners:
            await listener(device_id, state)
