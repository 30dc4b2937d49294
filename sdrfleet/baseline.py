"""Baseline initialization for freshly connected boards.

Every attribute is read before it is written and only written when it
differs: the TX buffer rejects writes with "device busy" once enabled.
"""

from __future__ import annotations

import logging

from sdrfleet.commands import (
    BASELINE_ATTRS,
    GAIN_MODE_MANUAL,
    read_attr,
    read_sysfs,
    write_attr,
    write_sysfs,
)
from sdrfleet.errors import CommandFailure, FleetError
from sdrfleet.executor import CommandExecutor
from sdrfleet.modes import ModeController
from sdrfleet.state import StateStore
from sdrfleet.sync import Synchronizer, attr_text, parse_int

logger = logging.getLogger(__name__)

BASELINE_GAIN = 0


class Initializer:
    """Brings a board to the known baseline: buffers on, manual gain 0, TX off."""

    def __init__(
        self,
        executor: CommandExecutor,
        store: StateStore,
        synchronizer: Synchronizer,
        modes: ModeController,
    ) -> None:
        self._executor = executor
        self._store = store
        self._sync = synchronizer
        self._modes = modes

    async def init(self, device_id: str) -> None:
        """Run the baseline sequence; all-or-nothing for ``initialized``."""
        state = self._store.get(device_id)
        try:
            for path, desired in BASELINE_ATTRS:
                await self._ensure(device_id, read_sysfs(path),
                                   write_sysfs(path, desired), desired)

            await self._ensure(
                device_id,
                read_attr("gain_mode"),
                write_attr("gain_mode", GAIN_MODE_MANUAL),
                GAIN_MODE_MANUAL,
            )
            current_gain = await self._executor.run(device_id, read_attr("gain"))
            if parse_int(current_gain, "gain") != BASELINE_GAIN:
                await self._executor.run(device_id, write_attr("gain", BASELINE_GAIN))

            await self._modes.force_off(device_id)
        except FleetError as exc:
            self._mark_failed(device_id, exc)
            raise
        except ValueError as exc:
            failure = CommandFailure(str(exc), device_id)
            self._mark_failed(device_id, failure)
            raise failure from exc

        state.initialized = True
        state.error = None
        logger.info("Initialized SDR %s", device_id)
        await self._sync.refresh(device_id)

    def _mark_failed(self, device_id: str, exc: FleetError) -> None:
        state = self._store.get(device_id)
        state.initialized = False
        state.error = str(exc)
        logger.error("Initialization failed for %s: %s", device_id, exc)

    async def _ensure(
        self, device_id: str, read_cmd: str, write_cmd: str, desired: str
    ) -> None:
        current = await self._executor.run(device_id, read_cmd)
        if attr_text(current) != desired:
            logger.debug("%s: %r != %r, writing", device_id, current, desired)
            await self._executor.run(device_id, write_cmd)
