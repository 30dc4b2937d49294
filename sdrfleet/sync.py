"""State synchronization: fold board attributes into the state records.

``Synchronizer.refresh`` runs after every write (so the record shows what
the board actually accepted) and ``StatePoller`` runs it for the whole
fleet on a fixed interval.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Awaitable, Callable

from sdrfleet.commands import (
    GAIN_MODE_MANUAL,
    SELF_HEALING_GAIN_MODES,
    read_attr,
    write_attr,
)
from sdrfleet.errors import FleetError
from sdrfleet.executor import CommandExecutor
from sdrfleet.state import StateStore

logger = logging.getLogger(__name__)

# iio_attr prints either the bare value or "... value '<value>'"
_VALUE_RE = re.compile(r"value '([^']*)'")
_NUMBER_RE = re.compile(r"-?\d+(?:\.\d+)?")


def attr_text(output: str) -> str:
    match = _VALUE_RE.search(output)
    return (match.group(1) if match else output).strip()


def parse_int(output: str, attr: str) -> int:
    """Parse an integer attribute, tolerating units ("-10.000000 dB")."""
    match = _NUMBER_RE.search(attr_text(output))
    if match is None:
        raise ValueError(f"Unparseable {attr} value: {output!r}")
    return int(round(float(match.group())))


class Synchronizer:
    """Reads gain mode, gain, frequency and sampling rate from a board."""

    def __init__(self, executor: CommandExecutor, store: StateStore) -> None:
        self._executor = executor
        self._store = store

    async def refresh(self, device_id: str) -> bool:
        """Re-read the board's attributes into its state record.

        Returns False (and records ``error``) when a read fails; the
        previously known values are kept as they were.
        """
        state = self._store.get(device_id)
        run = self._executor.run
        try:
            gain_mode = attr_text(await run(device_id, read_attr("gain_mode")))
            if gain_mode in SELF_HEALING_GAIN_MODES:
                logger.info(
                    "%s reported gain mode %s, forcing %s",
                    device_id, gain_mode, GAIN_MODE_MANUAL,
                )
                await run(device_id, write_attr("gain_mode", GAIN_MODE_MANUAL))
                gain_mode = GAIN_MODE_MANUAL
            gain = parse_int(await run(device_id, read_attr("gain")), "gain")
            freq = parse_int(await run(device_id, read_attr("freq")), "freq")
            sampling_freq = parse_int(
                await run(device_id, read_attr("sampling_freq")), "sampling_freq"
            )
        except (FleetError, ValueError) as exc:
            state.error = str(exc)
            logger.error("Poll failed for %s: %s", device_id, exc)
            return False

        state.gain_mode = "manual" if gain_mode == GAIN_MODE_MANUAL else "auto"
        state.gain = gain
        state.freq = freq
        state.sampling_freq = sampling_freq
        state.error = None
        state.touch()
        logger.debug("Polled state for %s: %s", device_id, state.to_dict())
        return True

    async def refresh_all(self) -> dict[str, bool]:
        """Refresh every connected, initialized board concurrently."""
        targets = [
            device_id
            for device_id, state in self._store.items()
            if state.connected and state.initialized
        ]
        results = await asyncio.gather(*(self.refresh(d) for d in targets))
        return dict(zip(targets, results))


class StatePoller:
    """Runs ``refresh_all`` on a fixed wall-clock interval."""

    def __init__(
        self,
        synchronizer: Synchronizer,
        interval: float = 30.0,
        on_cycle: Callable[[dict[str, bool]], Awaitable[None]] | None = None,
    ) -> None:
        self._sync = synchronizer
        self.interval = interval
        self._on_cycle = on_cycle
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the background poll loop."""
        if self.running:
            logger.warning("State poller is already running")
            return
        self._task = asyncio.create_task(self._loop())
        logger.info("State poller started (interval=%.1fs)", self.interval)

    async def stop(self) -> None:
        """Stop the background poll loop."""
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("State poller stopped")

    async def run_cycle(self) -> dict[str, bool]:
        results = await self._sync.refresh_all()
        if results:
            failed = [d for d, ok in results.items() if not ok]
            logger.debug("Poll cycle: %d boards, %d failed", len(results), len(failed))
        if self._on_cycle is not None:
            await self._on_cycle(results)
        return results

    async def _loop(self) -> None:
        loop = asyncio.get_running_loop()
        next_tick = loop.time() + self.interval
        while True:
            await asyncio.sleep(max(0.0, next_tick - loop.time()))
            next_tick += self.interval
            try:
                await self.run_cycle()
            except Exception:
                logger.exception("Poll cycle failed")
