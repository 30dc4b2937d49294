"""SDR fleet controller: sessions, state sync and mode control for PlutoSDR boards.

Quickstart::

    from sdrfleet.config import load_boards
    from sdrfleet.manager import FleetManager

    manager = FleetManager(load_boards("boards.json"))
    await manager.start()                 # connect + init every board
    await manager.set_mode("sdr1", "wn")  # white noise on, relays follow
"""

__version__ = "1.0.0"
