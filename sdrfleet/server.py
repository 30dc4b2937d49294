"""SDR fleet controller: HTTP/WebSocket server.

Start with::

    python -m sdrfleet --boards boards.json
    # or
    uvicorn --factory sdrfleet.server:create_app --host 0.0.0.0 --port 3000
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles

from sdrfleet import __version__
from sdrfleet.api import StateBroadcaster, dashboard_ws_handler, router
from sdrfleet.config import FleetSettings, load_boards
from sdrfleet.manager import FleetManager

logger = logging.getLogger(__name__)


def create_app(
    manager: FleetManager | None = None,
    settings: FleetSettings | None = None,
    bring_up: bool = True,
) -> FastAPI:
    """Build the FastAPI app around a fleet manager.

    Without an explicit ``manager`` the board list is read from
    ``settings.boards_file`` when the app starts.
    """
    settings = settings or (manager.settings if manager else FleetSettings.from_env())
    broadcaster = StateBroadcaster()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        fleet = manager
        if fleet is None:
            fleet = FleetManager(load_boards(settings.boards_file), settings)
        fleet.on_update(broadcaster.publish)
        app.state.manager = fleet
        failures = await fleet.start(bring_up=bring_up)
        if failures:
            logger.warning("Boards not ready after startup: %s", ", ".join(failures))
        try:
            yield
        finally:
            await fleet.stop()

    app = FastAPI(title="SDR Fleet Controller", version=__version__, lifespan=lifespan)
    app.state.broadcaster = broadcaster
    if manager is not None:
        app.state.manager = manager

    @app.get("/health")
    async def health():
        fleet: FleetManager = app.state.manager
        states = fleet.store.snapshot()
        ready = sum(1 for s in states.values() if s["connected"] and s["initialized"])
        return {"status": "ok", "boards": len(states), "ready": ready}

    app.include_router(router)
    app.add_api_websocket_route("/ws", dashboard_ws_handler)

    # Dashboard build, served last so the API routes win
    static_dir = Path(settings.static_dir)
    if static_dir.is_dir():
        app.mount("/", StaticFiles(directory=static_dir, html=True), name="dashboard")
        logger.info("Serving dashboard from %s", static_dir)

    return app


def main(
    settings: FleetSettings | None = None,
    bring_up: bool = True,
) -> None:
    import uvicorn

    settings = settings or FleetSettings.from_env()
    logger.info("Starting SDR fleet controller on %s:%d", settings.host, settings.port)
    uvicorn.run(create_app(settings=settings, bring_up=bring_up),
                host=settings.host, port=settings.port)


if __name__ == "__main__":
    logging.basicConfig(level=os.environ.get("SDRFLEET_LOG_LEVEL", "INFO"))
    main()
