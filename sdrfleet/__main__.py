"""SDR fleet controller entry point.

Usage:
    python -m sdrfleet [--boards BOARDS_JSON] [--host HOST] [--port PORT]
"""

from __future__ import annotations

import argparse
import logging

from .config import FleetSettings
from .server import main as run_server


def main() -> None:
    parser = argparse.ArgumentParser(description="SDR Fleet Controller")
    parser.add_argument(
        "--boards", "-b",
        default=None,
        help="Path to boards.json (overrides SDRFLEET_BOARDS_FILE)",
    )
    parser.add_argument("--host", default=None, help="Listen address")
    parser.add_argument("--port", type=int, default=None, help="Listen port")
    parser.add_argument(
        "--no-bring-up",
        action="store_true",
        help="Do not connect and init the boards at startup",
    )
    parser.add_argument(
        "--log-file",
        default=None,
        help="Also write logs to this file",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    args = parser.parse_args()

    # Logging
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if args.log_file:
        handlers.append(logging.FileHandler(args.log_file))
    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
    )
    # asyncssh logs every channel open at INFO
    logging.getLogger("asyncssh").setLevel(logging.WARNING)

    settings = FleetSettings.from_env()
    if args.boards:
        settings.boards_file = args.boards
    if args.host:
        settings.host = args.host
    if args.port:
        settings.port = args.port

    run_server(settings, bring_up=not args.no_bring_up)


if __name__ == "__main__":
    main()
