"""Command-line interface for gse-relay."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

from . import constants
from .app import RelayClientApp, RelayHubApp
from .config import load_config

LOGGER = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gse-relay",
        description="Telemetry relay for rocket ground support equipment",
    )
    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=constants.DEFAULT_CONFIG_PATH,
        help=f"Path to configuration file (default: {constants.DEFAULT_CONFIG_PATH})",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    serve_parser = subparsers.add_parser(
        "serve", help="Run the relay hub (hardware <-> dashboard viewers)"
    )
    serve_parser.add_argument("--host", help="Override [hub] host")
    serve_parser.add_argument("--port", type=int, help="Override [hub] port")

    client_parser = subparsers.add_parser(
        "client", help="Run a relay client that logs incoming telemetry"
    )
    client_parser.add_argument("--hub-url", help="Override [client] hub_url")

    subparsers.add_parser(
        "show-config", help="Print the resolved configuration and exit"
    )

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
    except ValueError as exc:
        LOGGER.error("Invalid configuration: %s", exc)
        return 1

    if args.command == "serve":
        if args.host:
            config.hub.host = args.host
        if args.port is not None:
            config.hub.port = args.port
        RelayHubApp.start(config)
        return 0

    if args.command == "client":
        RelayClientApp.start(config, hub_url=args.hub_url)
        return 0

    if args.command == "show-config":
        print(f"Configuration loaded from {config.path!s}\n")
        for section in config.raw.sections():
            print(f"[{section}]")
            for key, value in config.raw[section].items():
                print(f"{key} = {value}")
            print()
        return 0

    LOGGER.error("Unknown command: %s", args.command)
    return 1


if __name__ == "__main__":
    sys.exit(main())
