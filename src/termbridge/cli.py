"""Command-line interface for termbridge.

Provides the main entry point for running the terminal bridge server and
inspecting the effective configuration.
"""

from __future__ import annotations

import argparse
import logging
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="termbridge",
        description="WebSocket bridge between browser terminals and local shells",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to YAML configuration file (default: config/termbridge.yaml)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    serve_parser = subparsers.add_parser("serve", help="Start the terminal bridge server")
    serve_parser.add_argument("--host", type=str, default=None, help="Override server.host")
    serve_parser.add_argument("--port", type=int, default=None, help="Override server.port")
    serve_parser.add_argument("--shell", type=str, default=None, help="Override bridge.shell_command")
    serve_parser.add_argument(
        "--max-sessions", type=int, default=None,
        help="Override bridge.max_sessions (0 = unlimited)",
    )

    subparsers.add_parser("config", help="Print the effective configuration as YAML")

    return parser.parse_args(argv)


def _apply_overrides(settings, args: argparse.Namespace):
    """Return settings with command-line overrides applied."""
    server_updates = {}
    bridge_updates = {}
    if args.host is not None:
        server_updates["host"] = args.host
    if args.port is not None:
        server_updates["port"] = args.port
    if args.shell is not None:
        bridge_updates["shell_command"] = args.shell
    if args.max_sessions is not None:
        bridge_updates["max_sessions"] = args.max_sessions
    return settings.model_copy(
        update={
            "server": settings.server.model_copy(update=server_updates),
            "bridge": settings.bridge.model_copy(update=bridge_updates),
        }
    )


def _dump_config(settings) -> str:
    data = settings.model_dump(mode="json")
    data["server"]["auth_token"] = "********" if settings.server.auth_token.get_secret_value() else ""
    return yaml.safe_dump(data, sort_keys=False)


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the termbridge CLI."""
    args = parse_args(argv)

    if args.command is None:
        parse_args(["--help"])
        return

    from termbridge.config.settings import load_settings
    from termbridge.utils.logging import setup_logging

    settings = load_settings(args.config)
    setup_logging(settings.logging, level="DEBUG" if args.verbose else None)

    if args.command == "serve":
        from termbridge.endpoint.server import main as serve

        settings = _apply_overrides(settings, args)
        logger.info(
            "Starting termbridge on %s:%d", settings.server.host, settings.server.port,
        )
        serve(settings)

    elif args.command == "config":
        print(_dump_config(settings), end="")


if __name__ == "__main__":
    main()
