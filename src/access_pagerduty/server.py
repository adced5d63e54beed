"""Command line entrypoint for the Teleport PagerDuty plugin."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from typing import Sequence

from access_pagerduty import __version__
from access_pagerduty.app import App
from access_pagerduty.config import EXAMPLE_CONFIG, load_settings
from access_pagerduty.logging_utils import configure_logging

logger = logging.getLogger(__name__)

PROG = "teleport-pagerduty"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=PROG, description="Teleport access request plugin for PagerDuty"
    )
    commands = parser.add_subparsers(dest="command", required=True)

    start = commands.add_parser("start", help="Start the plugin")
    start.add_argument(
        "--config",
        "-c",
        default=None,
        help="Path to the YAML configuration file (default: $PAGERDUTY_CONFIG_PATH)",
    )
    start.add_argument("--debug", "-d", action="store_true", help="Enable debug logging")

    commands.add_parser("configure", help="Print an example configuration file")
    commands.add_parser("version", help="Print the plugin version")
    return parser


async def run_app(app: App) -> None:
    """Run ``app`` until it stops, terminating it on SIGINT or SIGTERM."""
    loop = asyncio.get_running_loop()

    def _handle_signal(sig: signal.Signals) -> None:
        logger.info("Received %s, shutting down", sig.name)
        app.terminate()

    installed: list[signal.Signals] = []
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, _handle_signal, signum)
            installed.append(signum)
        except NotImplementedError:  # pragma: no cover - Windows
            signal.signal(signum, lambda *_args, s=signum: loop.call_soon_threadsafe(_handle_signal, s))

    try:
        await app.run()
    finally:
        for signum in installed:
            loop.remove_signal_handler(signum)


def _start(config_path: str | None, debug: bool) -> int:
    try:
        settings = load_settings(config_path)
    except (RuntimeError, FileNotFoundError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1

    configure_logging(settings, debug=debug)
    try:
        asyncio.run(run_app(App(settings)))
    except Exception as exc:
        logger.error("Plugin stopped with error: %s", exc)
        logger.debug("Plugin failure details", exc_info=True)
        return 1
    logger.info("Plugin stopped")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    if args.command == "version":
        print(f"{PROG} v{__version__}")
        return 0
    if args.command == "configure":
        sys.stdout.write(EXAMPLE_CONFIG)
        return 0
    return _start(args.config, args.debug)


def run_entrypoint() -> None:
    """Run the command line interface and exit with its status."""
    raise SystemExit(main())


if __name__ == "__main__":  # pragma: no cover
    run_entrypoint()
