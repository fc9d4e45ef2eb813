"""Command-line entry point: handle the current GitHub Actions event."""

import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any

import requests

from . import __version__
from .ci.handler import handle_event
from .ci.lifespan import bridge_lifespan
from .config_loader import ensure_config
from .errors import BridgeError
from .logger import setup_logging
from .mbt.launcher import ExitCode

logger = logging.getLogger(__name__)

SUCCESSFUL_EXIT_CODES = (ExitCode.PASSED, ExitCode.UNSTABLE)


def load_event_payload(event_path: str | None) -> dict[str, Any]:
    """The webhook payload GitHub stores for the running workflow.

    Raises:
        ValueError: The file is not a JSON object.
    """
    if not event_path:
        logger.warning("No event payload path given; using an empty payload")
        return {}
    payload = json.loads(Path(event_path).read_text(encoding="utf-8"))
    if not isinstance(payload, dict):
        raise ValueError(f"Event payload in {event_path} is not a JSON object")
    return payload


async def main(
    event_name: str,
    payload: dict[str, Any],
    config_overrides: dict | None = None,
) -> ExitCode:
    """Handle one event inside the bridge lifespan."""
    async with bridge_lifespan(config_overrides=config_overrides) as ctx:
        return await handle_event(ctx, event_name, payload)


def run() -> None:
    """Entry point that handles errors gracefully and parses CLI arguments."""
    parser = argparse.ArgumentParser(
        description="MBT CI bridge - sync UFT tests and run MBT suites from GitHub Actions",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Inside a workflow step (event read from GITHUB_EVENT_PATH / GITHUB_EVENT_NAME)
  mbt-ci-bridge

  # Replay a saved event locally against another server
  mbt-ci-bridge --event-name push --event-path event.json --url https://octane.example.com

  # Synchronise whole tests and data tables instead of MBT units
  mbt-ci-bridge --testing-tool uft

  # Write a starter config file to .mbt_bridge/config.yml
  mbt-ci-bridge --init-config
        """,
    )

    parser.add_argument(
        "--event-path",
        default=os.getenv("GITHUB_EVENT_PATH"),
        help="Path of the event payload JSON (default: GITHUB_EVENT_PATH)",
    )
    parser.add_argument(
        "--event-name",
        default=os.getenv("GITHUB_EVENT_NAME"),
        help="Name of the triggering event (default: GITHUB_EVENT_NAME)",
    )
    parser.add_argument(
        "--url",
        help="Override server URL (takes precedence over OCTANE_URL env var and config files)",
    )
    parser.add_argument(
        "--testing-tool",
        choices=["mbt", "uft"],
        help="Override the testing tool (takes precedence over MBT_TESTING_TOOL)",
    )
    parser.add_argument(
        "--insecure",
        action="store_true",
        help="Skip SSL certificate verification (use only for development)",
    )
    parser.add_argument(
        "--log-file",
        help="Additional log file path",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--init-config",
        action="store_true",
        help="Write a starter config file if none exists, then exit",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"mbt-ci-bridge version {__version__}",
    )

    args = parser.parse_args()

    mode = "actions" if os.getenv("GITHUB_ACTIONS") == "true" else "cli"
    setup_logging(mode=mode, debug=args.debug, log_file=args.log_file)

    if args.init_config:
        path = ensure_config()
        print(f"Config file: {path}", file=sys.stderr)
        return

    config_overrides: dict[str, Any] = {}
    if args.url:
        config_overrides["url"] = args.url
    if args.testing_tool:
        config_overrides["testing_tool"] = args.testing_tool
    if args.insecure:
        config_overrides["insecure"] = True
    if args.debug:
        config_overrides["debug"] = True

    if config_overrides:
        print(
            f"Config overrides from CLI: {', '.join(config_overrides)}",
            file=sys.stderr,
        )

    try:
        payload = load_event_payload(args.event_path)
        exit_code = asyncio.run(
            main(args.event_name or "", payload, config_overrides or None)
        )
    except RuntimeError:
        # Error already printed to stderr by lifespan manager
        sys.exit(1)
    except (BridgeError, requests.RequestException, OSError, ValueError) as e:
        logger.error("Event handling failed: %s", e)
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(0)

    if exit_code not in SUCCESSFUL_EXIT_CODES:
        logger.error("Finished with exit code %s", exit_code.name)
        sys.exit(1)


if __name__ == "__main__":
    run()
