"""Startup and shutdown of one bridge invocation."""

import logging
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

from dotenv import load_dotenv

from ..config import Config, load_config
from ..config_loader import discover_config_files, load_hierarchical_config
from ..config_schema import build_config, yaml_fallbacks
from ..core.async_utils import run_sync
from ..core.client import TestManagementClient
from ..core.github import GitHubClient

logger = logging.getLogger(__name__)

_REQUIRED_ENV = (
    "OCTANE_URL, OCTANE_SHARED_SPACE, OCTANE_WORKSPACE, OCTANE_CLIENT_ID, "
    "OCTANE_CLIENT_SECRET, GITHUB_TOKEN, GITHUB_REPOSITORY"
)


def _stderr_print(msg: str) -> None:
    print(msg, file=sys.stderr, flush=True)


@dataclass
class BridgeContext:
    """Configuration and clients shared by the event handlers."""

    config: Config
    client: TestManagementClient
    github: GitHubClient


@asynccontextmanager
async def bridge_lifespan(
    config_overrides: dict[str, Any] | None = None,
) -> AsyncIterator[BridgeContext]:
    """
    Set up configuration and clients for one event.

    On startup:
    - Load .env file (so values are available for env var lookups and YAML interpolation)
    - Load YAML config file if present (as fallback values)
    - Merge all sources via load_config(): CLI > env vars > .env > YAML > defaults
    - Create the server client and validate the connection
    - Fail fast if the server is unreachable

    On shutdown:
    - Log shutdown message

    Args:
        config_overrides: Optional dict with config values from CLI
            (url, testing_tool, insecure, debug)

    Yields:
        BridgeContext with the loaded config and both clients

    Raises:
        RuntimeError: If configuration is invalid or the server connection fails.
    """
    logger.info("MBT CI bridge starting...")

    try:
        # .env first, so ${VAR} interpolation in YAML can use its values
        load_dotenv()

        fallbacks: dict[str, Any] | None = None
        sources = []
        config_files = discover_config_files()
        if config_files:
            unified = build_config(load_hierarchical_config())
            fallbacks = yaml_fallbacks(unified)
            sources.append(f"config file: {config_files[0]}")

        overrides = config_overrides or {}
        config = load_config(
            url=overrides.get("url"),
            testing_tool=overrides.get("testing_tool"),
            insecure=overrides.get("insecure", False),
            debug=overrides.get("debug", False),
            yaml_fallbacks=fallbacks,
        )

        if overrides:
            sources.append("CLI arguments")
        sources.append("environment variables")
        source_desc = ", ".join(sources)
        logger.info("Configuration loaded from: %s", source_desc)
        logger.info("Server URL: %s", config.server_url)
    except ValueError as e:
        logger.error("Configuration error: %s", e)
        _stderr_print(f"ERROR: Configuration error: {e}")
        _stderr_print(f"  Ensure {_REQUIRED_ENV} are set.")
        raise RuntimeError(
            f"Configuration error: {e}. Ensure {_REQUIRED_ENV} are set."
        ) from e

    logger.info("Validating server connection...")
    try:
        client = TestManagementClient(config)
        version = await run_sync(client.validate_connection)
        logger.info("Connected to server version %s", version)
    except Exception as e:
        logger.error("Failed to connect to the server: %s", e)
        _stderr_print("ERROR: Server connection failed.")
        _stderr_print(f"  {e}")
        raise RuntimeError(
            f"Server connection failed: {e}. Check OCTANE_URL and the API client credentials."
        ) from e

    github = GitHubClient(config)
    yield BridgeContext(config=config, client=client, github=github)

    logger.info("MBT CI bridge shutting down")
