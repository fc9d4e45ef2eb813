"""Unified configuration schema for mbt_ci_bridge.

Defines Pydantic models for the YAML config structure with dedicated
sections for the test-management server, GitHub, discovery, execution and
logging, plus the adapter that flattens them into the fallback dict
consumed by ``config.load_config()``.

Usage:
    from mbt_ci_bridge.config_schema import build_config, yaml_fallbacks

    raw = load_hierarchical_config()
    unified = build_config(raw)
    config = load_config(yaml_fallbacks=yaml_fallbacks(unified))
"""

from __future__ import annotations

import logging
from typing import Any, Literal

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class ServerConfig(BaseModel):
    """Test-management server connection settings.

    All fields are optional to support zero-config: env vars and CLI args
    can supply them at runtime instead.
    """

    url: str | None = Field(default=None, description="Server URL")
    shared_space: str | None = Field(
        default=None, description="Shared space id"
    )
    workspace: str | None = Field(default=None, description="Workspace id")
    client_id: str | None = Field(default=None, description="API client id")
    client_secret: str | None = Field(
        default=None, description="API client secret"
    )
    insecure: bool = Field(
        default=False,
        description="Disable SSL verification (development only)",
    )

    model_config = {"frozen": True}


class GitHubConfig(BaseModel):
    """GitHub repository and API settings."""

    token: str | None = Field(default=None, description="GitHub token")
    repository: str | None = Field(
        default=None, description="Repository as owner/repo"
    )
    server_url: str | None = Field(default=None, description="GitHub web URL")
    api_url: str | None = Field(default=None, description="GitHub REST URL")

    model_config = {"frozen": True}


class DiscoveryConfig(BaseModel):
    """Test discovery settings.

    Attributes:
        testing_tool: ``mbt`` synchronises GUI test actions as units,
            ``uft`` synchronises tests and data tables.
        min_sync_interval: Minutes that must pass between two discovery
            runs; a run inside the window is cancelled.
        work_path: Working tree to scan.
        state_dir: Directory holding the synced commit/timestamp files.
    """

    testing_tool: Literal["mbt", "uft"] = Field(default="mbt")
    min_sync_interval: int = Field(default=2, ge=0)
    work_path: str | None = Field(default=None)
    state_dir: str | None = Field(default=None)

    model_config = {"frozen": True}


class ExecutionConfig(BaseModel):
    """MBT execution settings."""

    runner_workspace: str | None = Field(
        default=None, description="Runner workspace for generated files"
    )
    digital_lab_url: str | None = Field(
        default=None, description="Digital Lab (mobile) host address"
    )
    digital_lab_exec_token: str | None = Field(
        default=None, description="Digital Lab execution token"
    )

    model_config = {"frozen": True}


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
    """

    level: str = Field(default="INFO", description="Log level")
    file: str | None = Field(default=None, description="Log file path")

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level unified config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """Top-level unified configuration.

    Aggregates all config sections. Every section has sensible defaults,
    so ``UnifiedConfig()`` (zero-config) is always valid.
    """

    server: ServerConfig = Field(default_factory=ServerConfig)
    github: GitHubConfig = Field(default_factory=GitHubConfig)
    discovery: DiscoveryConfig = Field(default_factory=DiscoveryConfig)
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Factory function
# ---------------------------------------------------------------------------


def build_config(raw_data: dict) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from the raw dict returned by
    ``load_hierarchical_config()``.

    Handles missing sections gracefully; anything absent gets defaults.

    Args:
        raw_data: Merged configuration dictionary.

    Returns:
        Validated ``UnifiedConfig`` instance.
    """
    if not raw_data:
        return UnifiedConfig()

    return UnifiedConfig(**raw_data)


# ---------------------------------------------------------------------------
# Adapter: UnifiedConfig -> load_config() fallbacks
# ---------------------------------------------------------------------------


def yaml_fallbacks(unified: UnifiedConfig) -> dict[str, Any]:
    """Flatten the connection-relevant sections into one fallback dict.

    Keys are unique across ``server``, ``github``, ``discovery`` and
    ``execution``. ``None`` values are dropped so they never shadow
    built-in defaults.
    """
    merged: dict[str, Any] = {}
    for section in (
        unified.execution,
        unified.discovery,
        unified.github,
        unified.server,
    ):
        merged.update(
            {k: v for k, v in section.model_dump().items() if v is not None}
        )
    return merged
