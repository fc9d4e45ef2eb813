"""Workflow file inputs and execution-parameter validation."""

from __future__ import annotations

import base64
import binascii
import logging
from typing import Any

import yaml

from ..core.github import GitHubClient
from .events import CiParam

logger = logging.getLogger(__name__)

EXECUTION_KEYS = ("executionId", "suiteId", "suiteRunId", "testsToRun")


def decode_workflow_content(entry: dict[str, Any]) -> str | None:
    """Text of a contents API entry; ``None`` unless it is base64 encoded."""
    encoding = entry.get("encoding")
    if encoding != "base64":
        logger.error(
            "The content of the workflow's configuration file has an unknown encoding: %s",
            encoding,
        )
        return None
    try:
        raw = base64.b64decode((entry.get("content") or "").replace("\n", ""))
    except (binascii.Error, ValueError) as e:
        logger.error("Failed to decode the workflow file: %s", e)
        return None
    return raw.decode("utf-8")


def parse_workflow_inputs(content: str) -> list[CiParam]:
    """``on.workflow_dispatch.inputs`` of a workflow file, with their defaults."""
    parsed = yaml.safe_load(content)
    if not isinstance(parsed, dict):
        return []
    # YAML 1.1 reads a bare ``on`` key as boolean true.
    on_section = parsed.get("on", parsed.get(True))
    if not isinstance(on_section, dict):
        return []
    dispatch = on_section.get("workflow_dispatch")
    if not isinstance(dispatch, dict):
        return []
    inputs = dispatch.get("inputs")
    if not isinstance(inputs, dict):
        return []

    params = []
    for name, details in inputs.items():
        default = details.get("default") if isinstance(details, dict) else None
        param = CiParam(
            name=str(name), default_value=None if default is None else str(default)
        )
        logger.debug("Found workflow input %s (default: %r)", param.name, default)
        params.append(param)
    return params


def get_default_params(
    github: GitHubClient, workflow_file: str, branch: str | None = None
) -> list[CiParam]:
    content = decode_workflow_content(github.get_workflow_file(workflow_file, branch))
    if not content:
        return []
    return parse_workflow_inputs(content)


def has_execution_keys(params: list[CiParam]) -> bool:
    """Whether the workflow declares every execution input."""
    names = {p.name for p in params}
    return bool(params) and all(key in names for key in EXECUTION_KEYS)


def get_execution_inputs(inputs: dict[str, Any] | None) -> dict[str, str]:
    inputs = inputs or {}
    return {key: str(inputs.get(key) or "") for key in EXECUTION_KEYS}


def is_execution_request(
    execution_inputs: dict[str, str], params: list[CiParam]
) -> bool:
    """Every execution input is set and differs from its declared default.

    A manual dispatch with the defaults left in place is a sync request.
    """
    defaults = {p.name: p.default_value or "" for p in params}
    return all(
        execution_inputs.get(key) and execution_inputs[key] != defaults.get(key)
        for key in EXECUTION_KEYS
    )


def build_exec_params(
    params: list[CiParam], execution_inputs: dict[str, str]
) -> list[CiParam]:
    """Declared inputs with the values of this run filled in."""
    return [
        CiParam(
            name=p.name,
            default_value=p.default_value,
            value=execution_inputs.get(p.name, p.value),
        )
        for p in params
    ]
