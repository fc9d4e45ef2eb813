"""Read-only mirrors of the CI entities the bridge registers on the server.

The server returns references as ``{"id": ..., "type": ...}`` objects and
numeric ids as either numbers or strings depending on the endpoint; ids are
normalized to ``str`` here.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, field_validator

from ..discovery.models import EntityRef


def _ref(value: Any) -> EntityRef | None:
    if isinstance(value, EntityRef):
        return value
    if isinstance(value, dict):
        return EntityRef.from_api(value)
    return None


class _Entity(BaseModel):
    id: str

    model_config = {"frozen": True, "extra": "ignore"}

    @field_validator("id", mode="before")
    @classmethod
    def _id_to_str(cls, value: Any) -> str:
        return str(value)


class CiServer(_Entity):
    """CI server registration (one per repository owner)."""

    name: str | None = None
    instance_id: str | None = None
    plugin_version: str | None = None
    url: str | None = None
    is_connected: bool | None = None
    server_type: str | None = None


class CiJob(_Entity):
    """CI job standing for one workflow file on one branch."""

    ci_id: str | None = None
    name: str | None = None
    ci_server: EntityRef | None = None

    @field_validator("ci_server", mode="before")
    @classmethod
    def _server_ref(cls, value: Any) -> EntityRef | None:
        return _ref(value)


class Executor(_Entity):
    """MBT test runner; owns the SCM repository that units are linked to."""

    name: str | None = None
    subtype: str | None = None
    framework: EntityRef | None = None
    scm_repository: EntityRef | None = None
    ci_job: EntityRef | None = None
    ci_server: EntityRef | None = None

    @field_validator(
        "framework", "scm_repository", "ci_job", "ci_server", mode="before"
    )
    @classmethod
    def _refs(cls, value: Any) -> EntityRef | None:
        return _ref(value)
