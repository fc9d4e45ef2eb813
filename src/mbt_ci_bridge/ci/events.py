"""Workflow event classification, CI entity naming and CI event payloads."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any

from ..mbt.launcher import ExitCode

logger = logging.getLogger(__name__)

CI_PREFIX = "GHA-MBT"


class ActionsEventType(str, Enum):
    WORKFLOW_RUN = "workflow_run"
    PUSH = "push"
    WORKFLOW_QUEUED = "workflow_queued"
    WORKFLOW_STARTED = "workflow_started"
    WORKFLOW_FINISHED = "workflow_finished"
    PULL_REQUEST_OPENED = "pull_request_opened"
    PULL_REQUEST_CLOSED = "pull_request_closed"
    PULL_REQUEST_REOPENED = "pull_request_reopened"
    PULL_REQUEST_EDITED = "pull_request_edited"
    UNKNOWN = "unknown"


class CiEventType(str, Enum):
    STARTED = "started"
    FINISHED = "finished"


class CiResult(str, Enum):
    SUCCESS = "success"
    UNSTABLE = "unstable"
    FAILURE = "failure"
    ABORTED = "aborted"
    UNAVAILABLE = "unavailable"


_EVENT_TYPES = {
    "workflow_dispatch": ActionsEventType.WORKFLOW_RUN,
    "push": ActionsEventType.PUSH,
    "requested": ActionsEventType.WORKFLOW_QUEUED,
    "in_progress": ActionsEventType.WORKFLOW_STARTED,
    "completed": ActionsEventType.WORKFLOW_FINISHED,
    "opened": ActionsEventType.PULL_REQUEST_OPENED,
    "closed": ActionsEventType.PULL_REQUEST_CLOSED,
    "reopened": ActionsEventType.PULL_REQUEST_REOPENED,
    "edited": ActionsEventType.PULL_REQUEST_EDITED,
}


def get_event_type(event: str | None) -> ActionsEventType:
    """Classify a payload ``action`` or, lacking one, the event name."""
    return _EVENT_TYPES.get(event or "", ActionsEventType.UNKNOWN)


def result_from_exit_code(exit_code: ExitCode) -> CiResult:
    if exit_code == ExitCode.PASSED:
        return CiResult.SUCCESS
    if exit_code == ExitCode.UNSTABLE:
        return CiResult.UNSTABLE
    return CiResult.FAILURE


@dataclass(frozen=True)
class CiNames:
    """Names and CI ids of the entities registered for one workflow on one branch."""

    instance_id: str
    server_name: str
    executor_name: str
    ci_id: str
    parent_ci_id: str

    @classmethod
    def build(
        cls, owner: str, repo: str, branch: str, workflow_file: str
    ) -> CiNames:
        server = f"{CI_PREFIX}-{owner}"
        return cls(
            instance_id=server,
            server_name=server,
            executor_name=f"{server}.{repo}.{branch}.{workflow_file}",
            ci_id=f"{owner}/{repo}/{workflow_file}/executor/{branch}",
            parent_ci_id=f"{owner}/{repo}/{workflow_file}/executor",
        )


@dataclass
class CiParam:
    """A ``workflow_dispatch`` input; ``value`` is set for an actual run."""

    name: str
    default_value: str | None = None
    value: str | None = None

    def to_api(self) -> dict[str, Any]:
        data: dict[str, Any] = {"name": self.name}
        if self.default_value is not None:
            data["defaultValue"] = self.default_value
        if self.value is not None:
            data["value"] = self.value
        return data


def build_executor_event(
    event_type: CiEventType,
    names: CiNames,
    build_ci_id: str,
    run_number: str,
    branch: str,
    start_time: int,
    params: list[CiParam],
    result: CiResult | None = None,
    now: int | None = None,
) -> dict[str, Any]:
    """CI event body for the start or the end of an executor run.

    *start_time* and *now* are epoch milliseconds. A finish event also
    carries the duration, the result and that test results will follow.
    """
    event: dict[str, Any] = {
        "buildCiId": build_ci_id,
        "eventType": event_type.value,
        "number": run_number,
        "parentCiId": names.parent_ci_id,
        "project": names.ci_id,
        "projectDisplayName": names.executor_name,
        "startTime": start_time,
        "branch": branch,
        "parameters": [p.to_api() for p in params],
        "phaseType": "internal",
        "skipValidation": True,
    }
    if event_type == CiEventType.FINISHED:
        finished = now if now is not None else int(time.time() * 1000)
        event["duration"] = finished - start_time
        event["testResultExpected"] = True
        event["result"] = (result or CiResult.UNAVAILABLE).value
    return event
