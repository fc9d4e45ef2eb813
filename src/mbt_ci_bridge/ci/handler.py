"""Handle the workflow event that started the bridge.

A ``push``, or a manual ``workflow_dispatch`` without execution inputs,
synchronises the tests of the repository with the server. A
``workflow_dispatch`` carrying the execution inputs of a suite run
generates the requested MBT tests, runs them and publishes their results.
"""

from __future__ import annotations

import logging
import os
import posixpath
import time
from datetime import datetime
from pathlib import Path
from typing import Any

from ..core.async_utils import run_sync
from ..discovery.dispatcher import dispatch_discovery_result
from ..discovery.engine import Discovery
from ..discovery.models import DiscoveryResult, ToolType
from ..discovery.reconciler import prepare_for_sync
from ..discovery.state import SyncState
from ..errors import NotFoundError, ValidationError
from ..mbt.converter import build_mbt_test_info
from ..mbt.ft_executer import run_suite
from ..mbt.launcher import ExitCode
from ..mbt.params import parse_test_data
from ..mbt.pre_executer import prepare_mbt_run
from ..reporting.manager import publish_results
from .events import (
    ActionsEventType,
    CiEventType,
    CiNames,
    CiParam,
    build_executor_event,
    get_event_type,
    result_from_exit_code,
)
from .lifespan import BridgeContext
from .workflow import (
    build_exec_params,
    get_default_params,
    get_execution_inputs,
    has_execution_keys,
    is_execution_request,
)

logger = logging.getLogger(__name__)


def get_branch(payload: dict[str, Any]) -> str:
    """Branch of the event, from ``ref`` or the triggering workflow run.

    Raises:
        ValidationError: Neither is present.
    """
    ref = payload.get("ref") or ""
    if ref.startswith("refs/heads/"):
        return ref.removeprefix("refs/heads/")
    branch = (payload.get("workflow_run") or {}).get("head_branch")
    if not branch:
        raise ValidationError("Could not determine branch name!")
    return branch


def get_run_id(payload: dict[str, Any]) -> int:
    """Id of the current workflow run (0 when unknown)."""
    run_id = (payload.get("workflow_run") or {}).get("id")
    if run_id:
        return int(run_id)
    return int(os.getenv("GITHUB_RUN_ID") or 0)


def get_run_number(payload: dict[str, Any]) -> int:
    number = (payload.get("workflow_run") or {}).get("run_number")
    if number:
        return int(number)
    return int(os.getenv("GITHUB_RUN_NUMBER") or 0)


def get_start_time(payload: dict[str, Any]) -> int:
    """Epoch milliseconds at which the workflow run started."""
    started = (payload.get("workflow_run") or {}).get("run_started_at")
    if started:
        try:
            parsed = datetime.fromisoformat(started.replace("Z", "+00:00"))
            return int(parsed.timestamp() * 1000)
        except ValueError:
            logger.warning("Ignoring malformed run_started_at %r", started)
    return int(time.time() * 1000)


async def get_workflow_file(
    ctx: BridgeContext,
    event_type: ActionsEventType,
    payload: dict[str, Any],
) -> str:
    """File name of the workflow that is running.

    Raises:
        ValidationError: The event does not name its workflow.
    """
    if event_type == ActionsEventType.PUSH:
        path = await run_sync(
            ctx.github.get_workflow_path, payload.get("after", ""), get_run_id(payload)
        )
    else:
        workflow = payload.get("workflow")
        path = workflow.get("path") if isinstance(workflow, dict) else workflow
    if not path:
        raise ValidationError("Event should contain workflow file path!")
    return posixpath.basename(path)


def log_discovery_result(result: DiscoveryResult) -> None:
    if not logger.isEnabledFor(logging.DEBUG):
        return
    logger.debug("Tests: %d", len(result.tests))
    for test in result.tests:
        logger.debug(
            "%s, type = %s, package = %s, executable = %s, moved = %s, status = %s",
            test.name,
            test.test_type.value,
            test.package_name,
            test.executable,
            test.is_moved,
            test.sync_status.value,
        )
        for action in test.actions:
            logger.debug(
                "  %s (%s): %s",
                action.name,
                action.logical_name,
                ", ".join(f"{p.name} - {p.direction.name}" for p in action.parameters),
            )
    for resource_file in result.resource_files:
        logger.debug(
            "Resource file: %s [%s], status = %s, moved = %s",
            resource_file.name,
            resource_file.relative_path,
            resource_file.sync_status.value,
            resource_file.is_moved,
        )


async def sync_tests(
    ctx: BridgeContext, result: DiscoveryResult, names: CiNames, branch: str
) -> dict[str, int]:
    """Register the CI entities and push *result* to the server.

    Raises:
        NotFoundError: The test runner has no SCM repository.
    """
    client = ctx.client
    ci_server = await run_sync(
        client.get_or_create_ci_server, names.instance_id, names.server_name
    )
    ci_job = await run_sync(
        client.get_or_create_ci_job, names.executor_name, names.ci_id, ci_server, branch
    )
    logger.debug("CI job id: %s, name: %s, ci_id: %s", ci_job.id, ci_job.name, ci_job.ci_id)
    runner = await run_sync(
        client.get_or_create_test_runner, names.executor_name, ci_server.id, ci_job
    )
    if runner.scm_repository is None:
        raise NotFoundError(f"Test runner {runner.id} has no SCM repository")
    logger.debug(
        "Test runner id: %s, scm_repository.id: %s", runner.id, runner.scm_repository.id
    )
    await run_sync(
        prepare_for_sync, client, runner.id, runner.scm_repository.id, result
    )
    return await run_sync(
        dispatch_discovery_result, client, runner.id, runner.scm_repository.id, result
    )


async def handle_sync(
    ctx: BridgeContext, names: CiNames, branch: str, run_id: int
) -> None:
    """Discover changed tests and synchronise them.

    When the previous sync is more recent than the minimum interval the
    current workflow run is cancelled instead.
    """
    config = ctx.config
    state = SyncState(Path(config.state_dir))
    old_commit = state.get_synced_commit()
    if old_commit:
        logger.info("min_sync_interval = %s minutes.", config.min_sync_interval)
        elapsed = state.minutes_since_last_sync()
        if elapsed is not None and elapsed < config.min_sync_interval:
            logger.warning(
                "The minimum time interval of %s minutes has not yet elapsed "
                "since the last sync.",
                config.min_sync_interval,
            )
            if run_id:
                await run_sync(ctx.github.cancel_workflow_run, run_id)
            return

    discovery = Discovery(
        ToolType(config.testing_tool),
        Path(config.work_path),
        config.repo_url,
        config.github_token,
    )
    result = await discovery.start_scanning(old_commit)
    log_discovery_result(result)
    logger.info("Discovery summary: %s", result.summary())

    counts = await sync_tests(ctx, result, names, branch)
    logger.info("Dispatched units: %s", counts)
    if result.new_commit != old_commit:
        await run_sync(state.save_synced_commit, result.new_commit)


async def handle_execution(
    ctx: BridgeContext,
    payload: dict[str, Any],
    params: list[CiParam],
    inputs: dict[str, str],
    names: CiNames,
    branch: str,
) -> ExitCode:
    """Generate, run and report the MBT tests of a suite run."""
    logger.debug("handle_execution: ...")
    config = ctx.config
    client = ctx.client
    start_time = get_start_time(payload)
    build_ci_id = str(get_run_id(payload))
    run_number = str(get_run_number(payload))
    exec_params = build_exec_params(params, inputs)

    ci_server = await run_sync(client.get_ci_server, names.instance_id)
    if ci_server is None:
        logger.error("Could not find CI server with instance id: %s", names.instance_id)
        return ExitCode.ABORTED
    server_url = ci_server.url or client.repo_url

    start_event = build_executor_event(
        CiEventType.STARTED, names, build_ci_id, run_number, branch, start_time, exec_params
    )
    await run_sync(client.send_events, [start_event], names.instance_id, server_url)

    tests = parse_test_data(inputs["testsToRun"])
    try:
        suite_run_id = int(inputs["suiteRunId"])
    except ValueError:
        raise ValidationError(f"Invalid suite run id '{inputs['suiteRunId']}'") from None
    suite_data = await run_sync(client.get_mbt_test_suite_data, suite_run_id)

    repo_dir = Path(config.work_path).resolve()
    infos = []
    for run_id, data in suite_data.items():
        info = build_mbt_test_info(str(repo_dir), run_id, data, tests)
        logger.debug("%s", info.model_dump_json(indent=2))
        infos.append(info)

    prepared, _ = await prepare_mbt_run(infos, config.runner_workspace, repo_dir)
    if not prepared:
        logger.error("Failed to convert MBT tests.")
        return ExitCode.ABORTED

    workspace = Path(config.runner_workspace)
    exit_code, results_path = await run_suite(infos, workspace, config)
    if results_path.exists():
        await publish_results(
            client,
            ctx.github,
            names.instance_id,
            names.ci_id,
            build_ci_id,
            results_path,
            workspace,
        )
    else:
        logger.warning("No results file was written: %s", results_path)

    finish_event = build_executor_event(
        CiEventType.FINISHED,
        names,
        build_ci_id,
        run_number,
        branch,
        start_time,
        exec_params,
        result=result_from_exit_code(exit_code),
    )
    await run_sync(client.send_events, [finish_event], names.instance_id, server_url)
    return exit_code


async def handle_event(
    ctx: BridgeContext, event_name: str, payload: dict[str, Any]
) -> ExitCode:
    """Run whatever *event_name* with *payload* asks for.

    Returns:
        The launcher result of an execution, ``PASSED`` otherwise.

    Raises:
        BridgeError: The event is malformed or a remote entity is missing.
        requests.RequestException: A server or GitHub call failed.
    """
    logger.info("BEGIN handle_event ...")
    if logger.isEnabledFor(logging.DEBUG):
        for key, value in sorted(os.environ.items()):
            if key.startswith(("GITHUB_", "RUNNER_")) and key != "GITHUB_TOKEN":
                logger.debug("%s=%s", key, value)

    action = payload.get("action") or event_name
    event_type = get_event_type(action)
    if event_type == ActionsEventType.UNKNOWN:
        logger.info("Unknown event type: %s", action)
        return ExitCode.PASSED
    logger.info("event_type = %s", action)

    workflow_file = await get_workflow_file(ctx, event_type, payload)
    branch = get_branch(payload)
    config = ctx.config
    names = CiNames.build(config.owner, config.repo, branch, workflow_file)
    logger.info("Current repository URL: %s", config.repo_url)
    logger.info("Working directory: %s", Path(config.work_path).resolve())
    logger.info("Testing tool type: %s", config.testing_tool.upper())

    exit_code = ExitCode.PASSED
    if event_type == ActionsEventType.WORKFLOW_RUN:
        params = await run_sync(get_default_params, ctx.github, workflow_file, branch)
        raw_inputs = payload.get("inputs")
        logger.debug("Input params: %s", raw_inputs)
        inputs = get_execution_inputs(raw_inputs)
        if raw_inputs and has_execution_keys(params) and is_execution_request(inputs, params):
            exit_code = await handle_execution(ctx, payload, params, inputs, names, branch)
        else:
            logger.debug("Continue with discovery / sync ...")
            await handle_sync(ctx, names, branch, get_run_id(payload))
    elif event_type == ActionsEventType.PUSH:
        await handle_sync(ctx, names, branch, get_run_id(payload))
    else:
        logger.info("Nothing to do for event type %s", event_type.value)

    logger.info("END handle_event ...")
    return exit_code
