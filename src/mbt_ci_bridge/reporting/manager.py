"""Turn the launcher results of a suite run into published test runs.

Files written under ``<work path>/___mbt``:

- ``junitResult.xml``: the parsed launcher results, normalised.
- ``mqmTests.xml``: the ``test_result`` document sent to the server.

Both, and the report folder of every run, are also uploaded as workflow
artifacts.
"""

from __future__ import annotations

import logging
import re
import time
from pathlib import Path

import requests

from ..core.async_utils import gather_isolated, run_sync
from ..core.client import TestManagementClient
from ..core.github import GitHubClient
from ..errors import ValidationError
from ..file_handler import read_text_file, write_file
from ..mbt.launcher import MBT_DIR
from .builder import build_results_xml, iterate_junit_results
from .junit import TestResult, parse_result

logger = logging.getLogger(__name__)

JUNIT_RESULT_FILE = "junitResult.xml"
MQM_TESTS_FILE = "mqmTests.xml"
RUN_RESULTS_FILE = "run_results.xml"

_REPORT_DIR = re.compile(r"^Report")


def extract_run_id_from_path(path: Path) -> int:
    """Run id of a ``run_results.xml`` file.

    Reports are written to ``.../<runId>/<test>/Report*/run_results.xml``;
    the id is the directory two levels above the report directory.

    Raises:
        ValidationError: No report directory, or nothing numeric where the
            id should be.
    """
    parts = path.parent.parts
    report_dir = next((p for p in parts if _REPORT_DIR.match(p)), None)
    if report_dir is None:
        raise ValidationError(f"Invalid run results path [{path}]")
    index = len(parts) - 1 - parts[::-1].index(report_dir)
    if index <= 1:
        raise ValidationError(f"Invalid run results path [{path}]")
    try:
        return int(parts[index - 2])
    except ValueError:
        raise ValidationError(f"Invalid run results path [{path}]") from None


def collect_run_results_files(mbt_path: Path) -> dict[int, Path]:
    """Every ``run_results.xml`` below *mbt_path*, keyed by run id."""
    logger.debug("collect_run_results_files: mbt_path=[%s] ...", mbt_path)
    files: dict[int, Path] = {}
    for path in sorted(mbt_path.rglob(f"*{RUN_RESULTS_FILE}")):
        run_id = extract_run_id_from_path(path)
        files[run_id] = path
        logger.debug("runId=%s, [%s]", run_id, path)
    logger.debug("Found %d %s files", len(files), RUN_RESULTS_FILE)
    return files


async def upload_run_results(
    github: GitHubClient, mbt_path: Path, files: dict[int, Path]
) -> dict[int, int | None]:
    """Upload each run's report folder as ``run_results_<runId>``.

    Uploads run concurrently; a failed upload is logged and does not stop
    the others.

    Returns:
        Artifact id per run id (``None`` or -1 for failed uploads).
    """
    run_ids = list(files)
    results = await gather_isolated(
        [
            run_sync(
                github.upload_artifact,
                mbt_path,
                [files[run_id].parent],
                f"run_results_{run_id}",
            )
            for run_id in run_ids
        ],
        labels=[f"run_results_{run_id}" for run_id in run_ids],
    )
    return dict(zip(run_ids, results))


async def build_results_file(
    github: GitHubClient,
    server_id: str,
    job_id: str,
    build_id: str | int,
    junit_result: TestResult,
    work_path: Path,
) -> Path:
    """Write and upload ``junitResult.xml`` and ``mqmTests.xml``.

    Returns:
        Path of ``mqmTests.xml``.
    """
    logger.debug(
        "build_results_file: server_id=%s, job_id=%s, build_id=%s ...",
        server_id,
        job_id,
        build_id,
    )
    mbt_path = work_path / MBT_DIR
    junit_path = mbt_path / JUNIT_RESULT_FILE
    mqm_path = mbt_path / MQM_TESTS_FILE

    await run_sync(write_file, junit_path, junit_result.to_xml())
    run_results_files = await run_sync(collect_run_results_files, mbt_path)

    await upload_run_results(github, mbt_path, run_results_files)
    await run_sync(github.upload_artifact, mbt_path, [junit_path], "junitResult_xml")

    build_started = int(time.time() * 1000)
    results = await run_sync(
        iterate_junit_results, junit_result, run_results_files, build_started
    )
    xml = build_results_xml(server_id, job_id, build_id, results)
    await run_sync(write_file, mqm_path, xml)
    await run_sync(github.upload_artifact, mbt_path, [mqm_path], "mqmTests_xml")
    logger.debug("build_results_file: finished writing %s", MQM_TESTS_FILE)
    return mqm_path


async def publish_results(
    client: TestManagementClient,
    github: GitHubClient,
    server_id: str,
    job_id: str,
    build_id: str | int,
    results_path: Path,
    work_path: Path,
) -> None:
    """Parse the launcher results at *results_path* and send them to the server.

    A rejected upload is logged; the CI run itself is not failed for it.
    """
    logger.info("publish_results: [%s] ...", results_path)
    junit_result = await run_sync(parse_result, results_path, False)
    mqm_path = await build_results_file(
        github, server_id, job_id, build_id, junit_result, work_path
    )
    xml = await run_sync(read_text_file, mqm_path)
    try:
        await run_sync(client.send_test_results, xml)
    except requests.RequestException as e:
        logger.error(
            "Failed to send test results. Check that the test runner's "
            "framework is configured for MBT. Error: %s",
            e,
        )
        return
    logger.info("All test results have been sent successfully.")
