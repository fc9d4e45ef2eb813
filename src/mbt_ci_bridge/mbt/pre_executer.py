"""Generate the MBT tests of a suite run on disk.

The launcher is first run in ``MBT`` mode with a props file describing
every run: its generated script, the units it uses, and its encoded data
table. The launcher writes one test folder per run under ``___mbt``; those
folders are then executed in ``FileSystem`` mode (see ``ft_executer``).
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from ..core.async_utils import run_sync
from ..discovery.documents import read_test_resources
from ..discovery.paths import escape_prop_value, get_timestamp
from ..errors import NotFoundError
from ..file_handler import has_read_write_access
from .converter import PROP_NEWLINE
from .launcher import (
    MBT_DIR,
    RUN_TYPE_MBT,
    TMP_DIR,
    ExitCode,
    ensure_tool_exists,
    run_tool,
    write_props_file,
)
from .models import MbtScriptData, MbtTestInfo

logger = logging.getLogger(__name__)


def local_path(windows_path: str) -> Path:
    """Filesystem path for a backslash-separated path built for the launcher."""
    return Path(windows_path.replace("\\", os.sep))


def is_test_folder(test_path: Path) -> bool:
    return (test_path / "Test.tsp").exists() or (
        test_path / f"{test_path.name}.st"
    ).exists()


def resource_header(test_path: Path) -> str:
    """Function-library and recovery-scenario loading for the test at *test_path*."""
    resources = read_test_resources(test_path)
    script = ""
    if resources.function_libraries:
        script += f"RestartFLEngine{PROP_NEWLINE}"
        for lib in resources.function_libraries:
            script += f' LoadFunctionLibrary "{escape_prop_value(lib)}"{PROP_NEWLINE}'
    if resources.recovery_scenarios:
        scenarios = ",".join(
            f'"{escape_prop_value(path)}|{name}|1|1*"'
            for path, name in resources.recovery_scenarios
        )
        script += f"LoadRecoveryScenario {scenarios}"
    return script


def build_test_script(script_data: list[MbtScriptData]) -> str:
    """Join the fragments of one run, loading test resources on every test switch.

    Raises:
        NotFoundError: A fragment points at a folder that holds no test.
    """
    logger.debug("build_test_script: fragments=%d", len(script_data))
    lines: list[str] = []
    previous: str | None = None
    for unit in script_data:
        script = ""
        if unit.test_path != previous:
            test_path = local_path(unit.test_path)
            if not is_test_folder(test_path):
                raise NotFoundError(
                    f"Invalid test path [{unit.test_path}] of unit id {unit.unit_id}"
                )
            script += resource_header(test_path)
        script += unit.basic_script
        lines.append(script)
        previous = unit.test_path
    return PROP_NEWLINE.join(lines)


def build_mbt_props(
    infos: list[MbtTestInfo], runner_workspace: Path, repo_dir: Path
) -> dict[str, str]:
    props = {
        "runType": RUN_TYPE_MBT,
        "resultsFilename": "must be here",
        "parentFolder": escape_prop_value(str(runner_workspace / MBT_DIR)),
        "repoFolder": escape_prop_value(str(repo_dir)),
    }
    for idx, info in enumerate(infos, start=1):
        props[f"test{idx}"] = info.test_name
        props[f"package{idx}"] = str(info.run_id)
        props[f"script{idx}"] = build_test_script(info.script_data)
        props[f"unitIds{idx}"] = ";".join(str(u) for u in info.unit_ids)
        props[f"underlyingTests{idx}"] = escape_prop_value(
            ";".join(info.underlying_tests)
        )
        props[f"datableParams{idx}"] = info.encoded_iterations
    return props


def create_mbt_props_file(
    infos: list[MbtTestInfo], runner_workspace: str | None, repo_dir: Path
) -> Path:
    """Write ``___tmp/mbt_props_<timestamp>.txt`` under the runner workspace.

    Raises:
        NotFoundError: ``RUNNER_WORKSPACE`` is unset or not writable.
    """
    if not runner_workspace:
        raise NotFoundError("Missing environment variable: RUNNER_WORKSPACE")
    workspace = Path(runner_workspace)
    if not has_read_write_access(workspace):
        raise NotFoundError(f"No read/write access to [{workspace}]")
    props = build_mbt_props(infos, workspace, repo_dir)
    path = workspace / TMP_DIR / f"mbt_props_{get_timestamp()}.txt"
    logger.debug("create_mbt_props_file: %s", path)
    return write_props_file(path, props)


async def prepare_mbt_run(
    infos: list[MbtTestInfo], runner_workspace: str | None, repo_dir: Path
) -> tuple[bool, Path]:
    """Generate the MBT tests of *infos*.

    Returns:
        Whether the launcher succeeded, and the props file it was given.
    """
    logger.debug("prepare_mbt_run: infos=%d ...", len(infos))
    props_path = await run_sync(
        create_mbt_props_file, infos, runner_workspace, repo_dir
    )
    bin_path = await run_sync(ensure_tool_exists, runner_workspace)
    exit_code = await run_tool(bin_path, props_path)
    logger.debug("prepare_mbt_run: exit code %s", exit_code.name)
    return exit_code == ExitCode.PASSED, props_path
