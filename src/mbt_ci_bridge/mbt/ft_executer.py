"""Run generated MBT tests through the launcher in ``FileSystem`` mode."""

from __future__ import annotations

import logging
from pathlib import Path

from ..config import Config
from ..core.async_utils import run_sync
from ..discovery.paths import escape_prop_value, escape_xml, get_timestamp
from ..file_handler import write_file
from .converter import PACKAGE_SOURCE
from .launcher import (
    MBT_DIR,
    RUN_TYPE_FILE_SYSTEM,
    ExitCode,
    ensure_tool_exists,
    run_tool,
    write_props_file,
)
from .models import MbtTestInfo

logger = logging.getLogger(__name__)


def build_mtbx(workspace: Path, infos: list[MbtTestInfo]) -> str:
    """Suite manifest listing the generated test folder of every run."""
    lines = ["<Mtbx>"]
    for idx, info in enumerate(infos, start=1):
        path = workspace / MBT_DIR / f"_{idx}" / info.test_name
        lines.append(
            f'\t<Test runId="{info.run_id}" name="{escape_xml(info.test_name)}" '
            f'path="{escape_xml(str(path))}" />'
        )
    lines.append("</Mtbx>")
    return "\n".join(lines)


def create_props_file(
    workspace: Path, infos: list[MbtTestInfo], config: Config
) -> tuple[Path, Path]:
    """Write the suite manifest and its props file.

    Returns:
        The props file and the results file the launcher will write.
    """
    suffix = get_timestamp()
    props_path = workspace / f"props_{suffix}.txt"
    results_path = workspace / f"results_{suffix}.xml"
    mtbx_path = workspace / f"testsuite_{suffix}.mtbx"

    logger.debug("create_props_file: [%s] ...", props_path)
    write_file(mtbx_path, build_mtbx(workspace, infos))
    props = {
        "runType": RUN_TYPE_FILE_SYSTEM,
        "Test1": escape_prop_value(str(mtbx_path)),
        "resultsFilename": escape_prop_value(str(results_path)),
    }
    if config.digital_lab_url and config.digital_lab_exec_token:
        props["MobileHostAddress"] = config.digital_lab_url
        props["MobileExecToken"] = config.digital_lab_exec_token
    write_props_file(props_path, props)
    return props_path, results_path


async def run_suite(
    infos: list[MbtTestInfo], workspace: Path, config: Config
) -> tuple[ExitCode, Path]:
    """Execute the generated tests of *infos*.

    Returns:
        Launcher exit code and the path of its results XML.
    """
    logger.info(
        "Running %d generated tests from package %s ...", len(infos), PACKAGE_SOURCE
    )
    props_path, results_path = await run_sync(
        create_props_file, workspace, infos, config
    )
    bin_path = await run_sync(ensure_tool_exists, config.runner_workspace)
    exit_code = await run_tool(bin_path, props_path)
    return exit_code, results_path
