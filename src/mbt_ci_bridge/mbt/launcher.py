"""Locate and run ``HpToolsLauncher.exe``.

The launcher ships in the ``bin`` folder of this action's checkout on the
runner (``<runner root>/_actions/<owner>/<repo>/<ref>/bin``). It is always
started with that folder as its working directory and a single
``-paramfile`` argument.
"""

from __future__ import annotations

import asyncio
import logging
import os
from enum import IntEnum
from pathlib import Path

from ..errors import LauncherError, NotFoundError
from ..file_handler import write_file

logger = logging.getLogger(__name__)

HP_TOOLS_LAUNCHER = "HpToolsLauncher.exe"

RUN_TYPE_FILE_SYSTEM = "FileSystem"
RUN_TYPE_MBT = "MBT"
MBT_DIR = "___mbt"
TMP_DIR = "___tmp"


class ExitCode(IntEnum):
    """Launcher exit codes; anything else is ``UNKNOWN``."""

    PASSED = 0
    FAILED = -1
    UNSTABLE = -2
    ABORTED = -3
    UNKNOWN = -9


def normalize_exit_code(code: int | None) -> ExitCode:
    """Map a raw process exit status to ``ExitCode``.

    Negative launcher codes may be reported as unsigned 32-bit values
    (``-2`` as ``4294967294``). ``None`` means the process was killed.
    """
    if code is None:
        logger.error("Launcher exited without a code (possibly killed by a signal)")
        return ExitCode.ABORTED
    if code > 0x7FFFFFFF:
        code -= 0x100000000
    logger.debug("Launcher exit code: %d", code)
    try:
        return ExitCode(code)
    except ValueError:
        return ExitCode.UNKNOWN


def ensure_tool_exists(runner_workspace: str | None) -> Path:
    """Bin folder holding the launcher.

    Raises:
        NotFoundError: A required environment variable is missing or the
            launcher is not there.
    """
    logger.debug("ensure_tool_exists: looking for %s ...", HP_TOOLS_LAUNCHER)
    action_repo = os.getenv("GITHUB_ACTION_REPOSITORY")
    action_ref = os.getenv("GITHUB_ACTION_REF")
    for name, value in (
        ("RUNNER_WORKSPACE", runner_workspace),
        ("GITHUB_ACTION_REPOSITORY", action_repo),
        ("GITHUB_ACTION_REF", action_ref),
    ):
        if not value:
            raise NotFoundError(f"Missing required environment variable: {name}")

    runner_root = Path(runner_workspace).resolve().parent
    owner, repo = action_repo.split("/", 1)
    bin_path = runner_root / "_actions" / owner / repo / action_ref / "bin"
    exe = bin_path / HP_TOOLS_LAUNCHER
    if not exe.is_file():
        raise NotFoundError(f"Failed to locate [{exe}]")
    logger.debug("Located [%s]", exe)
    return bin_path


async def _pump(stream: asyncio.StreamReader, level: int) -> None:
    while True:
        line = await stream.readline()
        if not line:
            return
        text = line.decode("utf-8", errors="replace").strip()
        if text:
            logger.log(level, text)


async def run_tool(bin_path: Path, props_path: Path) -> ExitCode:
    """Run the launcher on *props_path*, streaming its output into the log.

    Raises:
        LauncherError: The process could not be started.
    """
    exe = bin_path / HP_TOOLS_LAUNCHER
    args = ["-paramfile", str(props_path)]
    logger.info("%s %s", HP_TOOLS_LAUNCHER, " ".join(args))
    try:
        process = await asyncio.create_subprocess_exec(
            str(exe),
            *args,
            cwd=str(bin_path),
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        raise LauncherError(f"Failed to start {HP_TOOLS_LAUNCHER}: {e}") from e

    await asyncio.gather(
        _pump(process.stdout, logging.INFO),
        _pump(process.stderr, logging.ERROR),
    )
    return normalize_exit_code(await process.wait())


def write_props_file(path: Path, props: dict[str, str]) -> Path:
    """Write ``key=value`` lines in insertion order."""
    write_file(path, "\n".join(f"{k}={v}" for k, v in props.items()))
    return path
