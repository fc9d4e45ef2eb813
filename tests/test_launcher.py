"""Tests for mbt.launcher: locating and running the launcher."""

import stat

import pytest

from mbt_ci_bridge.errors import LauncherError, NotFoundError
from mbt_ci_bridge.mbt.launcher import (
    HP_TOOLS_LAUNCHER,
    ExitCode,
    ensure_tool_exists,
    normalize_exit_code,
    run_tool,
    write_props_file,
)


@pytest.fixture
def action_env(monkeypatch):
    monkeypatch.setenv("GITHUB_ACTION_REPOSITORY", "my-org/mbt-action")
    monkeypatch.setenv("GITHUB_ACTION_REF", "v1")


def _install_launcher(bin_path, body):
    bin_path.mkdir(parents=True, exist_ok=True)
    exe = bin_path / HP_TOOLS_LAUNCHER
    exe.write_text(f"#!/bin/sh\n{body}\n")
    exe.chmod(exe.stat().st_mode | stat.S_IEXEC)
    return exe


class TestNormalizeExitCode:
    """Tests for normalize_exit_code()."""

    @pytest.mark.parametrize(
        "raw, expected",
        [
            (0, ExitCode.PASSED),
            (-1, ExitCode.FAILED),
            (-2, ExitCode.UNSTABLE),
            (-3, ExitCode.ABORTED),
            (4294967294, ExitCode.UNSTABLE),
            (4294967295, ExitCode.FAILED),
            (7, ExitCode.UNKNOWN),
        ],
    )
    def test_mapping(self, raw, expected):
        assert normalize_exit_code(raw) == expected

    def test_killed_process_is_aborted(self):
        assert normalize_exit_code(None) == ExitCode.ABORTED


class TestEnsureToolExists:
    """Tests for ensure_tool_exists()."""

    def test_located_under_action_checkout(self, tmp_path, action_env):
        workspace = tmp_path / "work" / "uft-tests"
        workspace.mkdir(parents=True)
        bin_path = tmp_path / "work" / "_actions" / "my-org" / "mbt-action" / "v1" / "bin"
        _install_launcher(bin_path, "exit 0")

        assert ensure_tool_exists(str(workspace)) == bin_path.resolve()

    def test_missing_workspace(self, action_env):
        with pytest.raises(NotFoundError, match="RUNNER_WORKSPACE"):
            ensure_tool_exists(None)

    def test_missing_action_ref(self, tmp_path, monkeypatch):
        monkeypatch.setenv("GITHUB_ACTION_REPOSITORY", "my-org/mbt-action")
        monkeypatch.delenv("GITHUB_ACTION_REF", raising=False)
        with pytest.raises(NotFoundError, match="GITHUB_ACTION_REF"):
            ensure_tool_exists(str(tmp_path))

    def test_missing_executable(self, tmp_path, action_env):
        with pytest.raises(NotFoundError, match="Failed to locate"):
            ensure_tool_exists(str(tmp_path / "ws"))


class TestRunTool:
    """Tests for run_tool() with a stand-in executable."""

    async def test_passed(self, tmp_path):
        bin_path = tmp_path / "bin"
        _install_launcher(bin_path, 'echo "running $2"\nexit 0')

        code = await run_tool(bin_path, tmp_path / "props.txt")

        assert code == ExitCode.PASSED

    async def test_unknown_code(self, tmp_path):
        bin_path = tmp_path / "bin"
        _install_launcher(bin_path, "echo oops >&2\nexit 5")

        assert await run_tool(bin_path, tmp_path / "props.txt") == ExitCode.UNKNOWN

    async def test_cannot_start(self, tmp_path):
        with pytest.raises(LauncherError, match="Failed to start"):
            await run_tool(tmp_path / "missing", tmp_path / "props.txt")


class TestWritePropsFile:
    """Tests for write_props_file()."""

    def test_lines_in_order(self, tmp_path):
        path = write_props_file(tmp_path / "p.txt", {"runType": "MBT", "a": "1"})
        assert path.read_text() == "runType=MBT\na=1"
