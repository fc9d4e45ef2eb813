"""Shared pytest fixtures for mbt-ci-bridge tests."""

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from dotenv import load_dotenv
from git import Actor, Repo

from mbt_ci_bridge.config import Config

load_dotenv()

_AUTHOR = Actor("Test Author", "author@example.com")


def pytest_addoption(parser):
    """Add custom CLI options for test filtering."""
    parser.addoption(
        "--run-live",
        action="store_true",
        default=False,
        help="Run tests that require a live test-management server",
    )


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "live: mark test as requiring a live test-management server"
    )


def pytest_collection_modifyitems(config, items):
    """Skip live tests unless --run-live is passed."""
    if config.getoption("--run-live"):
        # --run-live given: do not skip live tests
        return
    skip_live = pytest.mark.skip(reason="need --run-live option to run")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)


@pytest.fixture
def mock_config(tmp_path):
    """Create a Config instance for testing, rooted in a temp directory."""
    return Config(
        server_url="https://octane.example.com",
        shared_space="1001",
        workspace="1002",
        client_id="client",
        client_secret="secret",
        github_token="ghs_token",
        owner="my-org",
        repo="uft-tests",
        work_path=str(tmp_path / "work"),
        runner_workspace=str(tmp_path / "runner"),
        state_dir=str(tmp_path / "state"),
    )


@pytest.fixture
def mock_client(mock_config):
    """Create a mock TestManagementClient instance for testing."""
    from mbt_ci_bridge.core.client import TestManagementClient

    client = MagicMock(spec=TestManagementClient)
    client.config = mock_config
    return client


@pytest.fixture
def git_repo(tmp_path):
    """Factory fixture: an empty git repository, its path and a ``commit`` helper.

    ``commit(files, remove=())`` writes ``{relative_path: str | bytes}``,
    deletes the paths in *remove*, commits and returns the new hexsha.
    """
    repo_dir = tmp_path / "repo"
    repo_dir.mkdir()
    repo = Repo.init(repo_dir)

    def commit(files=None, remove=(), message="change"):
        for rel_path, content in (files or {}).items():
            target = repo_dir / rel_path
            target.parent.mkdir(parents=True, exist_ok=True)
            if isinstance(content, bytes):
                target.write_bytes(content)
            else:
                target.write_text(content, encoding="utf-8")
            repo.index.add([rel_path])
        if remove:
            repo.index.remove(list(remove), working_tree=True)
        return repo.index.commit(message, author=_AUTHOR, committer=_AUTHOR).hexsha

    return SimpleNamespace(repo=repo, path=repo_dir, commit=commit)
