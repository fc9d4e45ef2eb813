"""Discovery engine: builds the test model from the working tree.

A *full scan* walks the whole tree and reports every test as NEW. An
*incremental scan* only looks at the files changed since the last synced
commit and reports NEW, MODIFIED and DELETED tests and data tables. The
reconciler later decides what those statuses mean on the server.
"""

from __future__ import annotations

import logging
import posixpath
from pathlib import Path

from git import Repo
from git.exc import GitCommandError

from ..core.async_utils import run_sync
from ..errors import TspParseError
from .documents import (
    get_test_description,
    load_test_document,
    parse_actions_and_parameters,
    to_html_description,
)
from .models import (
    AutomatedTest,
    ChangeType,
    DiscoveryResult,
    ScmAffectedFile,
    ScmResourceFile,
    SyncStatus,
    TestType,
    ToolType,
)
from .paths import (
    GUI_TEST_FILE,
    get_dir_test_type,
    get_test_path_prefix,
    get_test_type,
    is_action_resource_file,
    is_data_table_file,
    is_test_main_file,
)
from .scm import get_scm_changes

logger = logging.getLogger(__name__)

FOLDERS_TO_SKIP = (".git", ".github")


# ---------------------------------------------------------------------------
# Git helpers
# ---------------------------------------------------------------------------


def authenticated_url(repo_url: str, token: str) -> str:
    """Embed *token* into an https clone URL."""
    return repo_url.replace("https://", f"https://x-access-token:{token}@", 1)


def checkout_repo(work_dir: Path, repo_url: str, token: str) -> bool:
    """Clone or update the repository in *work_dir*.

    Returns:
        True when the repository was freshly cloned (a full scan is needed).

    Raises:
        GitCommandError: ``git`` failed.
    """
    auth_url = authenticated_url(repo_url, token)
    try:
        if (work_dir / ".git").exists():
            logger.info("Working directory is a git repository, pulling updates")
            repo = Repo(work_dir)
            origin = repo.remotes.origin
            current_url = next(iter(origin.urls), "")
            if current_url != auth_url:
                logger.info("Remote URL does not match, setting authenticated URL")
                origin.set_url(auth_url)
            origin.pull()
            return False

        logger.info("Cloning repository into %s", work_dir)
        work_dir.mkdir(parents=True, exist_ok=True)
        Repo.clone_from(auth_url, work_dir)
        return True
    except GitCommandError as exc:
        logger.error("Git checkout failed: %s", exc.stderr or exc)
        raise


def get_head_commit(work_dir: Path) -> str:
    return Repo(work_dir).head.commit.hexsha


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------


class Discovery:
    """Scan a working tree for UFT tests.

    Args:
        tool_type: ``MBT`` discovers GUI test actions; ``UFT`` discovers
            tests and data tables.
        work_dir: Root of the working tree.
        repo_url: Clone URL, used by ``start_scanning``.
        token: Token used to authenticate the clone URL.
    """

    def __init__(
        self,
        tool_type: ToolType,
        work_dir: Path,
        repo_url: str = "",
        token: str = "",
    ) -> None:
        self.tool_type = tool_type
        self.work_dir = work_dir
        self.repo_url = repo_url
        self.token = token

    async def start_scanning(self, old_commit: str) -> DiscoveryResult:
        """Check out the repository and scan it.

        A full scan runs after a fresh clone or when nothing was synced
        yet; otherwise only the changes since *old_commit* are scanned.
        """
        logger.info("BEGIN scanning %s", self.work_dir)
        cloned = await run_sync(
            checkout_repo, self.work_dir, self.repo_url, self.token
        )
        new_commit = await run_sync(get_head_commit, self.work_dir)

        if cloned or not old_commit:
            tests, resource_files = await run_sync(self.scan_full)
            is_full_sync = True
        else:
            affected = await run_sync(
                get_scm_changes,
                self.tool_type,
                str(self.work_dir),
                old_commit,
                new_commit,
            )
            tests, resource_files = await run_sync(self.scan_changes, affected)
            is_full_sync = False

        logger.info("END scanning, full sync: %s", is_full_sync)
        return DiscoveryResult(
            new_commit=new_commit,
            tests=tuple(tests),
            resource_files=tuple(resource_files),
            is_full_sync=is_full_sync,
        )

    # ------------------------------------------------------------------
    # Full scan
    # ------------------------------------------------------------------

    def scan_full(self) -> tuple[list[AutomatedTest], list[ScmResourceFile]]:
        """Walk the whole tree; every test and data table is NEW.

        Directory entries are visited in name order so repeated scans of an
        unchanged tree give identical results.
        """
        tests: list[AutomatedTest] = []
        resource_files: list[ScmResourceFile] = []
        self._scan_dir(self.work_dir, tests, resource_files)
        return tests, resource_files

    def _scan_dir(
        self,
        directory: Path,
        tests: list[AutomatedTest],
        resource_files: list[ScmResourceFile],
    ) -> None:
        if directory.name in FOLDERS_TO_SKIP:
            return

        entries = sorted(directory.iterdir(), key=lambda p: p.name)
        test_type = get_dir_test_type([e.name for e in entries])
        if test_type == TestType.NONE:
            for entry in entries:
                if entry.is_dir():
                    self._scan_dir(entry, tests, resource_files)
                elif is_data_table_file(entry.name):
                    resource_files.append(self._create_resource_file(entry))
        elif self._is_tracked(test_type):
            try:
                tests.append(self.create_test_ex(directory, test_type))
            except TspParseError as exc:
                logger.error("Skipping test %s: %s", directory, exc)

    def _is_tracked(self, test_type: TestType) -> bool:
        return not (self.tool_type == ToolType.MBT and test_type == TestType.API)

    # ------------------------------------------------------------------
    # Model construction
    # ------------------------------------------------------------------

    def _relative_path(self, path: Path) -> str:
        return path.relative_to(self.work_dir).as_posix()

    def create_test(
        self,
        test_dir: Path,
        test_type: TestType,
        old_id: str | None = None,
        new_id: str | None = None,
    ) -> AutomatedTest:
        """Bare test for *test_dir*; its package uses ``\\`` separators."""
        segments = self._relative_path(test_dir).split("/")
        return AutomatedTest(
            name=test_dir.name,
            package_name="\\".join(segments[:-1]),
            test_type=test_type,
            executable=True,
            actions=[],
            sync_status=SyncStatus.NEW,
            change_set_src=old_id,
            change_set_dst=new_id,
        )

    def create_test_ex(
        self,
        test_dir: Path,
        test_type: TestType,
        old_id: str | None = None,
        new_id: str | None = None,
    ) -> AutomatedTest:
        """Test for *test_dir* with description and, for MBT GUI tests, actions.

        Raises:
            TspParseError: The test document is missing or malformed.
        """
        test = self.create_test(test_dir, test_type, old_id, new_id)
        doc = load_test_document(test_dir, test_type)
        description = to_html_description(get_test_description(doc, test_type))
        test.description = description or ""

        if self.tool_type == ToolType.MBT and test_type == TestType.GUI:
            test.actions = parse_actions_and_parameters(
                doc, get_test_path_prefix(test), test.name, test_dir
            )
        return test

    def _create_resource_file(
        self,
        file_path: Path,
        old_id: str | None = None,
        new_id: str | None = None,
    ) -> ScmResourceFile:
        return ScmResourceFile(
            name=str(file_path),
            relative_path=self._relative_path(file_path),
            sync_status=SyncStatus.NEW,
            change_set_src=old_id,
            change_set_dst=new_id,
        )

    # ------------------------------------------------------------------
    # Incremental scan
    # ------------------------------------------------------------------

    def scan_changes(
        self, affected_files: list[ScmAffectedFile]
    ) -> tuple[list[AutomatedTest], list[ScmResourceFile]]:
        """Turn a change set into test and data-table changes."""
        tests: list[AutomatedTest] = []
        resource_files: list[ScmResourceFile] = []
        action_files: list[ScmAffectedFile] = []

        for affected in affected_files:
            full_path = self.work_dir / affected.new_path
            try:
                if is_test_main_file(affected.new_path):
                    self._handle_test_change(affected, full_path, tests)
                elif self.tool_type == ToolType.UFT and is_data_table_file(
                    affected.new_path
                ):
                    self._handle_data_table_change(
                        affected, full_path, resource_files
                    )
                elif self.tool_type == ToolType.MBT and is_action_resource_file(
                    affected.new_path
                ):
                    action_files.append(affected)
            except TspParseError as exc:
                logger.error("Skipping change of %s: %s", affected.new_path, exc)

        # Parameter edits only touch resource.mtr; resync the owning test.
        for affected in action_files:
            try:
                self._handle_action_resource_change(
                    affected, self.work_dir / affected.new_path, tests
                )
            except TspParseError as exc:
                logger.error("Skipping change of %s: %s", affected.new_path, exc)

        tests = remove_duplicated_updated_tests(tests)
        resource_files = remove_false_positive_data_tables(
            [t for t in tests if t.sync_status == SyncStatus.DELETED],
            resource_files,
            SyncStatus.DELETED,
        )
        resource_files = remove_false_positive_data_tables(
            [t for t in tests if t.sync_status == SyncStatus.NEW],
            resource_files,
            SyncStatus.NEW,
        )
        tests.sort(key=lambda t: (t.package_name, t.name))
        resource_files.sort(key=lambda f: f.relative_path)
        return tests, resource_files

    def _handle_test_change(
        self,
        affected: ScmAffectedFile,
        full_path: Path,
        tests: list[AutomatedTest],
    ) -> None:
        test_dir = full_path.parent
        test_type = get_test_type(affected.new_path)
        if not self._is_tracked(test_type):
            return
        exists = full_path.exists()
        if exists:
            test = self.create_test_ex(
                test_dir, test_type, affected.old_id, affected.new_id
            )
        else:
            test = self.create_test(
                test_dir, test_type, affected.old_id, affected.new_id
            )

        # Each branch requires the file state the change type implies; a
        # squashed history can add and remove the same file.
        if affected.change_type == ChangeType.ADD:
            if exists:
                tests.append(test)
        elif affected.change_type == ChangeType.DELETE:
            if not exists:
                test.executable = False
                test.sync_status = SyncStatus.DELETED
                tests.append(test)
        elif affected.change_type == ChangeType.EDIT:
            if exists:
                update_old_data(test, affected)
                test.is_moved = is_test_moved(test)
                test.sync_status = SyncStatus.MODIFIED
                tests.append(test)

    def _handle_data_table_change(
        self,
        affected: ScmAffectedFile,
        full_path: Path,
        resource_files: list[ScmResourceFile],
    ) -> None:
        resource_file = self._create_resource_file(
            full_path, affected.old_id, affected.new_id
        )
        exists = full_path.exists()
        if affected.change_type == ChangeType.ADD:
            parent = full_path.parent
            names = [p.name for p in parent.iterdir()] if parent.is_dir() else []
            if exists and get_dir_test_type(names) == TestType.NONE:
                resource_files.append(resource_file)
        elif affected.change_type == ChangeType.DELETE:
            if not exists:
                resource_file.sync_status = SyncStatus.DELETED
                resource_files.append(resource_file)

    def _handle_action_resource_change(
        self,
        affected: ScmAffectedFile,
        full_path: Path,
        tests: list[AutomatedTest],
    ) -> None:
        """Re-read the GUI test owning a changed ``resource.mtr`` as MODIFIED.

        Skipped when the owning test is already part of the change set or no
        longer exists.
        """
        test_dir = full_path.parent.parent
        if not (test_dir / GUI_TEST_FILE).exists():
            logger.debug(
                "No GUI test owns %s, ignoring the change", affected.new_path
            )
            return
        candidate = self.create_test(test_dir, TestType.GUI)
        if any(t.key == candidate.key for t in tests):
            return
        test = self.create_test_ex(
            test_dir, TestType.GUI, affected.old_id, affected.new_id
        )
        test.old_name = test.name
        test.old_package_name = test.package_name
        test.is_moved = False
        test.sync_status = SyncStatus.MODIFIED
        tests.append(test)


# ---------------------------------------------------------------------------
# Post-processing
# ---------------------------------------------------------------------------


def update_old_data(test: AutomatedTest, affected: ScmAffectedFile) -> None:
    """Derive the pre-change test name and package from the old path."""
    old_path = affected.old_path
    if not old_path or not old_path.strip():
        return
    parts = old_path.split("/")
    if len(parts) < 2:
        return
    old_name = parts[-2]
    test.old_name = old_name
    old_package = ""
    # Only when the test is not at the repository root
    if len(parts) > 2:
        old_package = "\\".join(parts[:-2])
    test.old_package_name = old_package


def is_test_moved(test: AutomatedTest) -> bool:
    """A test moved when its name or its package changed."""
    if (
        test.old_name
        and test.old_name.strip()
        and test.old_package_name is not None
        and test.name.strip()
    ):
        return (
            test.name != test.old_name
            or test.package_name != test.old_package_name
        )
    return False


def remove_duplicated_updated_tests(
    tests: list[AutomatedTest],
) -> list[AutomatedTest]:
    """Keep the first MODIFIED entry per test; one test can own several changed files."""
    seen: set[str] = set()
    kept: list[AutomatedTest] = []
    for test in tests:
        if test.sync_status == SyncStatus.MODIFIED:
            if test.key in seen:
                continue
            seen.add(test.key)
        kept.append(test)
    return kept


def remove_false_positive_data_tables(
    tests: list[AutomatedTest],
    resource_files: list[ScmResourceFile],
    status: SyncStatus,
) -> list[ScmResourceFile]:
    """Drop *status* data tables that live inside one of *tests*.

    Such files belong to the test (its own data sheet) and are reported
    through the test-level change.
    """
    if not tests or not resource_files:
        return resource_files
    test_paths = {
        posixpath.join(*t.package_name.split("\\"), t.name)
        if t.package_name
        else t.name
        for t in tests
    }
    return [
        f
        for f in resource_files
        if f.sync_status != status
        or not any(
            test_path in posixpath.dirname(f.relative_path)
            for test_path in test_paths
        )
    ]
