"""Pydantic models for test discovery and server-side reconciliation.

Defines the data contracts shared by the discovery pipeline:

- ``SyncStatus``, ``TestType``, ``ToolType``, ``ChangeType``: enums.
- ``UnitParameter``, ``Action``, ``AutomatedTest``, ``ScmResourceFile``:
  the locally discovered model. These are mutable: the reconciler updates
  status and remote ids in place before dispatch.
- ``ScmAffectedFile``: one entry of the commit-to-commit change set.
- ``DiscoveryResult``: immutable snapshot handed to reconciliation.
- ``EntityRef``, ``Folder``, ``Unit``: read-only mirrors of server entities.
"""

from __future__ import annotations

from enum import Enum, IntEnum
from typing import Any

from pydantic import BaseModel, Field


class SyncStatus(str, Enum):
    """What the server must do with a discovered entity."""

    NEW = "new"
    MODIFIED = "modified"
    DELETED = "deleted"
    NONE = "none"


class TestType(str, Enum):
    """Kind of UFT test stored in a directory."""

    GUI = "gui"
    API = "api"
    NONE = "none"

    __test__ = False


class ToolType(str, Enum):
    """Which flavour of synchronisation runs.

    ``MBT`` synchronises GUI test actions as model units; ``UFT``
    synchronises whole tests and external data tables.
    """

    UFT = "uft"
    MBT = "mbt"


class ChangeType(str, Enum):
    ADD = "ADD"
    DELETE = "DELETE"
    EDIT = "EDIT"


class ParamDirection(IntEnum):
    IN = 0
    OUT = 1


# ---------------------------------------------------------------------------
# Local model
# ---------------------------------------------------------------------------


class UnitParameter(BaseModel):
    """One action argument read from ``resource.mtr``."""

    name: str
    direction: ParamDirection = ParamDirection.IN
    default_value: str | None = None
    sync_status: SyncStatus = SyncStatus.NEW


class Action(BaseModel):
    """One reusable action of a GUI test, mirrored on the server as a unit.

    Attributes:
        name: Tool-assigned name, e.g. ``Action1``.
        test_name: Name of the owning test.
        logical_name: User-assigned name; equals ``name`` when unset.
        repository_path: ``<package>\\<test>\\<action>:<logicalName>``.
        id: Server unit id once matched.
        moved: The owning test was renamed or moved.
        old_test_name: Test name before the move.
    """

    name: str
    test_name: str
    logical_name: str | None = None
    repository_path: str | None = None
    id: str | None = None
    description: str | None = None
    sync_status: SyncStatus = SyncStatus.NEW
    moved: bool = False
    old_test_name: str | None = None
    parameters: list[UnitParameter] = Field(default_factory=list)


class AutomatedTest(BaseModel):
    """A test directory (GUI ``.tsp`` or API ``.st``) found in the working tree.

    Identity is ``(package_name, name)``. ``package_name`` uses ``\\`` as the
    separator, matching the repository path grammar on the server.
    """

    name: str
    package_name: str = ""
    test_type: TestType = TestType.NONE
    executable: bool = True
    description: str = ""
    actions: list[Action] = Field(default_factory=list)
    sync_status: SyncStatus = SyncStatus.NEW
    is_moved: bool = False
    old_name: str | None = None
    old_package_name: str | None = None
    change_set_src: str | None = None
    change_set_dst: str | None = None

    __test__ = False

    @property
    def key(self) -> str:
        return f"{self.package_name}_{self.name}"


class ScmResourceFile(BaseModel):
    """External data table (``.xls``/``.xlsx``) tracked on the server."""

    name: str
    relative_path: str
    sync_status: SyncStatus = SyncStatus.NEW
    is_moved: bool = False
    old_name: str | None = None
    old_relative_path: str | None = None
    change_set_src: str | None = None
    change_set_dst: str | None = None


class ScmAffectedFile(BaseModel):
    """One test-relevant path changed between two commits.

    Attributes:
        new_path: Path in the new commit (the deleted path for DELETE).
        old_path: Path in the old commit, ``None`` for ADD.
        change_type: ADD, DELETE or EDIT.
        old_id: Blob or commit id on the old side.
        new_id: Blob or commit id on the new side.
    """

    new_path: str
    old_path: str | None = None
    change_type: ChangeType
    old_id: str = ""
    new_id: str = ""

    model_config = {"frozen": True}


class DiscoveryResult(BaseModel):
    """Immutable outcome of one discovery pass.

    The status views are plain filters; they never modify ``tests``.
    """

    new_commit: str
    tests: tuple[AutomatedTest, ...] = ()
    resource_files: tuple[ScmResourceFile, ...] = ()
    is_full_sync: bool = True

    model_config = {"frozen": True}

    def _tests_by(self, status: SyncStatus) -> list[AutomatedTest]:
        return [t for t in self.tests if t.sync_status == status]

    def _resource_files_by(self, status: SyncStatus) -> list[ScmResourceFile]:
        return [f for f in self.resource_files if f.sync_status == status]

    @property
    def has_changes(self) -> bool:
        return bool(self.tests) or bool(self.resource_files)

    @property
    def new_tests(self) -> list[AutomatedTest]:
        return self._tests_by(SyncStatus.NEW)

    @property
    def updated_tests(self) -> list[AutomatedTest]:
        return self._tests_by(SyncStatus.MODIFIED)

    @property
    def deleted_tests(self) -> list[AutomatedTest]:
        return self._tests_by(SyncStatus.DELETED)

    @property
    def new_resource_files(self) -> list[ScmResourceFile]:
        return self._resource_files_by(SyncStatus.NEW)

    @property
    def deleted_resource_files(self) -> list[ScmResourceFile]:
        return self._resource_files_by(SyncStatus.DELETED)

    def all_actions(self) -> list[Action]:
        return [a for t in self.tests for a in t.actions]

    def summary(self) -> dict[str, Any]:
        return {
            "new_commit": self.new_commit,
            "full_sync": self.is_full_sync,
            "new_tests": len(self.new_tests),
            "updated_tests": len(self.updated_tests),
            "deleted_tests": len(self.deleted_tests),
            "actions": len(self.all_actions()),
            "resource_files": len(self.resource_files),
        }


# ---------------------------------------------------------------------------
# Server mirrors
# ---------------------------------------------------------------------------


class EntityRef(BaseModel):
    """Reference to another server entity (``{"id": ..., "type": ...}``)."""

    id: str
    type: str | None = None
    name: str | None = None

    model_config = {"frozen": True}

    @classmethod
    def from_api(cls, data: dict | None) -> EntityRef | None:
        if not data or data.get("id") is None:
            return None
        return cls(
            id=str(data["id"]), type=data.get("type"), name=data.get("name")
        )


class Folder(BaseModel):
    """Model folder holding the units of one test."""

    id: str
    name: str

    model_config = {"frozen": True}

    @classmethod
    def from_api(cls, data: dict) -> Folder:
        return cls(id=str(data["id"]), name=data.get("name") or "")


class Unit(BaseModel):
    """Server-side mirror of one action.

    ``parent`` and ``test_runner`` are absent for units that were created
    manually or whose runner link was reverted.
    """

    id: str
    name: str = ""
    description: str | None = None
    repository_path: str | None = None
    parent: EntityRef | None = None
    test_runner: EntityRef | None = None

    model_config = {"frozen": True}

    @classmethod
    def from_api(cls, data: dict) -> Unit:
        return cls(
            id=str(data["id"]),
            name=data.get("name") or "",
            description=data.get("description"),
            repository_path=data.get("repository_path"),
            parent=EntityRef.from_api(data.get("parent")),
            test_runner=EntityRef.from_api(data.get("test_runner")),
        )
