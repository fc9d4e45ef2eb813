"""Discovery and synchronisation of UFT test assets.

Modules:

- ``paths``       -- repository-path grammar and file-role classifiers.
- ``scm``         -- changed files between two commits (GitPython).
- ``documents``   -- reading test documents, actions and parameters.
- ``engine``      -- ``Discovery``: full and incremental scans.
- ``reconciler``  -- assigning server operations to discovered actions.
- ``dispatcher``  -- creating, reverting and updating units.
- ``state``       -- ``SyncState``: last synced commit and time.
"""

from .dispatcher import dispatch_discovery_result
from .engine import Discovery
from .models import (
    Action,
    AutomatedTest,
    DiscoveryResult,
    ScmAffectedFile,
    ScmResourceFile,
    SyncStatus,
    TestType,
    ToolType,
)
from .reconciler import prepare_for_sync
from .scm import get_scm_changes
from .state import SyncState

__all__ = [
    "Action",
    "AutomatedTest",
    "Discovery",
    "DiscoveryResult",
    "ScmAffectedFile",
    "ScmResourceFile",
    "SyncState",
    "SyncStatus",
    "TestType",
    "ToolType",
    "dispatch_discovery_result",
    "get_scm_changes",
    "prepare_for_sync",
]
