"""Helpers for the repository path grammar and file-role classification.

Server units are addressed by ``<package>\\<test>\\<action>:<logicalName>``.
The package part may be empty (test at the repository root) and the
logical name defaults to the action name.
"""

from __future__ import annotations

import math
import posixpath
from datetime import datetime

from .models import AutomatedTest, TestType

GUI_TEST_FILE = "Test.tsp"
API_ACTIONS_FILE = "actions.xml"
ACTION_RESOURCE_FILE = "resource.mtr"

_TSP = ".tsp"
_ST = ".st"
_DATA_TABLE_EXTENSIONS = (".xls", ".xlsx")


# ---------------------------------------------------------------------------
# Repository path grammar
# ---------------------------------------------------------------------------


def get_test_path_prefix(test: AutomatedTest, original: bool = False) -> str:
    """``<package>\\<test>``, or just ``<test>`` for root-level tests.

    Args:
        test: The test.
        original: Use the name and package from before a move.
    """
    package = test.old_package_name if original else test.package_name
    name = test.old_name if original else test.name
    return f"{package}\\{name}" if package else f"{name}"


def extract_scm_path_from_action_path(repository_path: str) -> str:
    """Lowercased part before ``:``; the input unchanged when it has no colon."""
    index = repository_path.find(":")
    if index == -1:
        return repository_path
    return repository_path[:index].lower()


def extract_scm_test_path(repository_path: str) -> str | None:
    """Test part of a repository path, or ``None`` when the path is malformed.

    A path is only valid when its last segment is an action name such as
    ``action10``; users can type repository paths by hand on the server.
    """
    scm_path = extract_scm_path_from_action_path(repository_path)
    index = scm_path.rfind("\\")
    if index == -1:
        return None
    action_segment = scm_path[index + 1 : -1]
    if action_segment.lower().startswith("action"):
        return scm_path[:index]
    return None


def extract_action_logical_name(repository_path: str) -> str:
    parts = repository_path.split(":")
    return "" if len(parts) == 1 else parts[1]


def extract_action_name(repository_path: str) -> str:
    """Tool-assigned action name (``Action1``) of a repository path."""
    return repository_path.split(":")[0].split("\\")[-1]


def build_action_repository_path(
    prefix: str, action_name: str, logical_name: str | None
) -> str:
    return f"{prefix}\\{action_name}:{logical_name or action_name}"


# ---------------------------------------------------------------------------
# Escaping
# ---------------------------------------------------------------------------


def escape_query_value(value: str) -> str:
    """Escape a literal for the server query language."""
    return value.replace("\\", "\\\\").replace("(", "\\(").replace(")", "\\)")


def escape_prop_value(value: str) -> str:
    """Escape a value for a Java-style ``.properties`` file read by the launcher."""
    return value.replace("\\", "\\\\").replace(":", "\\:").replace("=", "\\=")


def escape_xml(value: str | None) -> str:
    if not value:
        return ""
    return (
        value.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
        .replace("'", "&apos;")
    )


# ---------------------------------------------------------------------------
# Misc
# ---------------------------------------------------------------------------


def get_timestamp(now: datetime | None = None) -> str:
    """Local time as ``ddMMyyyyHHmmssSSS``, used to name generated files."""
    now = now or datetime.now()
    return now.strftime("%d%m%Y%H%M%S") + f"{now.microsecond // 1000:03d}"


def parse_time_to_float(value: str | None) -> float:
    """Parse a duration like ``"1,234.5"``; NaN when absent or malformed."""
    if value:
        try:
            return float(value.replace(",", ""))
        except ValueError:
            pass
    return math.nan


# ---------------------------------------------------------------------------
# File roles
# ---------------------------------------------------------------------------


def is_test_main_file(file_name: str) -> bool:
    """``.tsp``/``.st`` main file or an API test's ``actions.xml``."""
    lowered = file_name.lower()
    return (
        lowered.endswith(_TSP)
        or lowered.endswith(_ST)
        or posixpath.basename(lowered.replace("\\", "/")) == API_ACTIONS_FILE
    )


def get_test_type(file_path: str) -> TestType:
    """Test type implied by a main file path."""
    lowered = file_path.lower()
    if (
        lowered.endswith(_ST)
        or posixpath.basename(lowered.replace("\\", "/")) == API_ACTIONS_FILE
    ):
        return TestType.API
    if lowered.endswith(_TSP):
        return TestType.GUI
    return TestType.NONE


def get_dir_test_type(entry_names: list[str]) -> TestType:
    """Test type of a directory from its entry names; first match wins."""
    for name in entry_names:
        lowered = name.lower()
        if lowered.endswith(_ST):
            return TestType.API
        if lowered.endswith(_TSP):
            return TestType.GUI
    return TestType.NONE


def is_data_table_file(file_name: str) -> bool:
    return file_name.lower().endswith(_DATA_TABLE_EXTENSIONS)


def is_action_resource_file(file_name: str) -> bool:
    return (
        posixpath.basename(file_name.replace("\\", "/")).lower()
        == ACTION_RESOURCE_FILE
    )
