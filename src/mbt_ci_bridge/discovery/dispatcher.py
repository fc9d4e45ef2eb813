"""Send a reconciled ``DiscoveryResult`` to the server.

Actions are grouped by the status the reconciler gave them and sent in a
fixed order: NEW, then DELETED, then MODIFIED. NONE actions are skipped.

Units are never deleted on the server. A DELETED action clears the unit's
repository path and runner link and flips it back to "not automated", so
its history and its use in models survive.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from ..errors import NotFoundError
from .models import Action, DiscoveryResult, Folder, ParamDirection, SyncStatus, UnitParameter
from .reconciler import update_parent_folders

if TYPE_CHECKING:
    from ..core.client import TestManagementClient

logger = logging.getLogger(__name__)

LIST_NODE = "list_node"
MODEL_ITEM = "model_item"
UNIT_SUBTYPE = "unit"
UNIT_PARAMETER_TYPE = "entity_parameter"
UNIT_PARAMETER_SUBTYPE = "unit_parameter"
AUTOMATED = "list_node.automation_status.automated"
NOT_AUTOMATED = "list_node.automation_status.not_automated"


def get_auto_discovered_folder(
    client: TestManagementClient, executor_id: str
) -> Folder:
    """Folder that receives one child folder per discovered test.

    The runner's dedicated folder wins; the workspace-wide git mirror
    folder is the fallback.

    Raises:
        NotFoundError: Neither folder exists.
    """
    folder = client.get_runner_dedicated_folder(executor_id)
    if folder is None:
        folder = client.get_git_mirror_folder()
    if folder is None:
        raise NotFoundError("Failed to get auto-discovered folder")
    return folder


def create_parent_folders(
    client: TestManagementClient, actions: list[Action], parent: Folder
) -> dict[str, Folder]:
    """Child folders of *parent* by name, creating one per missing test name."""
    logger.debug(
        "create_parent_folders: length=%d, folder=%s ...", len(actions), parent.name
    )
    folders = {f.name: f for f in client.fetch_child_folders(parent)}
    missing = {a.test_name for a in actions if a.test_name} - folders.keys()
    if missing:
        folders.update(client.create_folders(missing, parent))
    return folders


def unit_name(action: Action) -> str:
    """Display name of a unit; tool-generated logical names get the test name prepended."""
    if not action.logical_name or action.logical_name.startswith("Action"):
        return f"{action.test_name}:{action.name}"
    return action.logical_name


def build_unit_parameter(
    param: UnitParameter, repository_path: str | None
) -> dict[str, Any]:
    """Parameter body linked to its future unit by repository path."""
    direction = "input" if param.direction == ParamDirection.IN else "output"
    return {
        "type": UNIT_PARAMETER_TYPE,
        "subtype": UNIT_PARAMETER_SUBTYPE,
        "name": param.name,
        "model_item": {"repository_path": repository_path},
        "parameter_type": {
            "id": f"list_node.entity_parameter_type.{direction}",
            "type": LIST_NODE,
        },
        "value": param.default_value,
    }


def build_unit(
    executor_id: str,
    scm_repository_id: str,
    action: Action,
    parent: Folder | None,
    params: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    """Create body (no ``action.id``) or update body (``action.id`` set) for one unit.

    When *params* is given, a parameter body per action parameter is
    appended to it.

    Raises:
        ValueError: A new unit has no parent folder.
    """
    if parent is None and not action.id:
        raise ValueError(
            "Received null parent folder, when trying to create a new unit entity"
        )
    body: dict[str, Any] = {}
    if parent is not None:
        body["parent"] = {"id": parent.id, "type": MODEL_ITEM}
    if action.description:
        body["description"] = action.description
    body["name"] = unit_name(action)
    body["repository_path"] = action.repository_path

    if action.id:
        body["id"] = action.id
    else:
        body.update(
            {
                "type": MODEL_ITEM,
                "subtype": UNIT_SUBTYPE,
                "automation_status": {"id": AUTOMATED, "type": LIST_NODE},
                "test_runner": {"id": executor_id, "type": "executor"},
                "scm_repository": {
                    "id": scm_repository_id,
                    "type": "scm_repository",
                },
            }
        )

    if params is not None:
        params.extend(
            build_unit_parameter(p, action.repository_path)
            for p in action.parameters
        )
    return body


# ---------------------------------------------------------------------------
# Per-status dispatch
# ---------------------------------------------------------------------------


def dispatch_new_actions(
    client: TestManagementClient,
    executor_id: str,
    scm_repository_id: str,
    actions: list[Action],
    auto_discovered_folder: Folder,
) -> None:
    logger.debug(
        "dispatch_new_actions: executor_id=%s, scm_repository_id=%s, length=%d ...",
        executor_id,
        scm_repository_id,
        len(actions),
    )
    folders = create_parent_folders(client, actions, auto_discovered_folder)
    params: list[dict[str, Any]] = []
    units: list[dict[str, Any]] = []
    for action in actions:
        if not action.test_name:
            logger.error("Test name is undefined for action %s", action.name)
            continue
        parent = folders.get(action.test_name)
        if parent is None:
            logger.error("Parent folder for test %s not found", action.test_name)
            continue
        units.append(
            build_unit(executor_id, scm_repository_id, action, parent, params)
        )
    if units:
        client.create_units(units, params)


def dispatch_deleted_actions(
    client: TestManagementClient, actions: list[Action]
) -> None:
    """Revert the units of deleted actions to "not automated"."""
    logger.debug("dispatch_deleted_actions: length=%d ...", len(actions))
    bodies: list[dict[str, Any]] = []
    for action in actions:
        if not action.id:
            logger.error("ID is undefined for action %s", action.name)
            continue
        bodies.append(
            {
                "id": action.id,
                "repository_path": None,
                "automation_status": {"id": NOT_AUTOMATED, "type": LIST_NODE},
                "test_runner": None,
            }
        )
    client.update_units(bodies)


def dispatch_updated_actions(
    client: TestManagementClient,
    executor_id: str,
    scm_repository_id: str,
    actions: list[Action],
    auto_discovered_folder: Folder,
) -> None:
    logger.info("Updating %d actions ...", len(actions))
    folders = update_parent_folders(
        client, scm_repository_id, auto_discovered_folder, actions
    )
    bodies: list[dict[str, Any]] = []
    for action in actions:
        if not action.id:
            logger.error("ID is undefined for action %s", action.name)
            continue
        parent = folders.get(action.test_name) if action.test_name else None
        bodies.append(build_unit(executor_id, scm_repository_id, action, parent))
    client.update_units(bodies)


def group_actions_by_status(
    result: DiscoveryResult,
) -> dict[SyncStatus, list[Action]]:
    grouped: dict[SyncStatus, list[Action]] = {}
    for action in result.all_actions():
        grouped.setdefault(action.sync_status, []).append(action)
    return grouped


def dispatch_discovery_result(
    client: TestManagementClient,
    executor_id: str,
    scm_repository_id: str,
    result: DiscoveryResult,
) -> dict[str, int]:
    """Create, revert and update units for every action of *result*.

    Returns:
        Number of actions sent per status (``new``, ``deleted``,
        ``modified``) and skipped as unchanged (``none``).

    Raises:
        NotFoundError: No folder to hold discovered units exists.
    """
    logger.info("Dispatching discovery results ...")
    grouped = group_actions_by_status(result)
    counts = {status.value: len(grouped.get(status, [])) for status in SyncStatus}
    if not any(grouped.get(s) for s in SyncStatus if s != SyncStatus.NONE):
        logger.info("No unit changes to dispatch")
        return counts

    folder = get_auto_discovered_folder(client, executor_id)

    if grouped.get(SyncStatus.NEW):
        dispatch_new_actions(
            client,
            executor_id,
            scm_repository_id,
            grouped[SyncStatus.NEW],
            folder,
        )
    if grouped.get(SyncStatus.DELETED):
        dispatch_deleted_actions(client, grouped[SyncStatus.DELETED])
    if grouped.get(SyncStatus.MODIFIED):
        dispatch_updated_actions(
            client,
            executor_id,
            scm_repository_id,
            grouped[SyncStatus.MODIFIED],
            folder,
        )
    logger.info("Dispatched discovery results: %s", counts)
    return counts
