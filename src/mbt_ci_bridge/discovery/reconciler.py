"""Match discovered tests against units already on the server.

``prepare_for_sync`` rewrites the action lists of the tests in a
``DiscoveryResult`` so that every action carries the operation the
dispatcher must perform:

* NEW -- no unit exists yet;
* MODIFIED -- a unit exists (``action.id`` is set) and must be updated;
* DELETED -- a marker synthesized from a server unit whose action is gone;
* NONE -- unit and action agree; nothing to send.

Matching is done with dictionaries keyed by repository path (or bare
action name for moved tests) and set differences over their keys; server
unit lists are never modified while iterating.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from ..core.query import Query
from .models import Action, AutomatedTest, DiscoveryResult, Folder, SyncStatus, Unit
from .paths import (
    escape_query_value,
    extract_action_logical_name,
    extract_action_name,
    extract_scm_path_from_action_path,
    extract_scm_test_path,
    get_test_path_prefix,
)

if TYPE_CHECKING:
    from ..core.client import TestManagementClient

logger = logging.getLogger(__name__)


def prepare_for_sync(
    client: TestManagementClient,
    executor_id: str,
    scm_repository_id: str,
    result: DiscoveryResult,
) -> DiscoveryResult:
    """Assign server operations to every action of *result*.

    Args:
        client: Server client.
        executor_id: Test runner owning the repository.
        scm_repository_id: SCM repository whose units are reconciled.
        result: Discovery outcome; its tests are updated in place.

    Returns:
        *result*, for chaining into the dispatcher.
    """
    if result.is_full_sync:
        logger.info(
            "Preparing full sync dispatch with MBT for executor %s", executor_id
        )
        units = client.fetch_units_by_scm_repository(scm_repository_id)
        remove_existing_units(
            list(result.tests),
            {u.repository_path: u for u in units if u.repository_path},
        )
        return result

    logger.info(
        "Preparing incremental sync dispatch with MBT for executor %s", executor_id
    )
    handle_deleted_tests(client, result.deleted_tests)
    handle_added_tests(client, result.new_tests)
    handle_updated_tests(client, result.updated_tests)
    handle_moved_tests(client, result.updated_tests)
    return result


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def unit_to_action(unit: Unit, test_name: str, status: SyncStatus) -> Action:
    """Marker action standing for an existing unit."""
    return Action(
        id=unit.id,
        name=unit.name,
        test_name=test_name,
        logical_name=unit.name,
        repository_path=unit.repository_path,
        sync_status=status,
    )


def _test_prefix_query(test: AutomatedTest, original: bool) -> Query:
    prefix = escape_query_value(get_test_path_prefix(test, original))
    return Query.field("repository_path").equal(f"{prefix}*")


def _units_of_test(units: list[Unit], prefix: str) -> list[Unit]:
    """Units whose repository path lies under the test path *prefix*."""
    needle = f"{prefix}\\"
    return [
        u for u in units if u.repository_path and u.repository_path.startswith(needle)
    ]


def _fetch_units_by_prefixes(
    client: TestManagementClient, tests: list[AutomatedTest], original: bool
) -> list[Unit]:
    query = Query.any_of([_test_prefix_query(t, original) for t in tests])
    return client.fetch_units(query) if query is not None else []


def remove_existing_units(
    tests: list[AutomatedTest], units_by_path: dict[str, Unit]
) -> None:
    """Link actions to the units already registered under their path.

    Actions without a repository path or without a matching unit stay as
    they are. A match that already belongs to a test runner is tracked
    elsewhere and its action is dropped; any other match turns the action
    MODIFIED with the unit's id.
    """
    for test in tests:
        kept: list[Action] = []
        for action in test.actions:
            unit = (
                units_by_path.get(action.repository_path)
                if action.repository_path
                else None
            )
            if unit is None:
                kept.append(action)
                continue
            if unit.test_runner is not None:
                continue
            action.sync_status = SyncStatus.MODIFIED
            action.id = unit.id
            kept.append(action)
        test.actions = kept


# ---------------------------------------------------------------------------
# Incremental passes
# ---------------------------------------------------------------------------


def handle_deleted_tests(
    client: TestManagementClient, deleted_tests: list[AutomatedTest]
) -> None:
    """Replace the (empty) action lists of deleted tests with DELETED markers."""
    if not deleted_tests:
        return
    units = _fetch_units_by_prefixes(client, deleted_tests, original=False)
    claimed: set[str] = set()
    for test in deleted_tests:
        prefix = get_test_path_prefix(test, original=False)
        owned = [u for u in _units_of_test(units, prefix) if u.id not in claimed]
        claimed.update(u.id for u in owned)
        test.actions = [
            unit_to_action(u, test.name, SyncStatus.DELETED) for u in owned
        ]
    logger.info(
        "Marked %d units of %d deleted tests for removal",
        len(claimed),
        len(deleted_tests),
    )


def handle_added_tests(
    client: TestManagementClient, new_tests: list[AutomatedTest]
) -> None:
    """Link actions of new tests to units that survived a previous sync."""
    if not new_tests:
        return
    logger.info("Processing new tests. Count: %d.", len(new_tests))
    candidates = [t for t in new_tests if not t.is_moved]
    paths = [
        escape_query_value(a.repository_path)
        for t in candidates
        for a in t.actions
        if a.repository_path
    ]
    if not paths:
        logger.warning("No repository paths found for new tests.")
        return
    units = client.fetch_units(Query.field("repository_path").in_(paths))
    if not units:
        logger.warning(
            "No units found on the server for the given repository paths."
        )
        return
    remove_existing_units(
        candidates, {u.repository_path: u for u in units if u.repository_path}
    )


def handle_updated_tests(
    client: TestManagementClient, updated_tests: list[AutomatedTest]
) -> None:
    """Three-way match of the actions of tests modified in place.

    Keys are lowercased SCM paths (the part before ``:``):

    * local only -- the action stays NEW;
    * server only -- a DELETED marker is appended to the owning test;
    * both -- NONE when the logical names agree (case-insensitive),
      otherwise MODIFIED with the unit id.

    Parameters are never compared; all of them are set to NONE.
    """
    tests = [t for t in updated_tests if not t.is_moved]
    if not tests:
        return
    logger.info("Processing updated tests. Count: %d.", len(tests))

    local: dict[str, Action] = {
        extract_scm_path_from_action_path(a.repository_path): a
        for t in tests
        for a in t.actions
        if a.repository_path
    }
    remote: dict[str, Unit] = {
        extract_scm_path_from_action_path(u.repository_path): u
        for u in _fetch_units_by_prefixes(client, tests, original=False)
        if u.repository_path
    }

    added = local.keys() - remote.keys()
    for key in added:
        local[key].sync_status = SyncStatus.NEW
    if added:
        logger.debug("Found %d added actions in updated tests", len(added))

    tests_by_prefix = {
        get_test_path_prefix(t, original=False).lower(): t for t in tests
    }
    deleted = 0
    for key in sorted(remote.keys() - local.keys()):
        unit = remote[key]
        test_path = extract_scm_test_path(key)
        if test_path is None:
            logger.warning(
                'Repository path %s of unit id: %s, name: "%s" is not valid and will be discarded',
                key,
                unit.id,
                unit.name,
            )
            continue
        test = tests_by_prefix.get(test_path)
        if test is None:
            logger.warning(
                "Unit %s (%s) does not belong to any updated test", unit.id, key
            )
            continue
        test.actions.append(unit_to_action(unit, test.name, SyncStatus.DELETED))
        deleted += 1
    if deleted:
        logger.info("Found %d deleted actions in updated tests", deleted)

    for key in local.keys() & remote.keys():
        action, unit = local[key], remote[key]
        remote_logical = extract_action_logical_name(unit.repository_path or "")
        local_logical = action.logical_name or action.name
        if local_logical.lower() == remote_logical.lower():
            action.sync_status = SyncStatus.NONE
        else:
            action.id = unit.id
            action.sync_status = SyncStatus.MODIFIED
        for param in action.parameters:
            param.sync_status = SyncStatus.NONE


def handle_moved_tests(
    client: TestManagementClient, updated_tests: list[AutomatedTest]
) -> None:
    """Carry units of renamed or moved tests over to the new location.

    Units are fetched under the pre-move prefix and matched by bare action
    name. Matched actions become MODIFIED and moved, and lose their
    parameters. Server-only actions get DELETED markers; local-only
    actions are only logged and keep their NEW status.
    """
    moved = [t for t in updated_tests if t.is_moved]
    if not moved:
        return
    units = _fetch_units_by_prefixes(client, moved, original=True)
    matched_ids: set[str] = set()

    for test in moved:
        prefix = get_test_path_prefix(test, original=True)
        by_name: dict[str, Unit] = {
            extract_action_name(u.repository_path): u
            for u in _units_of_test(units, prefix)
            if u.id not in matched_ids
        }
        matched_ids.update(u.id for u in by_name.values())
        local_names = {a.name for a in test.actions}

        added = local_names - by_name.keys()
        if added:
            logger.info(
                "Found %d added actions for moved test %s", len(added), test.name
            )

        removed = sorted(by_name.keys() - local_names)
        if removed:
            logger.info(
                "Found %d deleted actions for moved test %s", len(removed), test.name
            )

        for action in test.actions:
            unit = by_name.get(action.name)
            if unit is None:
                continue
            action.id = unit.id
            action.sync_status = SyncStatus.MODIFIED
            action.moved = True
            action.old_test_name = test.old_name
            action.parameters = []

        for name in removed:
            marker = unit_to_action(by_name[name], test.name, SyncStatus.DELETED)
            marker.name = name
            test.actions.append(marker)

    if len(matched_ids) < len(units):
        logger.warning("Not all server units were mapped to moved tests")


# ---------------------------------------------------------------------------
# Folder names
# ---------------------------------------------------------------------------


def _distinct_tests(units: list[Unit]) -> int:
    return len({extract_scm_test_path(u.repository_path or "") for u in units})


def update_parent_folders(
    client: TestManagementClient,
    scm_repository_id: str,
    auto_discovered_folder: Folder,
    actions: list[Action],
) -> dict[str, Folder]:
    """Follow test renames with their unit folders.

    Every moved action whose test name changed maps its old folder name to
    the new test name. When no folder carries the new name yet, the old
    folder is renamed in place if all its units belong to one test;
    otherwise a new folder is created and the old one stays untouched.

    Returns:
        Folders by name: folders already bearing a new name, renamed
        folders under their new name, created folders, and the old folders
        that could not be renamed under their old name. Empty when no test
        name changed.
    """
    renames: dict[str, str] = {}
    for action in actions:
        if (
            action.moved
            and action.old_test_name
            and action.test_name != action.old_test_name
        ):
            renames[action.old_test_name] = action.test_name
    if not renames:
        return {}

    existing = {
        f.name: f
        for f in client.fetch_child_folders(
            auto_discovered_folder, sorted(set(renames.values()))
        )
    }
    to_rename = [old for old, new in renames.items() if new not in existing]
    if not to_rename:
        return existing

    units_by_folder: dict[str, list[Unit]] = {}
    for unit in client.fetch_units_from_folders(scm_repository_id, to_rename):
        parent_name = unit.parent.name if unit.parent else None
        if not parent_name:
            logger.warning("Unit %s has no parent folder, skipping...", unit.name)
            continue
        units_by_folder.setdefault(parent_name, []).append(unit)

    shared = {
        name
        for name in to_rename
        if _distinct_tests(units_by_folder.get(name, [])) > 1
    }
    renamable = [name for name in to_rename if name not in shared]

    folders = dict(existing)
    if renamable:
        old_folders = client.fetch_child_folders(auto_discovered_folder, renamable)
        client.update_folders(
            [{"id": f.id, "name": renames[f.name]} for f in old_folders]
        )
        for f in old_folders:
            folders[renames[f.name]] = Folder(id=f.id, name=renames[f.name])
        logger.info("Renamed %d unit folders", len(old_folders))

    if shared:
        created = client.create_folders(
            {renames[name] for name in shared}, auto_discovered_folder
        )
        folders.update(created)
        for f in client.fetch_child_folders(auto_discovered_folder, sorted(shared)):
            folders.setdefault(f.name, f)
        logger.info(
            "Created %d folders for tests sharing a folder with other tests",
            len(created),
        )
    return folders
