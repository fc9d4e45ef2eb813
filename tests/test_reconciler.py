"""Tests for discovery.reconciler: matching discovered actions with server units."""

from mbt_ci_bridge.discovery.models import (
    Action,
    AutomatedTest,
    DiscoveryResult,
    EntityRef,
    Folder,
    SyncStatus,
    UnitParameter,
    Unit,
)
from mbt_ci_bridge.discovery.reconciler import (
    handle_added_tests,
    handle_deleted_tests,
    handle_moved_tests,
    handle_updated_tests,
    prepare_for_sync,
    remove_existing_units,
    update_parent_folders,
)


def _action(test, name, logical=None, package="Pkg", **kwargs):
    prefix = f"{package}\\{test}" if package else test
    return Action(
        name=name,
        test_name=test,
        logical_name=logical,
        repository_path=f"{prefix}\\{name}:{logical or name}",
        **kwargs,
    )


def _unit(unit_id, path, name=None, runner=None, parent=None):
    return Unit(
        id=unit_id,
        name=name or path.split(":")[-1],
        repository_path=path,
        test_runner=EntityRef(id=runner) if runner else None,
        parent=EntityRef(id=f"f-{parent}", name=parent) if parent else None,
    )


# -------------------------------------------------------------------------
# Full sync
# -------------------------------------------------------------------------


class TestRemoveExistingUnits:
    """Tests for remove_existing_units()."""

    def test_unmatched_action_stays_new(self):
        test = AutomatedTest(name="T", actions=[_action("T", "Action1")])

        remove_existing_units([test], {})

        assert test.actions[0].sync_status == SyncStatus.NEW
        assert test.actions[0].id is None

    def test_match_without_runner_becomes_modified(self):
        action = _action("T", "Action1")
        test = AutomatedTest(name="T", actions=[action])

        remove_existing_units([test], {action.repository_path: _unit("7", action.repository_path)})

        assert test.actions[0].sync_status == SyncStatus.MODIFIED
        assert test.actions[0].id == "7"

    def test_match_owned_by_runner_is_dropped(self):
        action = _action("T", "Action1")
        test = AutomatedTest(name="T", actions=[action])

        remove_existing_units(
            [test], {action.repository_path: _unit("7", action.repository_path, runner="3")}
        )

        assert test.actions == []

    def test_action_without_path_kept(self):
        test = AutomatedTest(
            name="T", actions=[Action(name="Action1", test_name="T")]
        )

        remove_existing_units([test], {"x": _unit("1", "x")})

        assert len(test.actions) == 1


class TestPrepareForSync:
    """Tests for prepare_for_sync()."""

    def test_full_sync_uses_repository_units(self, mock_client):
        existing = _action("T", "Action1")
        fresh = _action("T", "Action2")
        test = AutomatedTest(name="T", package_name="Pkg", actions=[existing, fresh])
        result = DiscoveryResult(new_commit="c", tests=(test,), is_full_sync=True)
        mock_client.fetch_units_by_scm_repository.return_value = [
            _unit("11", existing.repository_path)
        ]

        returned = prepare_for_sync(mock_client, "5", "77", result)

        assert returned is result
        mock_client.fetch_units_by_scm_repository.assert_called_once_with("77")
        assert [(a.name, a.sync_status, a.id) for a in test.actions] == [
            ("Action1", SyncStatus.MODIFIED, "11"),
            ("Action2", SyncStatus.NEW, None),
        ]

    def test_incremental_sync_runs_every_pass(self, mock_client):
        result = DiscoveryResult(new_commit="c", tests=(), is_full_sync=False)

        prepare_for_sync(mock_client, "5", "77", result)

        mock_client.fetch_units_by_scm_repository.assert_not_called()
        mock_client.fetch_units.assert_not_called()


# -------------------------------------------------------------------------
# Incremental passes
# -------------------------------------------------------------------------


class TestHandleDeletedTests:
    """Tests for handle_deleted_tests()."""

    def test_units_become_deleted_markers(self, mock_client):
        gone = AutomatedTest(
            name="Gone", package_name="Pkg", sync_status=SyncStatus.DELETED
        )
        mock_client.fetch_units.return_value = [
            _unit("1", "Pkg\\Gone\\Action1:Login"),
            _unit("2", "Pkg\\Gone\\Action2:Action2"),
            _unit("3", "Pkg\\Gone2\\Action1:Other"),
        ]

        handle_deleted_tests(mock_client, [gone])

        query = mock_client.fetch_units.call_args[0][0]
        assert query.build() == "repository_path EQ 'Pkg\\\\Gone*'"
        assert [(a.id, a.sync_status) for a in gone.actions] == [
            ("1", SyncStatus.DELETED),
            ("2", SyncStatus.DELETED),
        ]
        assert gone.actions[0].test_name == "Gone"

    def test_no_deleted_tests_no_request(self, mock_client):
        handle_deleted_tests(mock_client, [])
        mock_client.fetch_units.assert_not_called()


class TestHandleAddedTests:
    """Tests for handle_added_tests()."""

    def test_surviving_units_relinked(self, mock_client):
        action = _action("T", "Action1")
        test = AutomatedTest(name="T", package_name="Pkg", actions=[action])
        mock_client.fetch_units.return_value = [_unit("4", action.repository_path)]

        handle_added_tests(mock_client, [test])

        query = mock_client.fetch_units.call_args[0][0]
        assert query.build() == "repository_path IN 'Pkg\\\\T\\\\Action1:Action1'"
        assert action.sync_status == SyncStatus.MODIFIED
        assert action.id == "4"

    def test_no_units_found_keeps_new(self, mock_client):
        action = _action("T", "Action1")
        mock_client.fetch_units.return_value = []

        handle_added_tests(mock_client, [AutomatedTest(name="T", actions=[action])])

        assert action.sync_status == SyncStatus.NEW

    def test_actions_without_paths_skip_request(self, mock_client):
        test = AutomatedTest(name="T", actions=[Action(name="Action1", test_name="T")])

        handle_added_tests(mock_client, [test])

        mock_client.fetch_units.assert_not_called()


class TestHandleUpdatedTests:
    """Tests for handle_updated_tests() three-way matching."""

    def test_three_way_match(self, mock_client):
        unchanged = _action("T", "Action1", "Login", parameters=[UnitParameter(name="p")])
        renamed = _action("T", "Action2", "Pay")
        added = _action("T", "Action3")
        test = AutomatedTest(
            name="T",
            package_name="Pkg",
            sync_status=SyncStatus.MODIFIED,
            actions=[unchanged, renamed, added],
        )
        mock_client.fetch_units.return_value = [
            _unit("1", "Pkg\\T\\Action1:LOGIN"),
            _unit("2", "Pkg\\T\\Action2:Checkout"),
            _unit("4", "Pkg\\T\\Action4:Removed", name="Removed"),
        ]

        handle_updated_tests(mock_client, [test])

        assert unchanged.sync_status == SyncStatus.NONE
        assert unchanged.parameters[0].sync_status == SyncStatus.NONE
        assert renamed.sync_status == SyncStatus.MODIFIED
        assert renamed.id == "2"
        assert added.sync_status == SyncStatus.NEW
        marker = test.actions[-1]
        assert (marker.id, marker.sync_status, marker.test_name) == (
            "4",
            SyncStatus.DELETED,
            "T",
        )

    def test_malformed_server_path_discarded(self, mock_client):
        test = AutomatedTest(name="T", package_name="Pkg", actions=[])
        mock_client.fetch_units.return_value = [_unit("9", "Pkg\\T\\notes:x")]

        handle_updated_tests(mock_client, [test])

        assert test.actions == []

    def test_moved_tests_left_alone(self, mock_client):
        moved = AutomatedTest(name="T", is_moved=True)

        handle_updated_tests(mock_client, [moved])

        mock_client.fetch_units.assert_not_called()


class TestHandleMovedTests:
    """Tests for handle_moved_tests()."""

    def test_units_follow_the_test(self, mock_client):
        kept = _action(
            "Login2",
            "Action1",
            "Login",
            package="New",
            parameters=[UnitParameter(name="p")],
        )
        added = _action("Login2", "Action3", package="New")
        test = AutomatedTest(
            name="Login2",
            package_name="New",
            old_name="Login",
            old_package_name="Old",
            is_moved=True,
            sync_status=SyncStatus.MODIFIED,
            actions=[kept, added],
        )
        mock_client.fetch_units.return_value = [
            _unit("1", "Old\\Login\\Action1:Login"),
            _unit("2", "Old\\Login\\Action2:Gone"),
        ]

        handle_moved_tests(mock_client, [test])

        query = mock_client.fetch_units.call_args[0][0]
        assert query.build() == "repository_path EQ 'Old\\\\Login*'"
        assert kept.sync_status == SyncStatus.MODIFIED
        assert kept.id == "1"
        assert kept.moved is True
        assert kept.old_test_name == "Login"
        assert kept.parameters == []
        assert added.sync_status == SyncStatus.NEW
        marker = test.actions[-1]
        assert (marker.id, marker.name, marker.sync_status) == (
            "2",
            "Action2",
            SyncStatus.DELETED,
        )

    def test_not_moved_tests_ignored(self, mock_client):
        handle_moved_tests(mock_client, [AutomatedTest(name="T")])
        mock_client.fetch_units.assert_not_called()


# -------------------------------------------------------------------------
# Folder names
# -------------------------------------------------------------------------


class TestUpdateParentFolders:
    """Tests for update_parent_folders()."""

    ROOT = Folder(id="100", name="Auto")

    def _moved(self, old, new):
        return Action(
            name="Action1",
            test_name=new,
            old_test_name=old,
            moved=True,
            id="1",
            sync_status=SyncStatus.MODIFIED,
        )

    def test_no_renames(self, mock_client):
        action = Action(name="Action1", test_name="T", moved=True, old_test_name="T")

        assert update_parent_folders(mock_client, "77", self.ROOT, [action]) == {}
        mock_client.fetch_child_folders.assert_not_called()

    def test_existing_target_folder_reused(self, mock_client):
        target = Folder(id="5", name="New")
        mock_client.fetch_child_folders.return_value = [target]

        folders = update_parent_folders(
            mock_client, "77", self.ROOT, [self._moved("Old", "New")]
        )

        assert folders == {"New": target}
        mock_client.update_folders.assert_not_called()

    def test_single_test_folder_renamed(self, mock_client):
        mock_client.fetch_child_folders.side_effect = [
            [],
            [Folder(id="8", name="Old")],
        ]
        mock_client.fetch_units_from_folders.return_value = [
            _unit("1", "Pkg\\Old\\Action1:a", parent="Old"),
            _unit("2", "Pkg\\Old\\Action2:b", parent="Old"),
        ]

        folders = update_parent_folders(
            mock_client, "77", self.ROOT, [self._moved("Old", "New")]
        )

        mock_client.update_folders.assert_called_once_with([{"id": "8", "name": "New"}])
        assert folders == {"New": Folder(id="8", name="New")}
        mock_client.create_folders.assert_not_called()

    def test_shared_folder_gets_new_folder(self, mock_client):
        created = Folder(id="9", name="New")
        mock_client.fetch_child_folders.side_effect = [[], []]
        mock_client.fetch_units_from_folders.return_value = [
            _unit("1", "Pkg\\Old\\Action1:a", parent="Old"),
            _unit("2", "Pkg\\Other\\Action1:b", parent="Old"),
        ]
        mock_client.create_folders.return_value = {"New": created}

        folders = update_parent_folders(
            mock_client, "77", self.ROOT, [self._moved("Old", "New")]
        )

        mock_client.update_folders.assert_not_called()
        mock_client.create_folders.assert_called_once_with({"New"}, self.ROOT)
        assert folders == {"New": created}
