"""Tests for workspace cleanup and rollback."""

import os

from p4publish.cleanup import cleanup_workspace, delete_dir
from p4publish.exceptions import RemoteError
from p4publish.staging import stage_put
from p4publish.store import ChangelistSummary, ViewMapping
from p4publish.workspace import Workspace, provision

DEST = "//depot/acme/a.jar"


class TestDeleteDir:
    def test_removes_tree(self, tmp_path):
        root = tmp_path / "ws"
        (root / "a" / "b").mkdir(parents=True)
        (root / "a" / "b" / "f.txt").write_bytes(b"x")
        (root / "top.txt").write_bytes(b"y")
        assert delete_dir(root)
        assert not root.exists()

    def test_missing_is_fine(self, tmp_path):
        assert delete_dir(tmp_path / "nope")

    def test_partial_failure_keeps_going(self, tmp_path, monkeypatch, caplog):
        root = tmp_path / "ws"
        root.mkdir()
        (root / "stuck.txt").write_bytes(b"x")
        (root / "free.txt").write_bytes(b"y")
        real_unlink = os.unlink

        def unlink(path, *args, **kwargs):
            if str(path).endswith("stuck.txt"):
                raise PermissionError(13, "Permission denied")
            return real_unlink(path, *args, **kwargs)

        monkeypatch.setattr(os, "unlink", unlink)
        with caplog.at_level("WARNING", logger="p4publish"):
            assert not delete_dir(root)
        assert (root / "stuck.txt").exists()
        assert not (root / "free.txt").exists()
        assert "Please clean up" in caplog.text


class TestCleanupWorkspace:
    def test_full_teardown(self, depot, settings, payload, assert_clean):
        ws = provision(depot, DEST, name="ws1", settings=settings)
        change = depot.create_changelist("desc", "alice", "ws1")
        stage_put(depot, ws, change, payload("a.jar"), DEST)

        report = cleanup_workspace(depot, ws)
        assert report.ok
        assert report.reverted == [DEST]
        assert report.deleted_changes == [change]
        assert report.workspace_deleted
        assert report.directory_removed
        assert depot.active_workspace is None
        assert_clean()

    def test_change_without_files_is_deleted(self, depot, settings, assert_clean):
        ws = provision(depot, DEST, name="ws1", settings=settings)
        change = depot.create_changelist("desc", "alice", "ws1")
        report = cleanup_workspace(depot, ws)
        assert report.reverted == []
        assert report.deleted_changes == [change]
        assert_clean()

    def test_failures_are_collected(self, tmp_path, caplog):
        class Unreachable:
            def revert(self, paths):
                raise RemoteError("connect to server failed")

            def list_pending_changelists(self, owner, workspace, limit):
                raise RemoteError("connect to server failed")

            def delete_workspace(self, name):
                raise RemoteError("connect to server failed")

        root = tmp_path / "ws1"
        root.mkdir()
        ws = Workspace("ws1", "alice", root, ViewMapping("//depot/...", "//ws1/..."))
        with caplog.at_level("WARNING", logger="p4publish"):
            report = cleanup_workspace(Unreachable(), ws)
        assert len(report.warnings) == 3
        assert not report.ok
        assert not report.workspace_deleted
        assert report.directory_removed
        assert not root.exists()
        assert "connect to server failed" in caplog.text

    def test_unexpected_status_is_skipped(self, tmp_path):
        class Odd:
            def __init__(self):
                self.deleted = []

            def revert(self, paths):
                return []

            def list_pending_changelists(self, owner, workspace, limit):
                assert limit == 5
                return [ChangelistSummary(9, "submitted"), ChangelistSummary(10, "pending")]

            def delete_pending_changelist(self, change_id):
                self.deleted.append(change_id)

            def delete_workspace(self, name):
                pass

        store = Odd()
        ws = Workspace("ws1", "alice", tmp_path / "ws1", ViewMapping("//depot/...", "//ws1/..."))
        report = cleanup_workspace(store, ws, lookback=5)
        assert store.deleted == [10]
        assert report.deleted_changes == [10]
        assert any("Unexpected changelist state" in w for w in report.warnings)

    def test_os_error_does_not_stop_later_steps(self, tmp_path, caplog):
        class LockedOut:
            def __init__(self):
                self.deleted_changes = []
                self.deleted_workspaces = []

            def revert(self, paths):
                raise PermissionError(13, "Permission denied", "depot.lock")

            def list_pending_changelists(self, owner, workspace, limit):
                return [ChangelistSummary(4, "pending")]

            def delete_pending_changelist(self, change_id):
                self.deleted_changes.append(change_id)

            def delete_workspace(self, name):
                self.deleted_workspaces.append(name)

        store = LockedOut()
        root = tmp_path / "ws1"
        (root / "acme").mkdir(parents=True)
        (root / "acme" / "a.jar").write_bytes(b"x")
        ws = Workspace("ws1", "alice", root, ViewMapping("//depot/...", "//ws1/..."))
        with caplog.at_level("WARNING", logger="p4publish"):
            report = cleanup_workspace(store, ws)
        assert store.deleted_changes == [4]
        assert store.deleted_workspaces == ["ws1"]
        assert report.workspace_deleted
        assert report.directory_removed
        assert not root.exists()
        assert len(report.warnings) == 1
        assert "Permission denied" in report.warnings[0]
        assert "PermissionError" in caplog.text
