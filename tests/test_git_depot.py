"""Tests for the git-backed depot."""

import pytest

from p4publish import GitDepot
from p4publish.exceptions import RemoteError
from p4publish.store import SubmitError, SubmitInfo, SubmitValid, ViewMapping, WorkspaceSpec

JAR = "//depot/acme/widgets.jar"
SHA = "//depot/acme/widgets.jar.sha1"


@pytest.fixture
def client(depot, tmp_path):
    """Register and activate workspace ``ws`` mapping ``//depot/...``."""
    root = tmp_path / "ws"
    root.mkdir()
    depot.create_workspace(WorkspaceSpec(
        name="ws", owner="alice", root=root, view=(ViewMapping("//depot/...", "//ws/..."),),
    ))
    depot.set_active_workspace("ws")
    return root


def _stage(root, path, data):
    local = root.joinpath(*path[len("//depot/"):].split("/"))
    local.parent.mkdir(parents=True, exist_ok=True)
    local.write_bytes(data)


class TestOpen:
    def test_create(self, tmp_path):
        depot = GitDepot.open(tmp_path / "d.git", user="bob")
        assert depot.user == "bob"
        assert (tmp_path / "d.git").is_dir()

    def test_reopen(self, tmp_path):
        GitDepot.open(tmp_path / "d.git").write({JAR: b"x"})
        assert GitDepot.open(tmp_path / "d.git", create=False).read(JAR) == b"x"

    def test_missing_without_create(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            GitDepot.open(tmp_path / "d.git", create=False)

    def test_as_user_shares_history(self, depot):
        depot.write({JAR: b"x"})
        bob = depot.as_user("bob")
        assert bob.user == "bob"
        assert bob.read(JAR) == b"x"


class TestHistory:
    def test_empty(self, depot):
        assert depot.history(JAR) == []
        state = depot.head_state(JAR)
        assert not state.exists
        assert not state.live

    def test_add_edit_delete(self, depot):
        c1 = depot.write({JAR: b"one"})
        c2 = depot.write({JAR: b"two!"})
        depot.write({SHA: b"unrelated"})
        c3 = depot.remove([JAR])
        revs = depot.history(JAR)
        assert [r.action for r in revs] == ["add", "edit", "delete"]
        assert [r.change for r in revs] == [c1, c2, c3]
        assert [r.rev for r in revs] == [1, 2, 3]
        assert revs[1].size == 4

        state = depot.head_state(JAR)
        assert state.exists
        assert state.last_action == "delete"
        assert not state.live

    def test_read_revisions(self, depot):
        depot.write({JAR: b"one"})
        depot.write({JAR: b"two"})
        assert depot.read(JAR) == b"two"
        assert depot.read(JAR, rev=1) == b"one"
        with pytest.raises(RemoteError, match="no file"):
            depot.read(JAR, rev=3)

    def test_read_missing_or_deleted(self, depot):
        with pytest.raises(RemoteError, match="no such file"):
            depot.read(JAR)
        depot.write({JAR: b"x"})
        depot.remove([JAR])
        with pytest.raises(RemoteError, match="deleted"):
            depot.read(JAR)

    def test_remove_missing(self, depot):
        with pytest.raises(RemoteError):
            depot.remove([JAR])

    def test_listing(self, depot):
        depot.write({
            "//depot/acme/widgets/1.0/widgets.jar": b"a",
            "//depot/acme/gadgets/2.0/gadgets.jar": b"b",
            "//depot/acme/readme.txt": b"c",
        })
        assert depot.list_files("//depot/acme") == ["//depot/acme/readme.txt"]
        assert depot.list_dirs("//depot/acme") == ["//depot/acme/gadgets", "//depot/acme/widgets"]
        assert depot.list_dirs("//depot") == ["//depot/acme"]
        assert depot.list_files("//depot/nothing") == []


class TestWorkspaces:
    def test_duplicate(self, depot, client):
        with pytest.raises(RemoteError, match="already exists"):
            depot.create_workspace(WorkspaceSpec(name="ws", owner="alice", root=client))

    def test_activate_unknown(self, depot):
        with pytest.raises(RemoteError, match="unknown"):
            depot.set_active_workspace("ghost")

    def test_delete(self, depot, client):
        depot.delete_workspace("ws")
        assert depot.workspaces() == []
        assert depot.active_workspace is None

    def test_delete_unknown(self, depot):
        with pytest.raises(RemoteError, match="doesn't exist"):
            depot.delete_workspace("ghost")

    def test_delete_with_opened_files(self, depot, client):
        change = depot.create_changelist("d", "alice", "ws")
        depot.stage_add([JAR], change)
        with pytest.raises(RemoteError, match="has files opened"):
            depot.delete_workspace("ws")

    def test_delete_with_pending_change(self, depot, client):
        depot.create_changelist("d", "alice", "ws")
        with pytest.raises(RemoteError, match="pending changes"):
            depot.delete_workspace("ws")

    def test_no_active_client(self, depot):
        with pytest.raises(RemoteError, match="No client"):
            depot.sync_no_merge([JAR])


class TestStaging:
    def test_add_existing(self, depot, client):
        depot.write({JAR: b"x"})
        change = depot.create_changelist("d", "alice", "ws")
        with pytest.raises(RemoteError, match="can't add existing file"):
            depot.stage_add([JAR], change)

    def test_add_outside_view(self, depot, client):
        change = depot.create_changelist("d", "alice", "ws")
        with pytest.raises(RemoteError, match="not in client view"):
            depot.stage_add(["//other/a.jar"], change)

    def test_add_twice_same_change(self, depot, client):
        change = depot.create_changelist("d", "alice", "ws")
        depot.stage_add([JAR], change)
        depot.stage_add([JAR], change)
        assert depot.refresh_changelist(change) == [JAR]

    def test_add_in_another_change(self, depot, client):
        first = depot.create_changelist("d", "alice", "ws")
        second = depot.create_changelist("d", "alice", "ws")
        depot.stage_add([JAR], first)
        with pytest.raises(RemoteError, match="already opened"):
            depot.stage_add([JAR], second)

    def test_edit_requires_sync(self, depot, client):
        depot.write({JAR: b"x"})
        change = depot.create_changelist("d", "alice", "ws")
        with pytest.raises(RemoteError, match="not on client"):
            depot.stage_edit([JAR], change)
        depot.sync_no_merge([JAR])
        depot.stage_edit([JAR], change)
        assert depot.refresh_changelist(change) == [JAR]

    def test_revert_wildcard(self, depot, client):
        change = depot.create_changelist("d", "alice", "ws")
        depot.stage_add([JAR, SHA], change)
        assert depot.revert(["//depot/..."]) == [JAR, SHA]
        assert depot.refresh_changelist(change) == []


class TestChangelists:
    def test_numbers_increase(self, depot, client):
        first = depot.create_changelist("d", "alice", "ws")
        second = depot.create_changelist("d", "alice", "ws")
        assert second == first + 1

    def test_unknown_workspace(self, depot):
        with pytest.raises(RemoteError):
            depot.create_changelist("d", "alice", "ghost")

    def test_list_pending_filters(self, depot, client):
        a = depot.create_changelist("d", "alice", "ws")
        depot.create_changelist("d", "bob", "ws")
        b = depot.create_changelist("d", "alice", "ws")
        pending = depot.list_pending_changelists("alice", "ws", 10)
        assert [c.id for c in pending] == [b, a]
        assert all(c.status == "pending" for c in pending)
        assert [c.id for c in depot.list_pending_changelists("alice", "ws", 1)] == [b]

    def test_delete_pending(self, depot, client):
        change = depot.create_changelist("d", "alice", "ws")
        depot.delete_pending_changelist(change)
        assert depot.pending_changes() == []

    def test_delete_with_open_files(self, depot, client):
        change = depot.create_changelist("d", "alice", "ws")
        depot.stage_add([JAR], change)
        with pytest.raises(RemoteError, match="open file"):
            depot.delete_pending_changelist(change)


class TestSubmit:
    def test_submit_adds(self, depot, client):
        change = depot.create_changelist("Publishing acme#widgets;1.0", "alice", "ws")
        _stage(client, JAR, b"jar")
        _stage(client, SHA, b"sha")
        depot.stage_add([JAR, SHA], change)
        results = depot.submit(change)
        assert results == [SubmitValid(JAR), SubmitValid(SHA)]
        assert depot.read(JAR) == b"jar"
        assert depot.history(JAR)[-1].change == change
        assert depot.refresh_changelist(change) == []
        assert depot.pending_changes() == []
        depot.delete_workspace("ws")

    def test_submit_edit(self, depot, client):
        depot.write({JAR: b"v1"})
        change = depot.create_changelist("d", "alice", "ws")
        depot.sync_no_merge([JAR])
        depot.stage_edit([JAR], change)
        _stage(client, JAR, b"v2")
        assert depot.submit(change) == [SubmitValid(JAR)]
        assert depot.read(JAR) == b"v2"
        assert depot.read(JAR, rev=1) == b"v1"

    def test_unchanged_edit_is_info(self, depot, client):
        depot.write({JAR: b"same"})
        change = depot.create_changelist("d", "alice", "ws")
        depot.sync_no_merge([JAR])
        depot.stage_edit([JAR], change)
        _stage(client, JAR, b"same")
        [result] = depot.submit(change)
        assert isinstance(result, SubmitInfo)
        assert "unchanged" in result.message
        assert len(depot.history(JAR)) == 1

    def test_all_or_nothing(self, depot, client):
        change = depot.create_changelist("d", "alice", "ws")
        _stage(client, JAR, b"mine")
        _stage(client, SHA, b"mine")
        depot.stage_add([JAR, SHA], change)
        depot.as_user("bob").write({JAR: b"theirs"})

        results = depot.submit(change)
        assert results == [SubmitError(JAR, f"{JAR} - can't add existing file")]
        assert depot.read(JAR) == b"theirs"
        assert depot.history(SHA) == []
        assert depot.refresh_changelist(change) == [JAR, SHA]

    def test_stale_edit(self, depot, client):
        depot.write({JAR: b"v1"})
        change = depot.create_changelist("d", "alice", "ws")
        depot.sync_no_merge([JAR])
        depot.stage_edit([JAR], change)
        depot.write({JAR: b"v2 from elsewhere"})
        _stage(client, JAR, b"v3")
        [result] = depot.submit(change)
        assert isinstance(result, SubmitError)
        assert "must sync/resolve #2" in result.message

    def test_missing_local_file(self, depot, client):
        change = depot.create_changelist("d", "alice", "ws")
        depot.stage_add([JAR], change)
        [result] = depot.submit(change)
        assert isinstance(result, SubmitError)
        assert result.path == JAR

    def test_empty_change(self, depot, client):
        change = depot.create_changelist("d", "alice", "ws")
        with pytest.raises(RemoteError, match="No files to submit"):
            depot.submit(change)

    def test_submitted_change_is_final(self, depot, client):
        change = depot.create_changelist("d", "alice", "ws")
        _stage(client, JAR, b"x")
        depot.stage_add([JAR], change)
        depot.submit(change)
        with pytest.raises(RemoteError, match="already committed"):
            depot.submit(change)
        with pytest.raises(RemoteError, match="can't be deleted"):
            depot.delete_pending_changelist(change)
