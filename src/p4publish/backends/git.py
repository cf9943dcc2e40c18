"""GitDepot: a Perforce-style depot kept in a bare git repository.

File history lives on ``refs/heads/main``; depot path ``//depot/a/b`` is tree
path ``depot/a/b`` and every submitted changelist is one commit carrying a
``Change: N`` trailer.  Workspaces and changelists are JSON documents stored
as blobs under ``refs/depot/clients/<name>`` and ``refs/depot/changes/<id>``.

The depot enforces the rules a publish has to follow on a real server: new
files can't be added over live ones, edits need a prior sync, opened files
must be inside the workspace view, workspaces with opened files or pending
changes can't be deleted, and a submit either commits every file or none.

Usage::

    depot = GitDepot.open("depot.git", user="alice")
    depot.write({"//depot/acme/readme.txt": b"hello"}, "seed")
    depot.head_state("//depot/acme/readme.txt")
"""

from __future__ import annotations

import json
import logging
import re
import time
from dataclasses import dataclass, field
from pathlib import Path

from dulwich.objects import Commit
from dulwich.repo import Repo

from .._lock import depot_lock
from .._tree import add_blob, entry_at_path, list_entries, rebuild_tree
from ..exceptions import RemoteError
from ..paths import ROOT, WILDCARD, is_under, join, normalize_depot_path
from ..store import (
    DELETE_ACTIONS,
    ChangelistSummary,
    HeadState,
    SubmitError,
    SubmitInfo,
    SubmitResult,
    SubmitValid,
    WorkspaceSpec,
)

__all__ = ["GitDepot", "FileRevision"]

logger = logging.getLogger(__name__)

BRANCH_REF = b"refs/heads/main"
CLIENT_REF_PREFIX = b"refs/depot/clients/"
CHANGE_REF_PREFIX = b"refs/depot/changes/"
COUNTER_REF = b"refs/depot/counter"

PENDING = "pending"
SUBMITTED = "submitted"

_CHANGE_TRAILER = re.compile(r"^Change: (\d+)$", re.MULTILINE)


@dataclass(frozen=True)
class FileRevision:
    """One revision of a depot file (``#rev``)."""
    rev: int
    action: str
    change: int | None
    time: int
    size: int | None
    commit: str
    blob: bytes | None = field(default=None, repr=False)

    @property
    def live(self) -> bool:
        return self.action not in DELETE_ACTIONS


def _client_ref(name: str) -> bytes:
    return CLIENT_REF_PREFIX + name.encode()


def _change_ref(change_id: int) -> bytes:
    return CHANGE_REF_PREFIX + str(change_id).encode()


def _tree_path(path: str) -> str:
    return normalize_depot_path(path)[len(ROOT):]


def _change_number(message: bytes) -> int | None:
    m = _CHANGE_TRAILER.search(message.decode("utf-8", "replace"))
    return int(m.group(1)) if m else None


class GitDepot:
    """A depot connection backed by a bare git repository.

    Each instance is one connection: it has its own user and its own active
    workspace.  Several instances may share a repository.
    """

    def __init__(self, repo: Repo, user: str | None = None):
        self._repo = repo
        self._user = user
        self._client: str | None = None

    def __repr__(self) -> str:
        return f"GitDepot({self._repo.path!r}, user={self._user!r})"

    @classmethod
    def open(
        cls,
        path: str | Path,
        *,
        create: bool = True,
        user: str | None = "p4publish",
    ) -> GitDepot:
        """Open or create a depot repository.

        Args:
            path: Path to the bare repository.
            create: If True (default), create the repository when missing.
                If False, raise FileNotFoundError when missing.
            user: Depot user for this connection.
        """
        path = Path(path)
        if path.exists():
            return cls(Repo(str(path)), user)
        if not create:
            raise FileNotFoundError(f"Depot not found: {path}")
        repo = Repo.init_bare(str(path), mkdir=True)
        repo.refs.set_symbolic_ref(b"HEAD", BRANCH_REF)
        return cls(repo, user)

    def as_user(self, user: str) -> GitDepot:
        """Open another connection to the same depot as *user*."""
        return GitDepot(self._repo, user)

    @property
    def path(self) -> str:
        return self._repo.path

    @property
    def user(self) -> str | None:
        return self._user

    @property
    def active_workspace(self) -> str | None:
        return self._client

    # -- documents --------------------------------------------------------------

    def _locked(self):
        return depot_lock(self._repo.path)

    def _load(self, ref: bytes) -> dict | None:
        try:
            sha = self._repo.refs[ref]
        except KeyError:
            return None
        return json.loads(self._repo.object_store[sha].data)

    def _save(self, ref: bytes, doc: dict) -> None:
        data = json.dumps(doc, sort_keys=True).encode()
        self._repo.refs[ref] = add_blob(self._repo.object_store, data)

    def _drop(self, ref: bytes) -> None:
        del self._repo.refs[ref]

    def _docs(self, prefix: bytes) -> list[dict]:
        docs = []
        for ref in self._repo.refs.allkeys():
            if ref.startswith(prefix):
                doc = self._load(ref)
                if doc is not None:
                    docs.append(doc)
        return docs

    def _changes(self) -> list[dict]:
        """All changelist documents, newest first."""
        return sorted(self._docs(CHANGE_REF_PREFIX), key=lambda d: d["id"], reverse=True)

    def _next_change(self) -> int:
        doc = self._load(COUNTER_REF) or {"change": 0}
        doc["change"] += 1
        self._save(COUNTER_REF, doc)
        return doc["change"]

    # -- history ----------------------------------------------------------------

    def _head(self) -> bytes | None:
        try:
            return self._repo.refs[BRANCH_REF]
        except KeyError:
            return None

    def _head_tree(self) -> bytes | None:
        head = self._head()
        return None if head is None else self._repo.object_store[head].tree

    def history(self, path: str) -> list[FileRevision]:
        """Revisions of *path*, oldest first (``#1`` is the first)."""
        store = self._repo.object_store
        tree_path = _tree_path(path)
        chain = []
        sha = self._head()
        while sha is not None:
            commit = store[sha]
            chain.append(commit)
            sha = commit.parents[0] if commit.parents else None

        revisions: list[FileRevision] = []
        prev: bytes | None = None
        for commit in reversed(chain):
            entry = entry_at_path(store, commit.tree, tree_path)
            blob = entry.sha if entry is not None and not entry.is_dir else None
            if blob == prev:
                continue
            if blob is None:
                action, size = "delete", None
            else:
                action = "add" if prev is None else "edit"
                size = len(store[blob].data)
            revisions.append(FileRevision(
                rev=len(revisions) + 1,
                action=action,
                change=_change_number(commit.message),
                time=commit.commit_time,
                size=size,
                commit=commit.id.decode(),
                blob=blob,
            ))
            prev = blob
        return revisions

    def _last_revision(self, path: str) -> FileRevision | None:
        revisions = self.history(path)
        return revisions[-1] if revisions else None

    def head_state(self, path: str) -> HeadState:
        last = self._last_revision(path)
        if last is None:
            return HeadState(exists=False)
        return HeadState(exists=True, last_action=last.action, head_time=last.time, size=last.size)

    def read(self, path: str, rev: int | None = None) -> bytes:
        """Content of *path* at head, or at revision *rev*."""
        path = normalize_depot_path(path)
        revisions = self.history(path)
        if not revisions:
            raise RemoteError("no such file(s).", path=path)
        if rev is None:
            revision = revisions[-1]
        else:
            if not 1 <= rev <= len(revisions):
                raise RemoteError(f"no file(s) at revision #{rev}.", path=path)
            revision = revisions[rev - 1]
        if not revision.live:
            raise RemoteError(f"file(s) deleted at revision #{revision.rev}.", path=path)
        return self._repo.object_store[revision.blob].data

    def _list(self, parent: str, dirs: bool) -> list[str]:
        parent = parent.rstrip("/")
        entries = list_entries(self._repo.object_store, self._head_tree(), parent[len(ROOT):])
        return [join(parent, e.name) for e in entries if e.is_dir == dirs]

    def list_files(self, parent: str) -> list[str]:
        return self._list(parent, dirs=False)

    def list_dirs(self, parent: str) -> list[str]:
        return self._list(parent, dirs=True)

    # -- direct commits -----------------------------------------------------------

    def _commit(self, writes: dict[str, bytes], removes: set[str], message: str, user: str | None) -> str:
        """Commit on the main branch. Caller holds the depot lock."""
        store = self._repo.object_store
        head = self._head()
        base_tree = None if head is None else store[head].tree
        tree_id = rebuild_tree(
            store, base_tree,
            {_tree_path(p): sha for p, sha in writes.items()},
            {_tree_path(p) for p in removes},
        )

        ident = f"{user or 'unknown'} <{user or 'unknown'}@depot>".encode()
        c = Commit()
        c.tree = tree_id
        c.parents = [] if head is None else [head]
        c.author = c.committer = ident
        c.author_time = c.commit_time = int(time.time())
        c.author_timezone = c.commit_timezone = 0
        msg = message.encode()
        if not msg.endswith(b"\n"):
            msg += b"\n"
        c.message = msg
        c.encoding = b"UTF-8"
        store.add_object(c)
        self._repo.refs[BRANCH_REF] = c.id
        return c.id.decode()

    def _direct_change(self, writes: dict[str, bytes], removes: set[str], message: str) -> int:
        change_id = self._next_change()
        commit = self._commit(writes, removes, f"{message}\n\nChange: {change_id}", self._user)
        self._save(_change_ref(change_id), {
            "id": change_id, "status": SUBMITTED, "client": None, "user": self._user,
            "description": message, "commit": commit,
        })
        return change_id

    def write(self, files: dict[str, bytes], message: str = "Import") -> int:
        """Commit *files* (depot path -> content) directly, bypassing workspaces.

        Returns the new change number.
        """
        store = self._repo.object_store
        writes = {normalize_depot_path(p): add_blob(store, data) for p, data in files.items()}
        with self._locked():
            return self._direct_change(writes, set(), message)

    def remove(self, paths: list[str], message: str = "Delete") -> int:
        """Mark *paths* deleted at head. Returns the new change number."""
        paths = [normalize_depot_path(p) for p in paths]
        with self._locked():
            for path in paths:
                last = self._last_revision(path)
                if last is None or not last.live:
                    raise RemoteError("no such file(s).", path=path)
            return self._direct_change({}, set(paths), message)

    # -- workspaces -------------------------------------------------------------

    def workspaces(self) -> list[str]:
        """Names of all registered workspaces."""
        return sorted(doc["name"] for doc in self._docs(CLIENT_REF_PREFIX))

    def create_workspace(self, spec: WorkspaceSpec) -> None:
        ref = _client_ref(spec.name)
        with self._locked():
            if self._load(ref) is not None:
                raise RemoteError(f"Client '{spec.name}' already exists.")
            self._save(ref, {
                "name": spec.name,
                "owner": spec.owner,
                "root": str(spec.root),
                "view": [[m.depot, m.client] for m in spec.view],
                "description": spec.description,
                "opened": {},
                "have": {},
            })
        logger.debug("Client %s saved.", spec.name)

    def set_active_workspace(self, name: str | None) -> None:
        if name is not None and self._load(_client_ref(name)) is None:
            raise RemoteError(f"Client '{name}' unknown - use 'client' command to create it.")
        self._client = name

    def delete_workspace(self, name: str) -> None:
        ref = _client_ref(name)
        with self._locked():
            doc = self._load(ref)
            if doc is None:
                raise RemoteError(f"Client '{name}' doesn't exist.")
            if doc["opened"]:
                raise RemoteError(
                    f"Client '{name}' has files opened. To delete the client, "
                    "revert any opened files and delete any pending changes first."
                )
            if any(c["client"] == name and c["status"] == PENDING for c in self._changes()):
                raise RemoteError(f"Client '{name}' has pending changes. Delete them first.")
            self._drop(ref)
        if self._client == name:
            self._client = None
        logger.debug("Client %s deleted.", name)

    def _active(self) -> tuple[bytes, dict]:
        if self._client is None:
            raise RemoteError("No client set for this connection.")
        ref = _client_ref(self._client)
        doc = self._load(ref)
        if doc is None:
            raise RemoteError(f"Client '{self._client}' unknown - use 'client' command to create it.")
        return ref, doc

    @staticmethod
    def _local_path(client: dict, path: str) -> Path:
        for depot, _ in client["view"]:
            if is_under(path, depot):
                rest = path[len(depot) - len(WILDCARD) + 1:]
                return Path(client["root"]).joinpath(*rest.split("/"))
        raise RemoteError("file(s) not in client view.", path=path)

    def _pending_change(self, change_id: int, client: str) -> dict:
        change = self._load(_change_ref(change_id))
        if change is None:
            raise RemoteError(f"Change {change_id} unknown.")
        if change["status"] != PENDING:
            raise RemoteError(f"Change {change_id} is already committed.")
        if change["client"] != client:
            raise RemoteError(f"Change {change_id} belongs to client {change['client']}.")
        return change

    # -- staging ----------------------------------------------------------------

    def stage_add(self, paths: list[str], change_id: int, file_type: str = "binary") -> None:
        with self._locked():
            ref, client = self._active()
            self._pending_change(change_id, client["name"])
            for path in map(normalize_depot_path, paths):
                self._local_path(client, path)
                opened = client["opened"].get(path)
                if opened is not None:
                    if opened["change"] == change_id:
                        continue
                    raise RemoteError(f"can't add (already opened for {opened['action']})", path=path)
                last = self._last_revision(path)
                if last is not None and last.live:
                    raise RemoteError("can't add existing file", path=path)
                client["opened"][path] = {"action": "add", "change": change_id, "type": file_type}
            self._save(ref, client)

    def stage_edit(self, paths: list[str], change_id: int) -> None:
        with self._locked():
            ref, client = self._active()
            self._pending_change(change_id, client["name"])
            for path in map(normalize_depot_path, paths):
                self._local_path(client, path)
                opened = client["opened"].get(path)
                if opened is not None:
                    if opened["change"] == change_id:
                        continue
                    raise RemoteError(f"can't edit (already opened for {opened['action']})", path=path)
                last = self._last_revision(path)
                if last is None or not last.live:
                    raise RemoteError("no such file(s).", path=path)
                if client["have"].get(path) != last.commit:
                    raise RemoteError("file(s) not on client.", path=path)
                client["opened"][path] = {"action": "edit", "change": change_id}
            self._save(ref, client)

    def sync_no_merge(self, paths: list[str]) -> None:
        """Record head as the workspace's revision without touching local files."""
        with self._locked():
            ref, client = self._active()
            for path in map(normalize_depot_path, paths):
                self._local_path(client, path)
                last = self._last_revision(path)
                if last is None or not last.live:
                    raise RemoteError("no such file(s).", path=path)
                client["have"][path] = last.commit
            self._save(ref, client)

    def revert(self, paths: list[str]) -> list[str]:
        with self._locked():
            ref, client = self._active()
            reverted = sorted(
                p for p in client["opened"]
                if any(is_under(p, pattern) for pattern in paths)
            )
            for path in reverted:
                del client["opened"][path]
            self._save(ref, client)
        for path in reverted:
            logger.debug("%s - was opened, reverted", path)
        return reverted

    # -- changelists --------------------------------------------------------------

    def create_changelist(self, description: str, owner: str, workspace: str) -> int:
        with self._locked():
            if self._load(_client_ref(workspace)) is None:
                raise RemoteError(f"Client '{workspace}' unknown - use 'client' command to create it.")
            change_id = self._next_change()
            self._save(_change_ref(change_id), {
                "id": change_id, "status": PENDING, "client": workspace, "user": owner,
                "description": description, "commit": None,
            })
        logger.debug("Change %s created.", change_id)
        return change_id

    def refresh_changelist(self, change_id: int) -> list[str]:
        change = self._load(_change_ref(change_id))
        if change is None:
            raise RemoteError(f"Change {change_id} unknown.")
        client = self._load(_client_ref(change["client"])) if change["client"] else None
        if client is None:
            return []
        return sorted(p for p, o in client["opened"].items() if o["change"] == change_id)

    def pending_changes(self) -> list[ChangelistSummary]:
        """Every pending changelist in the depot, newest first."""
        return [ChangelistSummary(c["id"], c["status"]) for c in self._changes() if c["status"] == PENDING]

    def list_pending_changelists(self, owner: str, workspace: str, limit: int) -> list[ChangelistSummary]:
        matches = [
            ChangelistSummary(c["id"], c["status"])
            for c in self._changes()
            if c["status"] == PENDING and c["client"] == workspace and c["user"] == owner
        ]
        return matches[:limit]

    def delete_pending_changelist(self, change_id: int) -> None:
        ref = _change_ref(change_id)
        with self._locked():
            change = self._load(ref)
            if change is None:
                raise RemoteError(f"Change {change_id} unknown.")
            if change["status"] != PENDING:
                raise RemoteError(f"Change {change_id} has been submitted and can't be deleted.")
            client = self._load(_client_ref(change["client"]))
            if client is not None:
                count = sum(1 for o in client["opened"].values() if o["change"] == change_id)
                if count:
                    raise RemoteError(
                        f"Change {change_id} has {count} open file(s) associated with it and can't be deleted."
                    )
            self._drop(ref)
        logger.debug("Change %s deleted.", change_id)

    def submit(self, change_id: int) -> list[SubmitResult]:
        """Submit a pending changelist: every file goes in, or none does.

        Refusals come back as :class:`SubmitError` entries and leave the
        changelist pending with its files still opened.
        """
        store = self._repo.object_store
        with self._locked():
            change = self._load(_change_ref(change_id))
            if change is None:
                raise RemoteError(f"Change {change_id} unknown.")
            if change["status"] != PENDING:
                raise RemoteError(f"Change {change_id} is already committed.")
            client_ref = _client_ref(change["client"])
            client = self._load(client_ref)
            if client is None:
                raise RemoteError(f"Client '{change['client']}' unknown.")
            opened = sorted(p for p, o in client["opened"].items() if o["change"] == change_id)
            if not opened:
                raise RemoteError("No files to submit.")

            errors: list[SubmitResult] = []
            writes: dict[str, bytes] = {}
            unchanged: set[str] = set()
            for path in opened:
                action = client["opened"][path]["action"]
                last = self._last_revision(path)
                if action == "add" and last is not None and last.live:
                    errors.append(SubmitError(path, f"{path} - can't add existing file"))
                    continue
                if action == "edit":
                    if last is None or not last.live:
                        errors.append(SubmitError(path, f"{path} - file(s) deleted at head"))
                        continue
                    if client["have"].get(path) != last.commit:
                        errors.append(SubmitError(path, f"{path} - must sync/resolve #{last.rev} before submitting"))
                        continue
                try:
                    data = self._local_path(client, path).read_bytes()
                except OSError as exc:
                    errors.append(SubmitError(path, f"{path} - {exc.strerror or exc}"))
                    continue
                blob = add_blob(store, data)
                if action == "edit" and blob == last.blob:
                    unchanged.add(path)
                else:
                    writes[path] = blob

            if errors:
                logger.debug("Submit of change %s failed: %d error(s)", change_id, len(errors))
                return errors

            commit = None
            if writes:
                message = f"{change['description']}\n\nChange: {change_id}"
                commit = self._commit(writes, set(), message, change["user"])
            for path in opened:
                del client["opened"][path]
            for path in writes:
                client["have"][path] = commit
            change["status"] = SUBMITTED
            change["commit"] = commit
            self._save(client_ref, client)
            self._save(_change_ref(change_id), change)

        logger.debug("Change %s submitted.", change_id)
        return [
            SubmitInfo(path, f"{path} - unchanged, reverted") if path in unchanged else SubmitValid(path)
            for path in opened
        ]
