"""Tree helpers for the git-backed depot, on top of dulwich's object store."""

from __future__ import annotations

from collections import defaultdict
from typing import NamedTuple

from dulwich.objects import Blob, Tree

GIT_FILEMODE_TREE = 0o040000
GIT_FILEMODE_BLOB = 0o100644


class TreeEntry(NamedTuple):
    name: str
    sha: bytes
    mode: int

    @property
    def is_dir(self) -> bool:
        return self.mode == GIT_FILEMODE_TREE


def add_blob(object_store, data: bytes) -> bytes:
    """Store *data* as a blob and return its SHA."""
    blob = Blob.from_string(data)
    object_store.add_object(blob)
    return blob.id


def rebuild_tree(
    object_store,
    base_tree: bytes | None,
    writes: dict[str, bytes],
    removes: set[str],
) -> bytes:
    """Return a new tree with *writes* (path -> blob SHA) and *removes* applied.

    Only the chain of trees above a changed path is rewritten; untouched
    subtrees are shared with *base_tree*.  Directories left empty are pruned.
    """
    sub_writes: dict[str, dict[str, bytes]] = defaultdict(dict)
    sub_removes: dict[str, set[str]] = defaultdict(set)
    entries: dict[bytes, tuple[int, bytes]] = {}

    if base_tree is not None:
        for entry in object_store[base_tree].iteritems():
            entries[entry.path] = (entry.mode, entry.sha)

    for path, blob_sha in writes.items():
        head, _, rest = path.partition("/")
        if rest:
            sub_writes[head][rest] = blob_sha
        else:
            entries[head.encode()] = (GIT_FILEMODE_BLOB, blob_sha)

    for path in removes:
        head, _, rest = path.partition("/")
        if rest:
            sub_removes[head].add(rest)
        else:
            entries.pop(head.encode(), None)

    for subdir in set(sub_writes) | set(sub_removes):
        key = subdir.encode()
        existing = entries.get(key)
        existing_tree = existing[1] if existing and existing[0] == GIT_FILEMODE_TREE else None
        new_sha = rebuild_tree(
            object_store, existing_tree,
            sub_writes.get(subdir, {}), sub_removes.get(subdir, set()),
        )
        if len(object_store[new_sha]) == 0:
            entries.pop(key, None)
        else:
            entries[key] = (GIT_FILEMODE_TREE, new_sha)

    tree = Tree()
    for name, (mode, sha) in sorted(entries.items()):
        tree.add(name, mode, sha)
    object_store.add_object(tree)
    return tree.id


def entry_at_path(object_store, tree_sha: bytes | None, path: str) -> TreeEntry | None:
    """Return the entry at *path* in the tree, or None if missing."""
    if tree_sha is None:
        return None
    segments = path.split("/")
    tree = object_store[tree_sha]
    for i, seg in enumerate(segments):
        if not isinstance(tree, Tree):
            return None
        try:
            mode, sha = tree[seg.encode()]
        except KeyError:
            return None
        if i == len(segments) - 1:
            return TreeEntry(seg, sha, mode)
        tree = object_store[sha]
    return None


def list_entries(object_store, tree_sha: bytes | None, path: str) -> list[TreeEntry]:
    """Entries of the directory at *path* ("" for the root); empty if not a directory."""
    if tree_sha is None:
        return []
    if path:
        entry = entry_at_path(object_store, tree_sha, path)
        if entry is None or not entry.is_dir:
            return []
        tree_sha = entry.sha
    return [
        TreeEntry(e.path.decode(), e.sha, e.mode)
        for e in object_store[tree_sha].iteritems()
    ]
