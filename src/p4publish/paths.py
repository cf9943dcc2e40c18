"""Depot path helpers.

Depot paths look like ``//depot/org/module/1.0/module.jar``: the ``//`` root
marker, a depot name, then the path inside the depot.
"""

from __future__ import annotations

ROOT = "//"
WILDCARD = "/..."


def normalize_depot_path(path: str) -> str:
    """Validate a depot path and collapse a trailing slash.

    Raises ``ValueError`` for paths that do not start with ``//``, lack a
    file part below the depot, or contain empty, ``.`` or ``..`` segments.
    """
    if not path.startswith(ROOT):
        raise ValueError(f"Not a depot path: {path!r}")
    body = path[len(ROOT):].rstrip("/")
    segments = body.split("/")
    if len(segments) < 2:
        raise ValueError(f"Depot path has no file below the depot: {path!r}")
    for seg in segments:
        if not seg:
            raise ValueError(f"Empty segment in depot path: {path!r}")
        if seg in (".", ".."):
            raise ValueError(f"Invalid depot path segment: {seg!r}")
    return ROOT + "/".join(segments)


def split_depot_path(path: str) -> tuple[str, str]:
    """Split ``//depot/a/b`` into ``("//depot", "a/b")``."""
    path = normalize_depot_path(path)
    depot, rest = path[len(ROOT):].split("/", 1)
    return ROOT + depot, rest


def view_root(path: str) -> str:
    """Return the mapped root for *path*: the root marker plus its depot."""
    return split_depot_path(path)[0]


def is_under(path: str, pattern: str) -> bool:
    """Match *path* against a depot pattern, honouring a trailing ``/...``."""
    if pattern.endswith(WILDCARD):
        prefix = pattern[: -len(WILDCARD)]
        return path.startswith(prefix + "/")
    return path == pattern


def join(parent: str, name: str) -> str:
    return f"{parent.rstrip('/')}/{name}"


def basename(path: str) -> str:
    return path.rstrip("/").rsplit("/", 1)[-1]
