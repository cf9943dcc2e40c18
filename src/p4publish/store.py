"""The depot client interface consumed by the publish transaction.

Backends (:mod:`p4publish.backends`) implement :class:`RemoteStore`.  The
transaction code only ever talks to this protocol, so a connected P4Python
handle and the local git-backed depot are interchangeable.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol, Union, runtime_checkable

__all__ = [
    "HeadState", "ViewMapping", "WorkspaceSpec", "ChangelistSummary",
    "SubmitValid", "SubmitInfo", "SubmitError", "SubmitResult", "RemoteStore",
]

DELETE_ACTIONS = frozenset({"delete", "move/delete", "purge", "archive"})


@dataclass(frozen=True)
class HeadState:
    """Head revision facts about one depot path."""
    exists: bool
    last_action: str | None = None
    head_time: int | None = None
    size: int | None = None

    @property
    def live(self) -> bool:
        """True if the head revision is a real file (known action, not deleted)."""
        return self.exists and self.last_action is not None and self.last_action not in DELETE_ACTIONS


@dataclass(frozen=True)
class ViewMapping:
    """One line of a workspace view: ``//depot/... //client/...``."""
    depot: str
    client: str

    def __str__(self) -> str:
        return f"{self.depot} {self.client}"


@dataclass(frozen=True)
class WorkspaceSpec:
    """Everything the depot needs to register a workspace."""
    name: str
    owner: str
    root: Path
    view: tuple[ViewMapping, ...] = field(default_factory=tuple)
    description: str = "Created by p4publish."


@dataclass(frozen=True)
class ChangelistSummary:
    id: int
    status: str


# ---------------------------------------------------------------------------
# Per-file submit outcome
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SubmitValid:
    """The file went in."""
    path: str


@dataclass(frozen=True)
class SubmitInfo:
    """The depot accepted the file with a note (e.g. content unchanged)."""
    path: str | None
    message: str


@dataclass(frozen=True)
class SubmitError:
    """The depot refused the file; the submission as a whole failed."""
    path: str | None
    message: str


SubmitResult = Union[SubmitValid, SubmitInfo, SubmitError]


@runtime_checkable
class RemoteStore(Protocol):
    """An authenticated depot connection.

    Every method raises :class:`~p4publish.exceptions.RemoteError` when the
    backend reports a connection, access or request failure.  Paths are in
    depot notation (``//depot/dir/file``); ``paths`` arguments accept the
    ``/...`` recursive wildcard where the depot supports it.
    """

    @property
    def user(self) -> str | None: ...

    # -- existence / metadata -------------------------------------------------

    def head_state(self, path: str) -> HeadState: ...

    def read(self, path: str) -> bytes: ...

    def list_files(self, parent: str) -> list[str]: ...

    def list_dirs(self, parent: str) -> list[str]: ...

    # -- workspaces -----------------------------------------------------------

    def create_workspace(self, spec: WorkspaceSpec) -> None: ...

    def set_active_workspace(self, name: str | None) -> None: ...

    def delete_workspace(self, name: str) -> None: ...

    # -- staging --------------------------------------------------------------

    def stage_add(self, paths: list[str], change_id: int, file_type: str = "binary") -> None: ...

    def stage_edit(self, paths: list[str], change_id: int) -> None: ...

    def sync_no_merge(self, paths: list[str]) -> None: ...

    def revert(self, paths: list[str]) -> list[str]: ...

    # -- changelists ----------------------------------------------------------

    def create_changelist(self, description: str, owner: str, workspace: str) -> int: ...

    def refresh_changelist(self, change_id: int) -> list[str]: ...

    def submit(self, change_id: int) -> list[SubmitResult]: ...

    def list_pending_changelists(self, owner: str, workspace: str, limit: int) -> list[ChangelistSummary]: ...

    def delete_pending_changelist(self, change_id: int) -> None: ...
