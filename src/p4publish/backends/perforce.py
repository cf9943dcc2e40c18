"""PerforceDepot: the depot interface on a real Perforce server via P4Python.

Requires the ``p4python`` distribution (``pip install p4publish[p4]``).  The
connection runs with ``exception_level = 1``: server errors raise, warnings
such as "no such file(s)" do not.  Every ``P4Exception`` leaving this module
is wrapped in :class:`~p4publish.exceptions.RemoteError`.
"""

from __future__ import annotations

import logging
import re
from contextlib import contextmanager

from P4 import P4, P4Exception

from ..config import setting_value
from ..exceptions import RemoteError
from ..paths import join
from ..store import (
    ChangelistSummary,
    HeadState,
    SubmitError,
    SubmitInfo,
    SubmitResult,
    SubmitValid,
    WorkspaceSpec,
)

__all__ = ["PerforceDepot"]

logger = logging.getLogger(__name__)

_CHANGE_CREATED = re.compile(r"Change (\d+) created")


def _first_message(p4, exc: P4Exception) -> str:
    errors = list(getattr(p4, "errors", None) or [])
    return errors[0].strip() if errors else str(exc).strip()


class PerforceDepot:
    """A depot connection on a Perforce server.

    Wraps a connected ``P4`` object; use :meth:`connect` to build one from
    server settings.
    """

    def __init__(self, p4):
        self._p4 = p4
        self._p4.exception_level = 1

    def __repr__(self) -> str:
        return f"PerforceDepot({self._p4.port!r}, user={self._p4.user!r})"

    @classmethod
    def connect(
        cls,
        port: str | None = None,
        user: str | None = None,
        password: str | None = None,
        *,
        program: str = "p4publish",
    ) -> PerforceDepot:
        """Connect and, if a password is given, log in.

        Empty values and unexpanded ``${...}`` placeholders fall back to the
        P4 environment (``P4PORT``, ``P4USER``, ``P4PASSWD``).
        """
        p4 = P4()
        p4.prog = program
        port, user, password = setting_value(port), setting_value(user), setting_value(password)
        if port:
            p4.port = port
        if user:
            p4.user = user
        if password:
            p4.password = password
        try:
            p4.connect()
            if password:
                p4.run_login()
        except P4Exception as exc:
            raise RemoteError(f"Unable to connect to {p4.port}: {_first_message(p4, exc)}") from exc
        logger.debug("Connected to %s as %s", p4.port, p4.user)
        return cls(p4)

    def close(self) -> None:
        if self._p4.connected():
            self._p4.disconnect()

    @property
    def user(self) -> str | None:
        return self._p4.user or None

    @contextmanager
    def _call(self, what: str, path: str | None = None):
        try:
            yield
        except P4Exception as exc:
            message = _first_message(self._p4, exc)
            logger.debug("%s failed: %s", what, message)
            raise RemoteError(message, path=path) from exc

    # -- read side --------------------------------------------------------------

    def head_state(self, path: str) -> HeadState:
        with self._call("fstat", path):
            stats = self._p4.run_fstat("-Ol", path)
        stats = [s for s in stats if isinstance(s, dict) and "headAction" in s]
        if not stats:
            return HeadState(exists=False)
        stat = stats[0]
        size = stat.get("fileSize")
        return HeadState(
            exists=True,
            last_action=stat["headAction"],
            head_time=int(stat.get("headTime", 0)),
            size=int(size) if size is not None else None,
        )

    def read(self, path: str) -> bytes:
        with self._call("print", path):
            output = self._p4.run_print("-q", path)
        chunks = [c for c in output if isinstance(c, (bytes, str))]
        if not chunks:
            raise RemoteError("no such file(s).", path=path)
        return b"".join(c if isinstance(c, bytes) else c.encode("utf-8") for c in chunks)

    def list_files(self, parent: str) -> list[str]:
        with self._call("files", parent):
            files = self._p4.run_files("-e", join(parent, "*"))
        return [f["depotFile"] for f in files if isinstance(f, dict) and "depotFile" in f]

    def list_dirs(self, parent: str) -> list[str]:
        with self._call("dirs", parent):
            dirs = self._p4.run_dirs(join(parent, "*"))
        return [d["dir"] for d in dirs if isinstance(d, dict) and "dir" in d]

    # -- workspaces -------------------------------------------------------------

    def create_workspace(self, spec: WorkspaceSpec) -> None:
        with self._call("client"):
            client = self._p4.fetch_client(spec.name)
            client["Root"] = str(spec.root)
            client["Owner"] = spec.owner
            client["Description"] = spec.description
            client["View"] = [str(m) for m in spec.view]
            self._p4.save_client(client)
        logger.debug("Client %s saved.", spec.name)

    def set_active_workspace(self, name: str | None) -> None:
        self._p4.client = name or ""

    def delete_workspace(self, name: str) -> None:
        with self._call("client -d"):
            self._p4.delete_client(name)
        if self._p4.client == name:
            self._p4.client = ""

    # -- staging ----------------------------------------------------------------

    def stage_add(self, paths: list[str], change_id: int, file_type: str = "binary") -> None:
        with self._call("add", paths[0] if len(paths) == 1 else None):
            self._p4.run_add("-c", str(change_id), "-t", file_type, *paths)

    def stage_edit(self, paths: list[str], change_id: int) -> None:
        with self._call("edit", paths[0] if len(paths) == 1 else None):
            self._p4.run_edit("-c", str(change_id), *paths)

    def sync_no_merge(self, paths: list[str]) -> None:
        with self._call("sync -k", paths[0] if len(paths) == 1 else None):
            self._p4.run_sync("-k", *paths)

    def revert(self, paths: list[str]) -> list[str]:
        with self._call("revert"):
            results = self._p4.run_revert("-k", *paths)
        return [r["depotFile"] for r in results if isinstance(r, dict) and "depotFile" in r]

    # -- changelists --------------------------------------------------------------

    def create_changelist(self, description: str, owner: str, workspace: str) -> int:
        with self._call("change"):
            change = self._p4.fetch_change()
            change["Description"] = description
            change["User"] = owner
            change["Client"] = workspace
            change["Files"] = []
            output = self._p4.save_change(change)
        text = " ".join(str(line) for line in output)
        m = _CHANGE_CREATED.search(text)
        if m is None:
            raise RemoteError(f"Unexpected reply creating changelist: {text}")
        return int(m.group(1))

    def refresh_changelist(self, change_id: int) -> list[str]:
        with self._call("opened"):
            opened = self._p4.run_opened("-c", str(change_id))
        return [o["depotFile"] for o in opened if isinstance(o, dict) and "depotFile" in o]

    def submit(self, change_id: int) -> list[SubmitResult]:
        try:
            output = self._p4.run_submit("-c", str(change_id))
        except P4Exception as exc:
            errors = [e.strip() for e in (self._p4.errors or [])] or [str(exc).strip()]
            return [SubmitError(None, e) for e in errors]

        results: list[SubmitResult] = []
        for entry in output:
            if isinstance(entry, dict) and "depotFile" in entry:
                results.append(SubmitValid(entry["depotFile"]))
        for warning in self._p4.warnings or []:
            path = warning.split(" - ", 1)[0].strip()
            results.append(SubmitInfo(path if path.startswith("//") else None, warning.strip()))
        return results

    def list_pending_changelists(self, owner: str, workspace: str, limit: int) -> list[ChangelistSummary]:
        with self._call("changes"):
            changes = self._p4.run_changes("-m", str(limit), "-s", "pending", "-c", workspace, "-u", owner)
        return [
            ChangelistSummary(int(c["change"]), c.get("status", "pending"))
            for c in changes if isinstance(c, dict) and "change" in c
        ]

    def delete_pending_changelist(self, change_id: int) -> None:
        with self._call("change -d"):
            self._p4.run_change("-d", str(change_id))
