"""Publish transactions: many puts, one atomic changelist submit.

A transaction owns one ephemeral workspace and one pending changelist.  Puts
open files on that changelist; commit submits it in one go; commit and abort
both finish with the same cleanup, so no workspace, pending change or staging
directory outlives the transaction.

Usage::

    from p4publish import DepotRepository, GitDepot
    from p4publish.tx import tx_begin, tx_put, tx_commit, tx_abort

    repo = DepotRepository(GitDepot.open("depot.git", user="alice"))
    tx = tx_begin(repo, "acme/widgets@1.0")
    try:
        tx_put(repo, tx, "build/widgets.jar", "//depot/acme/widgets/1.0/widgets.jar")
        tx_put(repo, tx, "build/widgets.jar.sha1", "//depot/acme/widgets/1.0/widgets.jar.sha1")
    except Exception:
        tx_abort(repo, tx)
        raise
    report = tx_commit(repo, tx)
"""

from __future__ import annotations

import logging
import os
import re
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from .cleanup import CleanupReport, cleanup_workspace
from .commit import CommitReport, submit_changelist
from .config import PublishSettings
from .exceptions import NoActiveTransactionError, RemoteError, TransactionStateError
from .paths import normalize_depot_path
from .staging import PutResult, StageMode, stage_put
from .workspace import Workspace, provision, workspace_name

if TYPE_CHECKING:
    from .repo import DepotRepository
    from .store import RemoteStore

__all__ = [
    "ModuleId", "TxState", "PublishTransaction",
    "tx_begin", "tx_put", "tx_commit", "tx_abort", "tx_status",
]

logger = logging.getLogger(__name__)

_SLASH_FORM = re.compile(r"^(?P<org>[^/@#;]+)/(?P<name>[^/@#;]+)@(?P<rev>\S+)$")
_IVY_FORM = re.compile(r"^(?P<org>[^/@#;]+)#(?P<name>[^/@#;]+);(?P<rev>\S+)$")


@dataclass(frozen=True)
class ModuleId:
    """Organisation, name and revision of the module being published."""
    organisation: str
    name: str
    revision: str

    def __str__(self) -> str:
        return f"{self.organisation}#{self.name};{self.revision}"

    @property
    def description(self) -> str:
        """Changelist description for a publish of this module."""
        return f"Publishing {self}"

    @classmethod
    def parse(cls, text: str) -> ModuleId:
        """Parse ``org/name@rev`` or ``org#name;rev``."""
        text = text.strip()
        m = _SLASH_FORM.match(text) or _IVY_FORM.match(text)
        if m is None:
            raise ValueError(f"Invalid module id {text!r}: expected 'org/name@rev' or 'org#name;rev'")
        return cls(m.group("org"), m.group("name"), m.group("rev"))

    @classmethod
    def coerce(cls, value: ModuleId | str) -> ModuleId:
        return value if isinstance(value, ModuleId) else cls.parse(value)


class TxState(str, Enum):
    NOT_STARTED = "not-started"
    OPEN = "open"
    COMMITTING = "committing"
    COMMITTED = "committed"
    ABORTED = "aborted"

    @property
    def terminal(self) -> bool:
        return self in (TxState.COMMITTED, TxState.ABORTED)


class PublishTransaction:
    """One publish: a workspace, a changelist and the files staged on it.

    The workspace name is reserved when the transaction is created; the
    workspace itself is provisioned by the first :meth:`put`, since its view
    is derived from the first destination.
    """

    def __init__(self, store: RemoteStore, module: ModuleId, *, settings: PublishSettings):
        self._store = store
        self.module = module
        self.settings = settings
        self.token = uuid.uuid4().hex
        self.workspace_name = workspace_name(settings.workspace_prefix, store.user or "", self.token)
        self.state = TxState.NOT_STARTED
        self.workspace: Workspace | None = None
        self.change_id: int | None = None
        self.pending_count = 0
        self._staged: set[str] = set()
        self.operations: list[PutResult] = []
        self.cleanup_report: CleanupReport | None = None
        self._finished = False

    def __repr__(self) -> str:
        return f"PublishTransaction({str(self.module)!r}, {self.workspace_name!r}, state={self.state.value!r})"

    @property
    def id(self) -> str:
        return self.token

    def _require(self, *states: TxState, action: str) -> None:
        if self.state not in states:
            raise TransactionStateError(f"Cannot {action} a transaction that is {self.state.value}")

    # -- staging --------------------------------------------------------------

    def _open(self, destination: str) -> None:
        workspace = provision(self._store, destination, name=self.workspace_name, settings=self.settings)
        try:
            change_id = self._store.create_changelist(self.module.description, workspace.owner, workspace.name)
        except RemoteError:
            logger.error("Error creating changelist in workspace %s", workspace.name)
            cleanup_workspace(self._store, workspace, lookback=self.settings.pending_lookback)
            raise
        self.workspace = workspace
        self.change_id = change_id
        self.state = TxState.OPEN
        logger.debug("Transaction %s open on change %s", self.token, change_id)

    def put(self, source: str | os.PathLike[str], destination: str, *, overwrite: bool = False) -> PutResult:
        """Stage *source* for *destination*.

        A failed put leaves the transaction open: retry it or abort.

        Raises:
            WorkspaceInitError: The first put could not set up the workspace.
            RemoteError: A depot call failed.
            CopyError: The payload could not be copied into the workspace.
        """
        self._require(TxState.NOT_STARTED, TxState.OPEN, action="put into")
        destination = normalize_depot_path(destination)
        if self.workspace is None:
            self._open(destination)
        result = stage_put(
            self._store, self.workspace, self.change_id, source, destination,
            overwrite=overwrite, file_type=self.settings.file_type,
        )
        if result.staged and destination not in self._staged:
            self._staged.add(destination)
            self.pending_count += 1
        self.operations.append(result)
        return result

    # -- completion -----------------------------------------------------------

    def commit(self) -> CommitReport:
        """Submit everything staged, then clean up.

        Raises:
            CommitFailedError: The depot refused a file; nothing was submitted.
            RemoteError: The submit itself failed.
        """
        self._require(TxState.NOT_STARTED, TxState.OPEN, action="commit")
        if self.state is TxState.NOT_STARTED:
            logger.info("Nothing to publish")
            self.state = TxState.COMMITTED
            self._finish()
            return CommitReport(skipped=True)

        logger.debug("Committing transaction %s ...", self.token)
        self.state = TxState.COMMITTING
        try:
            report = submit_changelist(self._store, self.change_id)
        except BaseException:
            self.state = TxState.ABORTED
            self._finish()
            raise
        self.state = TxState.COMMITTED
        cleanup = self._finish()
        if cleanup is not None:
            report.cleanup_warnings = list(cleanup.warnings)
        return report

    def abort(self) -> None:
        """Discard everything staged. Safe to call in any state."""
        if self.state.terminal:
            logger.debug("Transaction %s already %s", self.token, self.state.value)
            return
        logger.debug("Aborting transaction %s", self.token)
        self.state = TxState.ABORTED
        self._finish()

    def _finish(self) -> CleanupReport | None:
        if self._finished:
            return self.cleanup_report
        self._finished = True
        if self.workspace is None:
            return None
        try:
            self.cleanup_report = cleanup_workspace(
                self._store, self.workspace, lookback=self.settings.pending_lookback,
            )
        except Exception as exc:
            logger.exception("Cleanup of workspace %s failed", self.workspace.name)
            self.cleanup_report = CleanupReport(warnings=[str(exc)])
        return self.cleanup_report


# ---------------------------------------------------------------------------
# Handle API
# ---------------------------------------------------------------------------

def _check_handle(repo: DepotRepository, tx: PublishTransaction) -> None:
    if repo.active is not tx:
        raise NoActiveTransactionError(f"Transaction {tx.id} is not active on {repo!r}")


def tx_begin(repo: DepotRepository, module: ModuleId | str) -> PublishTransaction:
    """Start a publish transaction for *module* on *repo*.

    Raises ``AlreadyActiveError`` if *repo* already has one open.
    """
    return repo.begin(module)


def tx_put(
    repo: DepotRepository,
    tx: PublishTransaction,
    source: str | os.PathLike[str],
    destination: str,
    *,
    overwrite: bool = False,
) -> PutResult:
    """Stage one file in *tx*. Returns a skipped result if it exists and *overwrite* is off."""
    _check_handle(repo, tx)
    return repo.put(source, destination, overwrite=overwrite)


def tx_commit(repo: DepotRepository, tx: PublishTransaction) -> CommitReport:
    """Submit *tx* as one changelist and release the repository's slot."""
    _check_handle(repo, tx)
    return repo.commit()


def tx_abort(repo: DepotRepository, tx: PublishTransaction) -> None:
    """Abort *tx*. Never raises; a finished or foreign handle is ignored."""
    if repo.active is not tx:
        logger.debug("Transaction %s is not active, nothing to abort", tx.id)
        return
    repo.abort()


def tx_status(tx: PublishTransaction) -> tuple[list[str], list[str], list[str]]:
    """Return ``(adds, edits, skipped)``: sorted destinations of *tx*'s puts."""
    adds = sorted({op.destination for op in tx.operations if op.mode is StageMode.ADD})
    edits = sorted({op.destination for op in tx.operations if op.mode is StageMode.EDIT})
    skipped = sorted({op.destination for op in tx.operations if op.skipped})
    return adds, edits, skipped
