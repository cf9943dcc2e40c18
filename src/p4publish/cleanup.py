"""Cleanup and rollback of an ephemeral workspace.

Runs at the end of every transaction, committed or aborted.  Each step is
best-effort: failures are logged and collected, and later steps still run.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .store import RemoteStore
    from .workspace import Workspace

logger = logging.getLogger(__name__)

PENDING = "pending"


@dataclass
class CleanupReport:
    """What cleanup could not do. Empty ``warnings`` means a clean teardown."""
    reverted: list[str] = field(default_factory=list)
    deleted_changes: list[int] = field(default_factory=list)
    workspace_deleted: bool = False
    directory_removed: bool = False
    warnings: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.warnings

    def _warn(self, msg: str, *args, exc_info: bool = False) -> None:
        text = msg % args if args else msg
        logger.warning(text, exc_info=exc_info)
        self.warnings.append(text)


def delete_dir(path: str | os.PathLike[str]) -> bool:
    """Remove a directory tree bottom-up.

    Entries that cannot be removed are logged and left in place; the rest of
    the tree is still removed.  Returns True if *path* is gone afterwards.
    """
    path = Path(path)
    logger.debug("Deleting temporary directory %s", path)
    if not path.exists() and not path.is_symlink():
        return True
    if path.is_symlink() or not path.is_dir():
        try:
            path.unlink()
            return True
        except OSError as exc:
            logger.warning("Couldn't remove %s: %s", path, exc)
            return False

    failed = False
    for dirpath, dirnames, filenames in os.walk(path, topdown=False):
        for name in filenames:
            entry = os.path.join(dirpath, name)
            try:
                os.unlink(entry)
            except OSError as exc:
                failed = True
                logger.warning("Couldn't remove %s: %s", entry, exc)
        for name in dirnames:
            entry = os.path.join(dirpath, name)
            try:
                if os.path.islink(entry):
                    os.unlink(entry)
                else:
                    os.rmdir(entry)
            except OSError as exc:
                failed = True
                logger.warning("Couldn't remove dir %s: %s", entry, exc)
    try:
        path.rmdir()
    except OSError as exc:
        failed = True
        logger.warning("Couldn't remove dir %s: %s", path, exc)
    if failed:
        logger.warning("Please clean up %s yourself.", path)
    return not failed


def cleanup_workspace(
    store: RemoteStore,
    workspace: Workspace,
    *,
    lookback: int = 1000,
) -> CleanupReport:
    """Tear down *workspace*: revert, drop pending changes, delete, rm -r.

    Never raises for depot, lock or filesystem failures; they end up in the
    returned report's ``warnings`` (and in the log).
    """
    report = CleanupReport()
    name = workspace.name
    logger.debug("Cleaning up temporary workspace %s", name)

    # Undo anything opened but never submitted.
    try:
        report.reverted = store.revert([workspace.mapped_root])
    except Exception as exc:
        report._warn("Problem while reverting files of workspace %s: %s", name, exc, exc_info=True)

    # Pending changes survive a revert, e.g. when every put was skipped.
    try:
        pending = store.list_pending_changelists(workspace.owner, name, lookback)
    except Exception as exc:
        report._warn("Error while listing pending changes of workspace %s: %s", name, exc, exc_info=True)
        pending = []
    for change in pending:
        if change.status != PENDING:
            report._warn(
                "Unexpected changelist state while deleting pending changes (change %s, status: %s)",
                change.id, change.status,
            )
            continue
        try:
            store.delete_pending_changelist(change.id)
        except Exception as exc:
            report._warn("Error deleting pending change %s: %s", change.id, exc, exc_info=True)
        else:
            report.deleted_changes.append(change.id)
            logger.debug("Deleted pending change %s", change.id)

    try:
        store.delete_workspace(name)
    except Exception as exc:
        report._warn("Error deleting workspace %s: %s", name, exc, exc_info=True)
    else:
        report.workspace_deleted = True
        logger.debug("Deleted workspace %s", name)

    report.directory_removed = delete_dir(workspace.root)
    if not report.directory_removed:
        report.warnings.append(f"Couldn't remove {workspace.root}")
    return report
