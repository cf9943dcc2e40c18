"""Commit protocol: submit the transaction's changelist and classify results."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from .exceptions import CommitFailedError
from .store import SubmitError, SubmitInfo, SubmitResult, SubmitValid

if TYPE_CHECKING:
    from .store import RemoteStore

logger = logging.getLogger(__name__)


@dataclass
class CommitReport:
    """Result of a committed transaction.

    Attributes:
        change_id: The submitted changelist, or None if nothing was submitted.
        submitted: Depot paths the depot accepted, in result order.
        notes: Status notes for files accepted with an info status.
        skipped: True when there was nothing to publish.
        cleanup_warnings: Problems cleanup logged after the commit.
    """
    change_id: int | None = None
    submitted: list[str] = field(default_factory=list)
    notes: dict[str, str] = field(default_factory=dict)
    skipped: bool = False
    cleanup_warnings: list[str] = field(default_factory=list)


def classify(results: list[SubmitResult], change_id: int | None = None) -> CommitReport:
    """Fold per-file submit results into a report.

    Any :class:`SubmitError` fails the whole commit: the depot's submit is
    all-or-nothing, so nothing is reported as submitted in that case.

    Raises:
        CommitFailedError: carrying the first error's path and message.
    """
    results = [r for r in results if r is not None]
    for result in results:
        if isinstance(result, SubmitError):
            logger.error("Error submitting files: %s", result.message)
            raise CommitFailedError(result.message, path=result.path, change_id=change_id)

    report = CommitReport(change_id=change_id)
    for result in results:
        if isinstance(result, SubmitInfo):
            logger.info("submitted: %s (%s)", result.path, result.message)
            if result.path:
                report.notes[result.path] = result.message
        elif isinstance(result, SubmitValid):
            logger.info("submitted: %s", result.path)
        else:
            raise TypeError(f"Unknown submit result: {result!r}")
        if result.path:
            report.submitted.append(result.path)
    return report


def submit_changelist(store: RemoteStore, change_id: int) -> CommitReport:
    """Submit *change_id* if it has open files.

    An empty changelist is not submitted; the report has ``skipped=True``.
    """
    open_files = store.refresh_changelist(change_id)
    if not open_files:
        logger.info("Nothing to publish")
        return CommitReport(change_id=None, skipped=True)
    logger.debug("Submitting change %s with %d open file(s)", change_id, len(open_files))
    return classify(store.submit(change_id), change_id)
