"""Exceptions for p4publish."""

from __future__ import annotations


class PublishError(Exception):
    """Base class for every error raised by p4publish."""


class TransactionStateError(PublishError, RuntimeError):
    """A transaction method was called in a state that does not allow it."""


class AlreadyActiveError(TransactionStateError):
    """Raised by ``begin`` while another transaction is open on the same repository."""


class NoActiveTransactionError(TransactionStateError):
    """Raised when a put or commit arrives without an open transaction."""


class WorkspaceInitError(PublishError):
    """The ephemeral workspace could not be set up locally."""


class RemoteError(PublishError):
    """A depot call failed (connection, access or request error).

    Attributes:
        message: The backend's own error text.
        path: Depot path the call was about, if any.
    """

    def __init__(self, message: str, path: str | None = None):
        self.message = message
        self.path = path
        super().__init__(f"{path}: {message}" if path else message)


class CopyError(PublishError):
    """Copying a payload into the workspace failed.

    ``reason`` is ``"mkdir"`` when the parent directory could not be created
    and ``"io"`` when reading or writing failed part-way.
    """

    def __init__(self, source: str, destination: str, reason: str, detail: str = ""):
        self.source = source
        self.destination = destination
        self.reason = reason
        if reason == "mkdir":
            msg = f"Can't copy {source} to {destination}: cannot create parent directory"
        else:
            msg = f"Error copying {source} to {destination}"
        if detail:
            msg = f"{msg} ({detail})"
        super().__init__(msg)


class CommitFailedError(PublishError):
    """The depot rejected a file while submitting the changelist.

    The whole transaction is considered failed; cleanup still runs.
    """

    def __init__(self, message: str, path: str | None = None, change_id: int | None = None):
        self.message = message
        self.path = path
        self.change_id = change_id
        super().__init__(f"Can't submit file! ({message})")
