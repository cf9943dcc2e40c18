import logging

from .repo import DepotRepository
from .resource import Resource
from .config import PublishSettings
from .backends.git import GitDepot, FileRevision
from .tx import ModuleId, PublishTransaction, TxState
from .tx import tx_begin, tx_put, tx_commit, tx_abort, tx_status
from .staging import PutResult, StageMode
from .commit import CommitReport
from .cleanup import CleanupReport
from .store import RemoteStore, HeadState, SubmitValid, SubmitInfo, SubmitError
from .exceptions import (
    PublishError, TransactionStateError, AlreadyActiveError, NoActiveTransactionError,
    WorkspaceInitError, RemoteError, CopyError, CommitFailedError,
)

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "DepotRepository", "Resource", "PublishSettings", "GitDepot", "FileRevision",
    "ModuleId", "PublishTransaction", "TxState",
    "tx_begin", "tx_put", "tx_commit", "tx_abort", "tx_status",
    "PutResult", "StageMode", "CommitReport", "CleanupReport",
    "RemoteStore", "HeadState", "SubmitValid", "SubmitInfo", "SubmitError",
    "PublishError", "TransactionStateError", "AlreadyActiveError", "NoActiveTransactionError",
    "WorkspaceInitError", "RemoteError", "CopyError", "CommitFailedError",
]
