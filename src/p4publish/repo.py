"""DepotRepository: the repository handle a resolver talks to."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING

from .commit import CommitReport
from .config import PublishSettings
from .exceptions import AlreadyActiveError, CopyError, NoActiveTransactionError
from .paths import basename, normalize_depot_path
from .resource import Resource
from .tx import ModuleId, PublishTransaction

if TYPE_CHECKING:
    from .staging import PutResult
    from .store import RemoteStore

logger = logging.getLogger(__name__)


class DepotRepository:
    """Fetch, list and publish artifacts in a depot.

    Holds at most one publish transaction at a time.  The slot belongs to
    this handle, so separate handles (even on the same depot) publish
    independently.  A single handle is meant to be driven by one caller at
    a time.
    """

    def __init__(self, store: RemoteStore, *, settings: PublishSettings | None = None):
        self._store = store
        self.settings = settings if settings is not None else PublishSettings.from_env()
        self._active: PublishTransaction | None = None
        self._resources: dict[str, Resource] = {}

    def __repr__(self) -> str:
        return f"DepotRepository({self._store!r})"

    @property
    def store(self) -> RemoteStore:
        return self._store

    @property
    def active(self) -> PublishTransaction | None:
        """The open transaction, or None."""
        return self._active

    # -- read side ------------------------------------------------------------

    def resource(self, path: str) -> Resource:
        """Return the (cached, lazily resolved) resource for depot *path*."""
        resource = self._resources.get(path)
        if resource is None:
            resource = Resource(self._store, path)
            self._resources[path] = resource
        return resource

    def get(self, source: str, destination: str | os.PathLike[str]) -> None:
        """Download depot file *source* to local *destination*.

        Raises:
            RemoteError: The depot could not deliver the file.
            CopyError: The local file could not be written.
        """
        logger.debug("Getting %s to %s", source, destination)
        data = self._store.read(normalize_depot_path(source))
        destination = Path(destination)
        try:
            destination.write_bytes(data)
        except OSError as exc:
            logger.error("Problem writing to destination %s", destination)
            raise CopyError(source, str(destination), "io", str(exc)) from exc

    def list(self, parent: str) -> list[str]:
        """Names of the live files and the directories directly under *parent*."""
        parent = parent.rstrip("/")
        names = [basename(p) for p in self._store.list_files(parent)]
        names.extend(basename(p) for p in self._store.list_dirs(parent))
        return names

    # -- publishing -----------------------------------------------------------

    def begin(self, module: ModuleId | str) -> PublishTransaction:
        """Start a publish transaction.

        Raises:
            AlreadyActiveError: A previous transaction is still active.
        """
        if self._active is not None:
            raise AlreadyActiveError("Previous transaction is still active")
        module = ModuleId.coerce(module)
        logger.debug("Starting transaction %s ...", module)
        self._active = PublishTransaction(self._store, module, settings=self.settings)
        self._resources.clear()
        return self._active

    def _require_active(self) -> PublishTransaction:
        if self._active is None:
            raise NoActiveTransactionError("Transaction not initialised")
        return self._active

    def put(self, source: str | os.PathLike[str], destination: str, *, overwrite: bool = False) -> PutResult:
        """Stage *source* for *destination* in the active transaction."""
        tx = self._require_active()
        logger.debug("Putting %s to %s", source, destination)
        return tx.put(source, destination, overwrite=overwrite)

    def commit(self) -> CommitReport:
        """Commit the active transaction. The slot is released either way."""
        tx = self._require_active()
        logger.debug("Committing transaction...")
        try:
            return tx.commit()
        finally:
            self._active = None
            self._resources.clear()

    def abort(self) -> None:
        """Abort the active transaction, if any. Never raises."""
        tx = self._active
        if tx is None:
            logger.debug("No active transaction to abort")
            return
        try:
            tx.abort()
        except Exception:
            logger.exception("Error while aborting transaction %s", tx.id)
        finally:
            self._active = None
            self._resources.clear()
