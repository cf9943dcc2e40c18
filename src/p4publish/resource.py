"""A depot file as seen by a resolver: existence, size and timestamp."""

from __future__ import annotations

import io
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .store import RemoteStore

logger = logging.getLogger(__name__)


class Resource:
    """A depot path whose head state is fetched on first use.

    Deleted-at-head files count as missing.  Depot errors while resolving
    propagate as :class:`~p4publish.exceptions.RemoteError`.
    """

    def __init__(self, store: RemoteStore, path: str):
        self._store = store
        self.name = path
        self._resolved = False
        self._exists = False
        self._last_modified = 0
        self._content_length = 0

    def __repr__(self) -> str:
        return f"Resource({self.name!r})"

    def __str__(self) -> str:
        return self.name

    def _resolve(self) -> None:
        if self._resolved:
            return
        logger.debug("Resolve resource for %s", self.name)
        state = self._store.head_state(self.name)
        if state.live:
            self._exists = True
            self._last_modified = state.head_time or 0
            self._content_length = state.size or 0
        else:
            logger.debug("No resource found at %s", self.name)
        self._resolved = True

    def exists(self) -> bool:
        self._resolve()
        return self._exists

    @property
    def last_modified(self) -> int:
        """Head revision time, seconds since the epoch (0 if missing)."""
        self._resolve()
        return self._last_modified

    @property
    def content_length(self) -> int:
        self._resolve()
        return self._content_length

    @property
    def is_local(self) -> bool:
        return False

    def open(self) -> io.BytesIO:
        """Return the head revision's content as a binary stream."""
        return io.BytesIO(self._store.read(self.name))

    def clone(self, name: str) -> Resource:
        return Resource(self._store, name)
