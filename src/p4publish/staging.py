"""Staging: open one payload for add or edit on the transaction's changelist."""

from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

from .exceptions import CopyError
from .paths import normalize_depot_path

if TYPE_CHECKING:
    from .store import RemoteStore
    from .workspace import Workspace

logger = logging.getLogger(__name__)

_COPY_CHUNK_SIZE = 65536


class StageMode(str, Enum):
    ADD = "add"
    EDIT = "edit"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class PutResult:
    """Outcome of one put: a staged operation, or a skip.

    Attributes:
        source: Local payload.
        destination: Depot path.
        mode: :class:`StageMode` the file was opened with, ``None`` if skipped.
        overwrite: The caller's overwrite flag.
    """
    source: Path
    destination: str
    mode: StageMode | None
    overwrite: bool

    @property
    def staged(self) -> bool:
        return self.mode is not None

    @property
    def skipped(self) -> bool:
        return self.mode is None


def remote_file_exists(store: RemoteStore, path: str) -> bool:
    """True if *path* exists in the depot and is not deleted at head."""
    return store.head_state(path).live


def copy_file(source: str | os.PathLike[str], destination: str | os.PathLike[str]) -> None:
    """Copy *source* to *destination*, creating parent directories.

    Raises:
        CopyError: ``reason="mkdir"`` if the parent can't be created,
            ``reason="io"`` if opening, reading or writing fails.
    """
    source = Path(source)
    destination = Path(destination)
    parent = destination.parent
    if not parent.is_dir():
        try:
            parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            logger.error("Can't copy file - error creating dir %s", parent)
            raise CopyError(str(source), str(destination), "mkdir", str(exc)) from exc
    try:
        with open(source, "rb") as src, open(destination, "wb") as dst:
            shutil.copyfileobj(src, dst, _COPY_CHUNK_SIZE)
    except OSError as exc:
        logger.error("Error copying file %s to %s", source, destination)
        raise CopyError(str(source), str(destination), "io", str(exc)) from exc


def stage_put(
    store: RemoteStore,
    workspace: Workspace,
    change_id: int,
    source: str | os.PathLike[str],
    destination: str,
    *,
    overwrite: bool = False,
    file_type: str = "binary",
) -> PutResult:
    """Stage *source* for *destination* on changelist *change_id*.

    A destination that already exists is skipped unless *overwrite* is set,
    in which case it is synced (without touching local files) and opened
    for edit.  New destinations are opened for add.  Nothing is submitted.

    Raises:
        RemoteError: The existence check or an open call failed.
        CopyError: The payload could not be copied into the workspace.
    """
    destination = normalize_depot_path(destination)
    source = Path(source)

    mode = StageMode.ADD
    if remote_file_exists(store, destination):
        logger.debug("File exists in depot already: %s", destination)
        if not overwrite:
            logger.info("Overwrite set to false, ignoring %s", source.name)
            return PutResult(source, destination, None, overwrite)
        logger.debug("Updating %s", destination)
        mode = StageMode.EDIT

    copy_file(source, workspace.local_path(destination))

    if mode is StageMode.ADD:
        store.stage_add([destination], change_id, file_type)
    else:
        store.sync_no_merge([destination])
        store.stage_edit([destination], change_id)
    logger.debug("Opened %s for %s in change %s", destination, mode, change_id)
    return PutResult(source, destination, mode, overwrite)
