"""Ephemeral workspace provisioning.

Each transaction gets its own uniquely named workspace whose view maps a
single depot (``//depot/...``) onto a fresh local staging directory.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path

from .cleanup import delete_dir
from .config import PublishSettings
from .exceptions import PublishError, RemoteError, WorkspaceInitError
from .paths import WILDCARD, is_under, split_depot_path, view_root
from .store import RemoteStore, ViewMapping, WorkspaceSpec

logger = logging.getLogger(__name__)

_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


@dataclass(frozen=True)
class Workspace:
    """A registered ephemeral workspace and its local root."""
    name: str
    owner: str
    root: Path
    view: ViewMapping

    @property
    def mapped_root(self) -> str:
        """Depot pattern covered by this workspace (``//depot/...``)."""
        return self.view.depot

    def maps(self, path: str) -> bool:
        return is_under(path, self.view.depot)

    def local_path(self, path: str) -> Path:
        """Local file mirroring depot *path* inside the workspace root."""
        if not self.maps(path):
            raise RemoteError("file(s) not in client view.", path=path)
        _, rest = split_depot_path(path)
        return self.root.joinpath(*rest.split("/"))


def workspace_name(prefix: str, owner: str, token: str) -> str:
    return f"{prefix}{_UNSAFE_NAME_CHARS.sub('_', owner)}{token}"


def view_for(destination: str, name: str) -> ViewMapping:
    """Map the depot holding *destination* onto the whole workspace."""
    return ViewMapping(view_root(destination) + WILDCARD, f"//{name}{WILDCARD}")


def provision(
    store: RemoteStore,
    destination: str,
    *,
    name: str,
    settings: PublishSettings,
) -> Workspace:
    """Create the local staging directory and register the workspace.

    The workspace becomes the store's active workspace on success.

    Raises:
        WorkspaceInitError: No depot user, or the directory can't be made.
        RemoteError: The depot refused the workspace; nothing is left behind.
    """
    owner = store.user
    if not owner:
        raise WorkspaceInitError("Depot user undefined")

    view = view_for(destination, name)
    root = settings.temp_root / name
    try:
        root.mkdir(parents=True)
    except OSError as exc:
        raise WorkspaceInitError(
            f"Unable to create root dir for temporary workspace: {root} ({exc.strerror or exc})"
        ) from exc

    spec = WorkspaceSpec(name=name, owner=owner, root=root, view=(view,))
    try:
        store.create_workspace(spec)
    except RemoteError:
        logger.error("Error creating workspace %s", name)
        delete_dir(root)
        raise
    try:
        store.set_active_workspace(name)
    except RemoteError:
        logger.error("Error activating workspace %s", name)
        try:
            store.delete_workspace(name)
        except PublishError as exc:
            logger.warning("Could not delete workspace %s: %s", name, exc)
        delete_dir(root)
        raise

    logger.debug("Created temporary workspace %s (%s -> %s)", name, view, root)
    return Workspace(name=name, owner=owner, root=root, view=view)
