"""Shared fixtures for p4publish tests."""

import pytest

from p4publish import DepotRepository, GitDepot, PublishSettings


@pytest.fixture
def depot(tmp_path):
    """An empty git-backed depot, connected as alice."""
    return GitDepot.open(tmp_path / "depot.git", user="alice")


@pytest.fixture
def settings(tmp_path):
    return PublishSettings(temp_root=tmp_path / "ws")


@pytest.fixture
def repo(depot, settings):
    return DepotRepository(depot, settings=settings)


@pytest.fixture
def payload(tmp_path):
    """Factory for local payload files: ``payload("a.jar", b"...")``."""
    base = tmp_path / "payload"

    def make(name, data=b"data"):
        path = base / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        return path

    return make


@pytest.fixture
def assert_clean(depot, settings):
    """Check that no workspace, pending change or staging directory is left."""

    def check():
        assert depot.workspaces() == []
        assert depot.pending_changes() == []
        root = settings.temp_root
        assert not root.exists() or list(root.iterdir()) == []

    return check
