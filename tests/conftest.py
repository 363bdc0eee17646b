"""Shared fixtures for the labcon test suite."""

import httpx
import pytest

from labcon.api import create_app
from labcon.client import LabconClient
from labcon.config import ServerConfig
from labcon.coordinator import DriverCoordinator
from labcon.repository import DriverRepository
from labcon.storage import Store


@pytest.fixture
def store():
    """Create an in-memory store for testing."""
    store = Store(":memory:")
    yield store
    store.close()


@pytest.fixture
def file_store(tmp_path):
    """Create a store backed by a temporary database file."""
    store = Store(str(tmp_path / "labcon.db"))
    yield store
    store.close()


@pytest.fixture
def repository(store):
    return DriverRepository(store)


@pytest.fixture
def coordinator(repository):
    return DriverCoordinator(repository)


@pytest.fixture
def app(tmp_path):
    """Create a Flask app backed by a temporary database."""
    config = ServerConfig(database_path=str(tmp_path / "api.db"))
    app = create_app(config=config)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def http(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture
def client(app):
    """LabconClient talking to the app in-process."""
    client = LabconClient("http://labcon.test", transport=httpx.WSGITransport(app=app))
    yield client
    client.close()
