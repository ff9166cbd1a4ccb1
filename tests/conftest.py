import httpx
import pytest
from fastapi.testclient import TestClient

from resolvehub_client.api.client import BackendClient
from resolvehub_client.mock_backend.app import create_app, seed_state
from resolvehub_client.notifications import NotificationQueue
from resolvehub_client.storage import MemoryStorage


@pytest.fixture
def backend_state():
    return seed_state()


@pytest.fixture
def app(backend_state):
    return create_app(backend_state)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
async def api(app):
    """BackendClient talking to the in-memory backend without a socket."""
    async with BackendClient(
        "http://testserver", transport=httpx.ASGITransport(app=app)
    ) as backend_client:
        yield backend_client


@pytest.fixture
def notifications():
    return NotificationQueue(ttl=0.05)


@pytest.fixture
def storage():
    return MemoryStorage()
