"""Shared fixtures for the chatrelay test suite."""

import sys
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest
from httpx import ASGITransport, AsyncClient
from starlette.testclient import TestClient
from starlette.websockets import WebSocketState

# Ensure the project root is on sys.path so 'chatrelay' package resolves
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from chatrelay.auth import AuthenticationGate  # noqa: E402
from chatrelay.history import HistoryService  # noqa: E402
from chatrelay.presence import PresenceBroadcaster  # noqa: E402
from chatrelay.registry import ConnectionRegistry  # noqa: E402
from chatrelay.router import MessageRouter  # noqa: E402
from chatrelay.session import Identity, Session  # noqa: E402


# ---------------------------------------------------------------------------
# Pattern 1: Bare Object Factory, sessions over a mock transport
# ---------------------------------------------------------------------------

def mock_transport():
    """AsyncMock WebSocket that reports itself connected on both sides."""
    transport = AsyncMock()
    transport.client_state = WebSocketState.CONNECTED
    transport.application_state = WebSocketState.CONNECTED
    return transport


def make_session(*, role=None, name=None, email=None):
    """Create a Session whose transport is an AsyncMock.

    Pass role/name/email to get an already-authenticated session without
    going through a registry. Outgoing frames are inspected through
    ``session.transport.send_json.call_args_list``.
    """
    session = Session(transport=mock_transport())
    if role is not None:
        session.identity = Identity(role=role, name=name, email=email)
    return session


def sent_messages(session, msg_type=None) -> list[dict]:
    """Every JSON frame sent to *session*, optionally filtered by ``type``."""
    frames = [c[0][0] for c in session.transport.send_json.call_args_list]
    if msg_type is None:
        return frames
    return [f for f in frames if isinstance(f, dict) and f.get("type") == msg_type]


async def register_as(registry, *, role, name, email):
    """Register a mock-transport session and promote it."""
    session = await registry.register(mock_transport())
    await registry.promote(session, role, name, email)
    return session


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------

@pytest.fixture
async def history(tmp_path):
    """An open HistoryService on a throwaway SQLite file."""
    service = HistoryService(tmp_path / "chat.db")
    await service.open()
    yield service
    await service.close()


@pytest.fixture
def registry():
    return ConnectionRegistry()


@pytest.fixture
def presence(registry):
    return PresenceBroadcaster(registry)


@pytest.fixture
def gate(registry, history, presence):
    return AuthenticationGate(registry, history, presence)


@pytest.fixture
def router(registry, history, presence):
    return MessageRouter(registry, history, presence)


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------

@pytest.fixture
def app_services(tmp_path):
    """Fresh, unopened services for one test's copy of the app."""
    svc_history = HistoryService(tmp_path / "app.db")
    svc_registry = ConnectionRegistry()
    svc_presence = PresenceBroadcaster(svc_registry)
    return {
        "history": svc_history,
        "registry": svc_registry,
        "presence": svc_presence,
        "gate": AuthenticationGate(svc_registry, svc_history, svc_presence),
        "router": MessageRouter(svc_registry, svc_history, svc_presence),
    }


@pytest.fixture
def app(tmp_path, app_services):
    """The FastAPI app with its module-level services swapped for per-test ones."""
    uploads_dir = tmp_path / "uploads"
    uploads_dir.mkdir()

    with patch("chatrelay.server._history", app_services["history"]), \
         patch("chatrelay.server._registry", app_services["registry"]), \
         patch("chatrelay.server._presence", app_services["presence"]), \
         patch("chatrelay.server._gate", app_services["gate"]), \
         patch("chatrelay.server._router", app_services["router"]), \
         patch("chatrelay.server.UPLOADS_DIR", uploads_dir):
        from chatrelay.server import app as fastapi_app
        yield fastapi_app


@pytest.fixture
async def client(app, app_services):
    """Async HTTP client for REST endpoints.

    ASGITransport does not run startup events, so the store is opened here.
    """
    await app_services["history"].open()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac
    await app_services["history"].close()


@pytest.fixture
def ws_client(app):
    """Synchronous TestClient with startup/shutdown events running."""
    with TestClient(app) as test_client:
        yield test_client
