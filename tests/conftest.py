"""Shared test fixtures for all test modules."""

from collections.abc import AsyncGenerator, Sequence
from pathlib import Path

import httpx
import pytest
from tests.fakes import (
    API_KEY,
    FakeCredentialStore,
    RecordingQueryStore,
    make_key_record,
)

from wideevent.adapters.storage.in_memory import InMemoryEventStorage


@pytest.fixture
def credentials_db_path(tmp_path: Path) -> str:
    """Provide a temporary database path for credential storage tests."""
    return str(tmp_path / "credentials.db")


@pytest.fixture
def query_store() -> RecordingQueryStore:
    return RecordingQueryStore()


@pytest.fixture
def credential_store() -> FakeCredentialStore:
    """Credential store holding one usable key for ``PROJECT_ID``."""
    store = FakeCredentialStore()
    store.add(API_KEY, make_key_record())
    return store


@pytest.fixture
def event_storage() -> InMemoryEventStorage:
    return InMemoryEventStorage()


@pytest.fixture
def auth_header() -> str:
    return f"Bearer {API_KEY}"


# === ASGI Test Fixtures ===


@pytest.fixture
def basic_asgi_app():
    """Basic ASGI app fixture that returns 200 OK."""
    from wideevent.adapters.frameworks.asgi import Receive, Scope, Send

    async def app(scope: Scope, receive: Receive, send: Send) -> None:
        """Simple ASGI app that returns 200 OK."""
        await send({"type": "http.response.start", "status": 200, "headers": []})
        await send({"type": "http.response.body", "body": b"OK"})

    return app


@pytest.fixture
def asgi_scope():
    """Factory fixture for creating ASGI scope dicts.

    Used in tests to create scope dicts with customizable method/path/headers.
    """
    from wideevent.adapters.frameworks.asgi import Scope

    def _scope(
        method: str = "GET",
        path: str = "/test",
        headers: Sequence[tuple[bytes, bytes]] = (),
    ) -> Scope:
        return {
            "type": "http",
            "method": method,
            "path": path,
            "query_string": b"",
            "headers": list(headers),
        }

    return _scope


@pytest.fixture
def asgi_receive():
    """Factory fixture returning an ASGI receive callable for a fixed body."""

    def _receive(body: bytes = b""):
        async def receive() -> dict[str, object]:
            return {"type": "http.request", "body": body, "more_body": False}

        return receive

    return _receive


@pytest.fixture
def asgi_send_capture():
    """Fixture that returns a send callable and a responses list for capture.

    Returns a tuple of (send_func, responses_list) for recording ASGI messages.
    """

    responses: list[dict[str, object]] = []

    async def send(message: dict[str, object]) -> None:
        """Capture ASGI messages."""
        responses.append(message)

    return send, responses


@pytest.fixture
def asgi_test_client():
    """Factory fixture that creates an httpx.AsyncClient for ASGI testing.

    Usage:
        async def test_something(asgi_test_client):
            app = create_asgi_app(gate)
            async with asgi_test_client(app) as client:
                response = await client.post("/ingest", json=body)
    """

    def _get_client(app):
        """Return an AsyncClient context manager for the given app."""
        return httpx.AsyncClient(
            transport=httpx.ASGITransport(app=app), base_url="http://test"
        )

    return _get_client


@pytest.fixture
async def gate(credential_store, event_storage) -> AsyncGenerator:
    """Ingestion gate over the fake credential store and in-memory events."""
    from wideevent.core.gate import IngestionGate

    yield IngestionGate(
        credentials=credential_store, sink=event_storage, usage=event_storage
    )
