"""Shared pytest fixtures and test utilities for martlink tests."""

import json
import os
import tempfile
from typing import Any, Callable, Generator

import httpx
import pytest

from martlink.clients.airbridge import AirbridgeClient
from martlink.config import Settings
from martlink.services.report_service import clear_meta_cache
from martlink.storage.database import Database, reset_db


@pytest.fixture(scope="function")
def temp_db() -> Generator[Database, None, None]:
    """
    Create a temporary SQLite database for testing.

    Yields:
        Database instance with tables created
    """
    # Create temporary database file
    fd, db_path = tempfile.mkstemp(suffix=".db")
    os.close(fd)

    # Reset global database instance
    reset_db()

    # Create database
    database = Database(f"sqlite:///{db_path}")
    database.create_tables()

    yield database

    # Cleanup
    database.drop_tables()
    database.engine.dispose()
    reset_db()
    if os.path.exists(db_path):
        os.unlink(db_path)


@pytest.fixture
def db_session(temp_db):
    """Get a database session from temp_db."""
    with temp_db.session() as session:
        yield session


@pytest.fixture
def settings() -> Settings:
    """Settings with no external integrations configured."""
    return Settings(
        _env_file=None,
        database_url="sqlite://",
        airbridge_app_name=None,
        airbridge_api_token=None,
        airbridge_tracking_link_api_token=None,
        google_sheets_spreadsheet_id=None,
        google_service_account_email=None,
        google_private_key=None,
        admin_clear_key=None,
    )


@pytest.fixture
def airbridge_settings(settings) -> Settings:
    """Settings with Airbridge configured and instant report polling."""
    return settings.model_copy(
        update={
            "airbridge_app_name": "qmarket",
            "airbridge_api_token": "api-token",
            "airbridge_tracking_link_api_token": "link-token",
            "report_poll_delay": 0.0,
        }
    )


@pytest.fixture(autouse=True)
def fresh_meta_cache():
    """Report metadata is cached per process; start every test without it."""
    clear_meta_cache()
    yield
    clear_meta_cache()


async def no_sleep(_: float) -> None:
    return None


class AirbridgeStub:
    """
    Routes Airbridge requests to canned responses.

    Handlers are keyed by ``(method, path prefix)``; the longest matching
    prefix wins. A handler returns ``(status, payload)`` or a payload
    (status 200). Every request is recorded in ``calls``.
    """

    def __init__(self):
        self.handlers: dict[tuple[str, str], Callable[[httpx.Request], Any]] = {}
        self.calls: list[httpx.Request] = []

    def on(self, method: str, path_prefix: str, handler: Any) -> "AirbridgeStub":
        if not callable(handler):
            response = handler
            handler = lambda request: response  # noqa: E731
        self.handlers[(method, path_prefix)] = handler
        return self

    def calls_to(self, method: str, path_prefix: str) -> list[httpx.Request]:
        return [
            call for call in self.calls
            if call.method == method and call.url.path.startswith(path_prefix)
        ]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        matches = [
            (prefix, handler) for (method, prefix), handler in self.handlers.items()
            if method == request.method and request.url.path.startswith(prefix)
        ]
        if not matches:
            return httpx.Response(404, json={"detail": "The requested URL was not found on the server."})
        _, handler = max(matches, key=lambda match: len(match[0]))
        result = handler(request)
        status, payload = result if isinstance(result, tuple) else (200, result)
        return httpx.Response(status, json=payload)

    def client(self) -> AirbridgeClient:
        return AirbridgeClient(transport=httpx.MockTransport(self))


@pytest.fixture
def airbridge_stub() -> AirbridgeStub:
    """Provide an empty AirbridgeStub."""
    return AirbridgeStub()


def request_json(request: httpx.Request) -> dict[str, Any]:
    return json.loads(request.content.decode("utf-8"))
