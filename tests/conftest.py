"""Shared fixtures for the calendar bridge test suite.

Google is faked with an ``httpx.MockTransport``: the OAuth token endpoint
answers with a fixed access token and the Calendar API echoes what it was
sent, so tests can assert on both the upstream requests and the results.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field

import httpx
import pytest

from calendar_bridge.auth import TokenProvider
from calendar_bridge.calendar_client import CalendarClient
from calendar_bridge.config import DEFAULT_CREDENTIAL_KEY, BridgeConfig, default_config
from calendar_bridge.kv import MemoryKVStore

TOKEN_PATH = "/token"
CALENDAR_HOST = "www.googleapis.com"
FAKE_ACCESS_TOKEN = "ya29.test-token"

AUTHORIZED_USER_INFO = {
    "type": "authorized_user",
    "client_id": "client-123.apps.googleusercontent.com",
    "client_secret": "client-secret",
    "refresh_token": "refresh-token",
}


@dataclass
class FakeGoogle:
    """Records every upstream request and answers like Google would."""

    requests: list[httpx.Request] = field(default_factory=list)
    token_status: int = 200
    token_payload: dict = field(
        default_factory=lambda: {"access_token": FAKE_ACCESS_TOKEN, "expires_in": 3599}
    )
    calendar_handler: Callable[[httpx.Request], httpx.Response] | None = None

    @property
    def token_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == TOKEN_PATH]

    @property
    def calendar_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.host == CALENDAR_HOST]

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path == TOKEN_PATH:
            return httpx.Response(self.token_status, json=self.token_payload)
        if self.calendar_handler is not None:
            return self.calendar_handler(request)
        return _echo_calendar(request)


def _echo_calendar(request: httpx.Request) -> httpx.Response:
    path = request.url.path
    event_id = path.rsplit("/events/", 1)[1] if "/events/" in path else None
    if request.method == "DELETE":
        return httpx.Response(204)
    if request.method in ("POST", "PUT"):
        body = json.loads(request.content)
        return httpx.Response(200, json={"id": event_id or "evt-created", **body})
    if event_id is not None:
        return httpx.Response(200, json={"id": event_id, "summary": "Existing"})
    return httpx.Response(
        200,
        json={"kind": "calendar#events", "items": [], "query": dict(request.url.params)},
    )


@pytest.fixture
def fake_google() -> FakeGoogle:
    return FakeGoogle()


@pytest.fixture
async def http_client(fake_google: FakeGoogle) -> AsyncIterator[httpx.AsyncClient]:
    async with httpx.AsyncClient(transport=httpx.MockTransport(fake_google.handle)) as client:
        yield client


@pytest.fixture
def kv_store() -> MemoryKVStore:
    return MemoryKVStore({DEFAULT_CREDENTIAL_KEY: json.dumps(AUTHORIZED_USER_INFO)})


@pytest.fixture
def config() -> BridgeConfig:
    return default_config()


@pytest.fixture
def calendar_client(kv_store: MemoryKVStore, http_client: httpx.AsyncClient) -> CalendarClient:
    provider = TokenProvider(kv_store, http_client=http_client)
    return CalendarClient("primary", provider, http_client)
