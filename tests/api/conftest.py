"""Shared fixtures for API tests."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator

import httpx
import pytest
from fastapi import FastAPI

from calendar_bridge.api.app import create_app


@pytest.fixture
def app(config, kv_store, http_client) -> FastAPI:
    return create_app(config, kv_store=kv_store, http_client=http_client)


@pytest.fixture
async def client(app: FastAPI) -> AsyncIterator[httpx.AsyncClient]:
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="http://test"
    ) as client:
        yield client


def parse_sse(text: str) -> list[tuple[str, dict]]:
    """Split an SSE body into ``(event, data)`` pairs."""
    events = []
    for block in text.strip().split("\n\n"):
        lines = dict(line.split(": ", 1) for line in block.splitlines())
        events.append((lines["event"], json.loads(lines["data"])))
    return events
