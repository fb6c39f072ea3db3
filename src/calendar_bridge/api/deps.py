"""FastAPI dependencies for the bridge API.

Long-lived resources (config, KV store, shared ``httpx.AsyncClient``, the
optional token cache) live on ``app.state`` and are set by
:func:`~calendar_bridge.api.app.create_app`.  Per-request objects (token
provider, calendar client, dispatcher) are built fresh for every request so
that no request observes another's state.
"""

from __future__ import annotations

import json
from typing import Any

import httpx
from fastapi import Depends, Request

from calendar_bridge.auth import TokenCache
from calendar_bridge.calendar_client import CalendarClient, build_calendar_client
from calendar_bridge.config import BridgeConfig
from calendar_bridge.errors import TransportError
from calendar_bridge.kv import KVStore
from calendar_bridge.tools import ToolDispatcher


def get_config(request: Request) -> BridgeConfig:
    return request.app.state.config


def get_kv_store(request: Request) -> KVStore:
    return request.app.state.kv_store


def get_http_client(request: Request) -> httpx.AsyncClient:
    client = getattr(request.app.state, "http_client", None)
    if client is None:
        raise RuntimeError("HTTP client not initialized; the app lifespan has not run")
    return client


def get_token_cache(request: Request) -> TokenCache | None:
    return getattr(request.app.state, "token_cache", None)


def get_calendar_client(
    config: BridgeConfig = Depends(get_config),
    kv_store: KVStore = Depends(get_kv_store),
    http_client: httpx.AsyncClient = Depends(get_http_client),
    token_cache: TokenCache | None = Depends(get_token_cache),
) -> CalendarClient:
    return build_calendar_client(config, kv_store, http_client, token_cache)


def get_dispatcher(
    config: BridgeConfig = Depends(get_config),
    kv_store: KVStore = Depends(get_kv_store),
    http_client: httpx.AsyncClient = Depends(get_http_client),
    token_cache: TokenCache | None = Depends(get_token_cache),
) -> ToolDispatcher:
    return ToolDispatcher(
        lambda: build_calendar_client(config, kv_store, http_client, token_cache)
    )


async def read_json_body(request: Request) -> Any:
    """Decode the request body as JSON, raising :class:`TransportError` otherwise."""
    body = await request.body()
    try:
        return json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise TransportError(f"Invalid JSON body: {exc}") from exc
