"""Bridge API: FastAPI application factory.

The app factory creates a FastAPI instance with:
- CORS middleware (any origin by default; GET/POST/OPTIONS; ``Content-Type``)
- Lifespan handler owning the shared ``httpx.AsyncClient`` and the KV store
- Health endpoint at GET /health
- REST debug routes, the SSE stream, the legacy /execute route and the
  plugin manifest
"""

import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response

from calendar_bridge import __version__
from calendar_bridge.api.middleware import register_error_handlers
from calendar_bridge.api.routers.events import router as events_router
from calendar_bridge.api.routers.execute import router as execute_router
from calendar_bridge.api.routers.plugin import router as plugin_router
from calendar_bridge.api.routers.sse import router as sse_router
from calendar_bridge.auth import TokenCache
from calendar_bridge.config import BridgeConfig, default_config
from calendar_bridge.kv import KVStore, create_kv_store

logger = logging.getLogger(__name__)

CORS_ALLOWED_METHODS = ["GET", "POST", "OPTIONS"]
CORS_ALLOWED_HEADERS = ["Content-Type"]


def cors_headers(origins: list[str]) -> dict[str, str]:
    """Headers returned by the ``OPTIONS`` short-circuit."""
    return {
        "Access-Control-Allow-Origin": "*" if "*" in origins else ", ".join(origins),
        "Access-Control-Allow-Methods": ", ".join(CORS_ALLOWED_METHODS),
        "Access-Control-Allow-Headers": ", ".join(CORS_ALLOWED_HEADERS),
    }


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create the shared HTTP client on startup; close owned resources on shutdown."""
    config: BridgeConfig = app.state.config
    owns_http_client = getattr(app.state, "http_client", None) is None
    if owns_http_client:
        app.state.http_client = httpx.AsyncClient(timeout=config.http_timeout_s)
    logger.info(
        "Bridge started (calendar_id=%s, credentials=%s, token_cache=%s)",
        config.calendar_id,
        config.credentials.backend,
        config.credentials.token_cache,
    )

    yield

    if owns_http_client:
        await app.state.http_client.aclose()
        app.state.http_client = None
    if app.state.owns_kv_store:
        await app.state.kv_store.close()


def create_app(
    config: BridgeConfig | None = None,
    *,
    kv_store: KVStore | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Parameters
    ----------
    config:
        Bridge configuration.  Defaults to :func:`default_config`.
    kv_store:
        Credential store.  When omitted one is built from
        ``config.credentials`` and closed on shutdown.
    http_client:
        Shared client for Google requests.  When omitted the lifespan creates
        one and closes it on shutdown; an injected client is left open.
    """
    if config is None:
        config = default_config()

    app = FastAPI(
        title="Calendar Bridge API",
        version=__version__,
        lifespan=lifespan,
    )
    app.router.redirect_slashes = False

    app.state.config = config
    app.state.owns_kv_store = kv_store is None
    app.state.kv_store = kv_store if kv_store is not None else create_kv_store(config.credentials)
    app.state.http_client = http_client
    app.state.token_cache = TokenCache() if config.credentials.token_cache else None

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=False,
        allow_methods=CORS_ALLOWED_METHODS,
        allow_headers=CORS_ALLOWED_HEADERS,
    )

    register_error_handlers(app)

    app.include_router(events_router)
    app.include_router(sse_router)
    app.include_router(execute_router)
    app.include_router(plugin_router)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    preflight_headers = cors_headers(config.cors_origins)

    @app.options("/{path:path}", include_in_schema=False)
    async def options_short_circuit(path: str) -> Response:
        return Response(status_code=204, headers=preflight_headers)

    return app
