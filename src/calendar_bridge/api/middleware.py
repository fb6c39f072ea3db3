"""API error handling: consistent ``{"error": message}`` responses.

Status code mapping:
- ``BridgeError`` (auth, calendar API, validation, transport) → 500 with the
  error's message
- 404 from routing → plain-text ``Not found``
- Any other ``Exception`` → 500 ``Internal server error``
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from calendar_bridge.errors import BridgeError

logger = logging.getLogger(__name__)


async def _handle_bridge_error(request: Request, exc: BridgeError) -> JSONResponse:
    logger.warning(
        "%s on %s %s: %s",
        type(exc).__name__,
        request.method,
        request.url.path,
        exc.message,
    )
    return JSONResponse(status_code=500, content={"error": exc.message})


async def _handle_http_exception(
    request: Request,
    exc: StarletteHTTPException,
) -> Response:
    if exc.status_code == 404:
        return PlainTextResponse("Not found", status_code=404)
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


class CatchAllErrorMiddleware(BaseHTTPMiddleware):
    """ASGI middleware that catches any unhandled exception and returns a 500.

    This sits above the Starlette exception handler layer, so exceptions not
    caught by ``add_exception_handler`` still produce the JSON error envelope
    rather than Starlette's plain-text 500.
    """

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except Exception:
            logger.error(
                "Unhandled exception on %s %s",
                request.method,
                request.url.path,
                exc_info=True,
            )
            return JSONResponse(status_code=500, content={"error": "Internal server error"})


def register_error_handlers(app: FastAPI) -> None:
    """Attach all exception handlers to the FastAPI application."""
    app.add_exception_handler(BridgeError, _handle_bridge_error)  # type: ignore[arg-type]
    app.add_exception_handler(StarletteHTTPException, _handle_http_exception)  # type: ignore[arg-type]
    app.add_middleware(CatchAllErrorMiddleware)
