"""Server-Sent Events endpoint speaking the MCP manifest/tool-call protocol.

``GET /sse`` streams the manifest and then heartbeats until the client
disconnects.  ``POST /sse`` with a ``{tool, parameters}`` body streams the
manifest followed by one ``tool_response`` or ``error`` event and then ends.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from starlette.requests import Request
from starlette.responses import StreamingResponse

from calendar_bridge.api.deps import get_config, get_dispatcher
from calendar_bridge.config import BridgeConfig
from calendar_bridge.stream import StreamHandler, encode_events
from calendar_bridge.tools import ToolDispatcher

logger = logging.getLogger(__name__)

router = APIRouter(tags=["sse"])

_SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",  # Disable nginx buffering
}


def _stream_response(
    request: Request,
    config: BridgeConfig,
    dispatcher: ToolDispatcher,
    *,
    body: bytes | None,
    keep_alive: bool,
) -> StreamingResponse:
    handler = StreamHandler(
        dispatcher,
        heartbeat_interval=config.heartbeat_interval_s,
        is_disconnected=request.is_disconnected,
    )
    return StreamingResponse(
        encode_events(handler.events(body, keep_alive=keep_alive)),
        media_type="text/event-stream",
        headers=_SSE_HEADERS,
    )


@router.get("/sse")
async def sse_stream(
    request: Request,
    config: BridgeConfig = Depends(get_config),
    dispatcher: ToolDispatcher = Depends(get_dispatcher),
) -> StreamingResponse:
    """Manifest, then a ``heartbeat`` event every ``heartbeat_interval_s`` seconds."""
    logger.info("SSE stream opened")
    return _stream_response(request, config, dispatcher, body=None, keep_alive=True)


@router.post("/sse")
async def sse_invoke(
    request: Request,
    config: BridgeConfig = Depends(get_config),
    dispatcher: ToolDispatcher = Depends(get_dispatcher),
) -> StreamingResponse:
    """Manifest, then the result of the POSTed tool invocation."""
    body = await request.body()
    return _stream_response(request, config, dispatcher, body=body, keep_alive=False)
