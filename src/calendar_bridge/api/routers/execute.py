"""Legacy JSON-RPC style tool execution endpoint.

Kept for clients of the older raw-stream protocol.  Requests look like::

    {"id": 1, "method": "call_tool", "params": {"tool": "list_events", "arguments": {}}}

and are answered with ``{"jsonrpc": "2.0", "id": 1, "result": ...}``.  Any
failure, including an error result from the dispatcher, is answered with HTTP
500 and ``{"error": message}``.  ``method: "list_tools"`` returns the manifest.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from calendar_bridge.api.deps import get_dispatcher, read_json_body
from calendar_bridge.errors import ValidationError
from calendar_bridge.tools import ToolDispatcher, ToolInvocation, manifest_payload

logger = logging.getLogger(__name__)

router = APIRouter(tags=["execute"])

METHOD_CALL_TOOL = "call_tool"
METHOD_LIST_TOOLS = "list_tools"


def _error(message: str) -> JSONResponse:
    return JSONResponse(status_code=500, content={"error": message})


@router.post("/execute")
async def execute(
    request: Request,
    dispatcher: ToolDispatcher = Depends(get_dispatcher),
) -> Any:
    body = await read_json_body(request)
    if not isinstance(body, dict):
        raise ValidationError("JSON-RPC request must be a JSON object")

    request_id = body.get("id")
    method = body.get("method")

    if method == METHOD_LIST_TOOLS:
        return {"jsonrpc": "2.0", "id": request_id, "result": manifest_payload()}

    if method != METHOD_CALL_TOOL:
        logger.info("Rejected JSON-RPC method %r", method)
        return _error("Unknown method")

    invocation = ToolInvocation.from_payload(body.get("params"), arguments_key="arguments")
    result = await dispatcher.dispatch(invocation)
    if not result.ok:
        assert result.message is not None
        return _error(result.message)
    return {"jsonrpc": "2.0", "id": request_id, "result": result.result}
