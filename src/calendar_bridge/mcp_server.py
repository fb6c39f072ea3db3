"""Standard MCP server exposing the calendar tools through FastMCP.

The tools registered here are thin shims over :class:`ToolDispatcher`, so the
MCP surface and the ``/sse`` surface share names, parameter checks and result
shapes.  Error results are raised as ``ToolError`` so MCP clients see them as
tool failures.
"""

import logging
from typing import Any

from fastmcp import FastMCP
from fastmcp.exceptions import ToolError

from calendar_bridge.calendar_client import DEFAULT_MAX_RESULTS
from calendar_bridge.tools import (
    CREATE_EVENT,
    DELETE_EVENT,
    LIST_EVENTS,
    TOOL_MANIFEST,
    ToolDispatcher,
    ToolInvocation,
)

logger = logging.getLogger(__name__)

_DESCRIPTIONS = {entry.name: entry.description for entry in TOOL_MANIFEST}


def build_mcp_server(dispatcher: ToolDispatcher, *, name: str = "calendar-bridge") -> FastMCP:
    """Create a FastMCP server whose tools delegate to *dispatcher*."""
    mcp = FastMCP(name)

    async def _call(tool: str, parameters: dict[str, Any]) -> Any:
        result = await dispatcher.dispatch(ToolInvocation(tool=tool, parameters=parameters))
        if not result.ok:
            raise ToolError(result.message)
        return result.result

    @mcp.tool(name=LIST_EVENTS, description=_DESCRIPTIONS[LIST_EVENTS])
    async def list_events(
        timeMin: str | None = None,  # noqa: N803
        timeMax: str | None = None,  # noqa: N803
        maxResults: int = DEFAULT_MAX_RESULTS,  # noqa: N803
    ) -> Any:
        return await _call(
            LIST_EVENTS,
            {"timeMin": timeMin, "timeMax": timeMax, "maxResults": maxResults},
        )

    @mcp.tool(name=CREATE_EVENT, description=_DESCRIPTIONS[CREATE_EVENT])
    async def create_event(summary: str, start: str, end: str) -> Any:
        return await _call(CREATE_EVENT, {"summary": summary, "start": start, "end": end})

    @mcp.tool(name=DELETE_EVENT, description=_DESCRIPTIONS[DELETE_EVENT])
    async def delete_event(eventId: str) -> Any:  # noqa: N803
        return await _call(DELETE_EVENT, {"eventId": eventId})

    logger.debug("Registered %d MCP tools on %s", len(TOOL_MANIFEST), name)
    return mcp
