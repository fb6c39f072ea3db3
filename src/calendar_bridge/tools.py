"""Tool manifest and dispatcher.

The manifest is a fixed list of :class:`ToolManifestEntry` objects, identical
for every connection.  :class:`ToolDispatcher` turns a :class:`ToolInvocation`
into exactly one :class:`ToolResult`: a success carrying the tool's result, or
an error carrying a message.  Errors from the ``BridgeError`` family never
escape :meth:`ToolDispatcher.dispatch`.

Canonical tool names are hyphenated (``list-events``); the underscore spellings
used by older clients (``list_events``) are accepted and normalised.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict

from calendar_bridge.calendar_client import DEFAULT_MAX_RESULTS, CalendarClient
from calendar_bridge.errors import BridgeError, TransportError, ValidationError

logger = logging.getLogger(__name__)

UNKNOWN_TOOL_MESSAGE = "Unknown tool"

LIST_EVENTS = "list-events"
CREATE_EVENT = "create-event"
DELETE_EVENT = "delete-event"

LEGACY_TOOL_ALIASES = {
    "list_events": LIST_EVENTS,
    "create_event": CREATE_EVENT,
    "delete_event": DELETE_EVENT,
}


class ToolManifestEntry(BaseModel):
    """Static description of one tool advertised to agents."""

    model_config = ConfigDict(frozen=True)

    name: str
    description: str
    parameters: dict[str, str]
    required: tuple[str, ...] = ()


TOOL_MANIFEST: tuple[ToolManifestEntry, ...] = (
    ToolManifestEntry(
        name=LIST_EVENTS,
        description="List upcoming Google Calendar events.",
        parameters={
            "timeMin": "string (RFC3339 datetime, optional)",
            "timeMax": "string (RFC3339 datetime, optional)",
            "maxResults": f"integer (optional, default {DEFAULT_MAX_RESULTS})",
        },
    ),
    ToolManifestEntry(
        name=CREATE_EVENT,
        description="Create a Google Calendar event.",
        parameters={
            "summary": "string",
            "start": "string (RFC3339 datetime)",
            "end": "string (RFC3339 datetime)",
        },
        required=("summary", "start", "end"),
    ),
    ToolManifestEntry(
        name=DELETE_EVENT,
        description="Delete a Google Calendar event.",
        parameters={"eventId": "string"},
        required=("eventId",),
    ),
)

_MANIFEST_BY_NAME = {entry.name: entry for entry in TOOL_MANIFEST}


def manifest_payload() -> dict[str, Any]:
    """Return the ``{"tools": [...]}`` payload sent as the stream manifest."""
    return {"tools": [entry.model_dump(mode="json") for entry in TOOL_MANIFEST]}


def canonical_tool_name(name: str) -> str:
    return LEGACY_TOOL_ALIASES.get(name, name)


@dataclass(frozen=True)
class ToolInvocation:
    tool: str
    parameters: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Any, *, arguments_key: str = "parameters") -> ToolInvocation:
        """Build an invocation from a decoded ``{tool, parameters}`` object."""
        if not isinstance(payload, dict):
            raise ValidationError("Tool invocation must be a JSON object")
        tool = payload.get("tool")
        if not isinstance(tool, str) or not tool.strip():
            raise ValidationError("Tool invocation is missing a 'tool' name")
        parameters = payload.get(arguments_key)
        if parameters is None:
            parameters = {}
        if not isinstance(parameters, dict):
            raise ValidationError(f"'{arguments_key}' must be a JSON object")
        return cls(tool=tool.strip(), parameters=parameters)

    @classmethod
    def from_json(cls, body: bytes | str) -> ToolInvocation:
        """Decode a raw request body into an invocation.

        Raises :class:`TransportError` for bodies that are not JSON and
        :class:`ValidationError` for JSON of the wrong shape.
        """
        try:
            payload = json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise TransportError(f"Invalid JSON body: {exc}") from exc
        return cls.from_payload(payload)


@dataclass(frozen=True)
class ToolResult:
    """Outcome of one invocation: ``result`` on success, ``message`` on failure."""

    tool: str
    result: Any = None
    message: str | None = None

    @property
    def ok(self) -> bool:
        return self.message is None

    @classmethod
    def success(cls, tool: str, result: Any) -> ToolResult:
        return cls(tool=tool, result=result)

    @classmethod
    def failure(cls, tool: str, message: str) -> ToolResult:
        return cls(tool=tool, message=message)

    def to_payload(self) -> dict[str, Any]:
        if self.ok:
            return {"tool": self.tool, "result": self.result}
        return {"message": self.message}


ClientFactory = Callable[[], CalendarClient]
_ToolHandler = Callable[[CalendarClient, Mapping[str, Any]], Awaitable[Any]]


def _require(tool: str, parameters: Mapping[str, Any]) -> None:
    entry = _MANIFEST_BY_NAME[tool]
    missing = [
        name
        for name in entry.required
        if parameters.get(name) is None
        or (isinstance(parameters.get(name), str) and not parameters[name].strip())
    ]
    if missing:
        raise ValidationError(f"Missing required parameter(s) for {tool}: {', '.join(missing)}")


def _optional_str(parameters: Mapping[str, Any], name: str) -> str | None:
    value = parameters.get(name)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"Parameter '{name}' must be a string")
    return value or None


def _max_results(parameters: Mapping[str, Any]) -> int:
    value = parameters.get("maxResults")
    if value is None:
        return DEFAULT_MAX_RESULTS
    if isinstance(value, str) and value.strip().isdigit():
        value = int(value.strip())
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValidationError("Parameter 'maxResults' must be a positive integer")
    return value


async def _list_events(client: CalendarClient, parameters: Mapping[str, Any]) -> Any:
    return await client.list_events(
        time_min=_optional_str(parameters, "timeMin"),
        time_max=_optional_str(parameters, "timeMax"),
        max_results=_max_results(parameters),
    )


async def _create_event(client: CalendarClient, parameters: Mapping[str, Any]) -> Any:
    event = {
        "summary": parameters["summary"],
        "start": {"dateTime": parameters["start"]},
        "end": {"dateTime": parameters["end"]},
    }
    return await client.create_event(event)


async def _delete_event(client: CalendarClient, parameters: Mapping[str, Any]) -> Any:
    event_id = parameters["eventId"]
    if not isinstance(event_id, str):
        raise ValidationError("Parameter 'eventId' must be a string")
    await client.delete_event(event_id)
    return {"deleted": True}


_HANDLERS: dict[str, _ToolHandler] = {
    LIST_EVENTS: _list_events,
    CREATE_EVENT: _create_event,
    DELETE_EVENT: _delete_event,
}


class ToolDispatcher:
    """Route tool invocations to :class:`CalendarClient` operations.

    ``client_factory`` is called once per invocation, so every call gets its
    own client and token provider.
    """

    def __init__(self, client_factory: ClientFactory) -> None:
        self._client_factory = client_factory

    async def dispatch(self, invocation: ToolInvocation) -> ToolResult:
        tool = canonical_tool_name(invocation.tool)
        handler = _HANDLERS.get(tool)
        if handler is None:
            logger.info("Rejected invocation of unknown tool %r", invocation.tool)
            return ToolResult.failure(invocation.tool, UNKNOWN_TOOL_MESSAGE)

        try:
            _require(tool, invocation.parameters)
            result = await handler(self._client_factory(), invocation.parameters)
        except BridgeError as exc:
            logger.warning("Tool %s failed: %s (%s)", tool, exc.message, type(exc).__name__)
            return ToolResult.failure(tool, exc.message)

        logger.info("Tool %s completed", tool)
        return ToolResult.success(tool, result)
