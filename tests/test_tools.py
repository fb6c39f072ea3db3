"""Tests for the tool manifest, invocation parsing and ToolDispatcher."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from calendar_bridge.errors import TransportError, ValidationError
from calendar_bridge.tools import (
    CREATE_EVENT,
    DELETE_EVENT,
    LIST_EVENTS,
    TOOL_MANIFEST,
    UNKNOWN_TOOL_MESSAGE,
    ToolDispatcher,
    ToolInvocation,
    ToolResult,
    canonical_tool_name,
    manifest_payload,
)

pytestmark = pytest.mark.unit


@pytest.fixture
def dispatcher(calendar_client) -> ToolDispatcher:
    return ToolDispatcher(lambda: calendar_client)


class TestManifest:
    def test_tool_names_in_order(self):
        assert [entry.name for entry in TOOL_MANIFEST] == [LIST_EVENTS, CREATE_EVENT, DELETE_EVENT]

    def test_payload_shape(self):
        payload = manifest_payload()
        assert list(payload) == ["tools"]
        create = payload["tools"][1]
        assert create["name"] == "create-event"
        assert set(create["parameters"]) == {"summary", "start", "end"}
        assert create["required"] == ["summary", "start", "end"]

    def test_payload_is_json_serialisable(self):
        assert json.loads(json.dumps(manifest_payload())) == manifest_payload()

    def test_legacy_names(self):
        assert canonical_tool_name("list_events") == LIST_EVENTS
        assert canonical_tool_name("delete-event") == DELETE_EVENT
        assert canonical_tool_name("other") == "other"


class TestToolInvocation:
    def test_from_json(self):
        invocation = ToolInvocation.from_json(b'{"tool": "list-events", "parameters": {"a": 1}}')
        assert invocation == ToolInvocation(tool="list-events", parameters={"a": 1})

    def test_parameters_default_to_empty(self):
        assert ToolInvocation.from_payload({"tool": "list-events"}).parameters == {}

    def test_invalid_json(self):
        with pytest.raises(TransportError, match="Invalid JSON"):
            ToolInvocation.from_json(b"{oops")

    @pytest.mark.parametrize(
        "payload",
        [[], "list-events", {"parameters": {}}, {"tool": ""}, {"tool": "x", "parameters": []}],
    )
    def test_wrong_shape(self, payload):
        with pytest.raises(ValidationError):
            ToolInvocation.from_payload(payload)

    def test_arguments_key(self):
        invocation = ToolInvocation.from_payload(
            {"tool": "list_events", "arguments": {"maxResults": 2}}, arguments_key="arguments"
        )
        assert invocation.parameters == {"maxResults": 2}


class TestToolResult:
    def test_success_payload(self):
        assert ToolResult.success("list-events", {"items": []}).to_payload() == {
            "tool": "list-events",
            "result": {"items": []},
        }

    def test_failure_payload(self):
        result = ToolResult.failure("list-events", "boom")
        assert not result.ok
        assert result.to_payload() == {"message": "boom"}


class TestDispatchListEvents:
    async def test_forwards_parameters(self, fake_google, dispatcher):
        result = await dispatcher.dispatch(
            ToolInvocation(
                tool=LIST_EVENTS,
                parameters={"timeMin": "2025-01-01T00:00:00Z", "maxResults": 3},
            )
        )
        assert result.ok
        assert result.tool == LIST_EVENTS
        assert result.result["query"]["timeMin"] == "2025-01-01T00:00:00Z"
        assert result.result["query"]["maxResults"] == "3"

    async def test_default_max_results(self, fake_google, dispatcher):
        result = await dispatcher.dispatch(ToolInvocation(tool=LIST_EVENTS))
        assert result.result["query"]["maxResults"] == "10"

    async def test_numeric_string_max_results(self, dispatcher):
        result = await dispatcher.dispatch(
            ToolInvocation(tool=LIST_EVENTS, parameters={"maxResults": "7"})
        )
        assert result.result["query"]["maxResults"] == "7"

    @pytest.mark.parametrize("value", [0, -1, "ten", True, 2.5])
    async def test_invalid_max_results(self, fake_google, dispatcher, value):
        result = await dispatcher.dispatch(
            ToolInvocation(tool=LIST_EVENTS, parameters={"maxResults": value})
        )
        assert not result.ok
        assert "maxResults" in result.message
        assert fake_google.requests == []

    async def test_legacy_alias(self, dispatcher):
        result = await dispatcher.dispatch(ToolInvocation(tool="list_events"))
        assert result.ok
        assert result.tool == LIST_EVENTS


class TestDispatchCreateEvent:
    async def test_builds_event_body(self, fake_google, dispatcher):
        result = await dispatcher.dispatch(
            ToolInvocation(
                tool=CREATE_EVENT,
                parameters={
                    "summary": "Test",
                    "start": "2025-01-01T10:00:00Z",
                    "end": "2025-01-01T11:00:00Z",
                },
            )
        )
        assert result.ok
        sent = json.loads(fake_google.calendar_requests[0].content)
        assert sent == {
            "summary": "Test",
            "start": {"dateTime": "2025-01-01T10:00:00Z"},
            "end": {"dateTime": "2025-01-01T11:00:00Z"},
        }
        assert result.result["summary"] == "Test"

    async def test_missing_parameters(self, fake_google, dispatcher):
        result = await dispatcher.dispatch(
            ToolInvocation(tool=CREATE_EVENT, parameters={"summary": "Test", "start": " "})
        )
        assert not result.ok
        assert result.message == "Missing required parameter(s) for create-event: start, end"
        assert fake_google.requests == []


class TestDispatchDeleteEvent:
    async def test_returns_deleted(self, fake_google, dispatcher):
        result = await dispatcher.dispatch(
            ToolInvocation(tool=DELETE_EVENT, parameters={"eventId": "evt-9"})
        )
        assert result.result == {"deleted": True}
        assert fake_google.calendar_requests[0].url.path.endswith("/events/evt-9")

    async def test_missing_event_id(self, dispatcher):
        result = await dispatcher.dispatch(ToolInvocation(tool=DELETE_EVENT))
        assert result.message == "Missing required parameter(s) for delete-event: eventId"


class TestDispatchErrors:
    async def test_unknown_tool(self, fake_google, dispatcher):
        result = await dispatcher.dispatch(ToolInvocation(tool="send-email"))
        assert result.to_payload() == {"message": UNKNOWN_TOOL_MESSAGE}
        assert result.tool == "send-email"
        assert fake_google.requests == []

    async def test_calendar_error_becomes_failure(self, fake_google, dispatcher):
        fake_google.calendar_handler = lambda request: httpx.Response(403, text="forbidden")
        result = await dispatcher.dispatch(ToolInvocation(tool=LIST_EVENTS))
        assert result.message == "Google Calendar API error: 403 Forbidden - forbidden"

    async def test_client_built_once_per_invocation(self):
        client = MagicMock()
        client.list_events = AsyncMock(return_value={"items": []})
        factory = MagicMock(return_value=client)
        dispatcher = ToolDispatcher(factory)

        await dispatcher.dispatch(ToolInvocation(tool=LIST_EVENTS))
        await dispatcher.dispatch(ToolInvocation(tool=LIST_EVENTS))

        assert factory.call_count == 2

    async def test_unknown_tool_does_not_build_client(self):
        factory = MagicMock()
        await ToolDispatcher(factory).dispatch(ToolInvocation(tool="nope"))
        factory.assert_not_called()

    async def test_one_token_exchange_per_invocation(self, fake_google, dispatcher):
        await dispatcher.dispatch(ToolInvocation(tool=LIST_EVENTS))
        await dispatcher.dispatch(ToolInvocation(tool=DELETE_EVENT, parameters={"eventId": "x"}))
        assert len(fake_google.token_requests) == 2
