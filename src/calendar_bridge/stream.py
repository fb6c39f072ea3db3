"""Event-stream handler for MCP-over-SSE connections.

A connection moves through ``OPENED -> MANIFEST_SENT -> STREAMING -> CLOSED``:

1. ``manifest`` is yielded first, exactly once.
2. When the connection carries a POSTed ``{tool, parameters}`` body, it is
   dispatched and exactly one ``tool_response`` or ``error`` event follows.
3. While ``keep_alive`` is set, a ``heartbeat`` event carrying the current
   UTC timestamp is yielded every ``heartbeat_interval`` seconds until the
   peer disconnects or the generator is closed or cancelled.

Failures while parsing or dispatching become ``error`` events; they never
escape the generator.
"""

from __future__ import annotations

import asyncio
import enum
import json
import logging
from collections.abc import AsyncGenerator, Awaitable, Callable
from contextlib import aclosing
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from calendar_bridge.config import DEFAULT_HEARTBEAT_INTERVAL_S
from calendar_bridge.errors import BridgeError
from calendar_bridge.tools import ToolDispatcher, ToolInvocation, manifest_payload

logger = logging.getLogger(__name__)

EVENT_MANIFEST = "manifest"
EVENT_TOOL_RESPONSE = "tool_response"
EVENT_ERROR = "error"
EVENT_HEARTBEAT = "heartbeat"


class StreamState(enum.StrEnum):
    OPENED = "opened"
    MANIFEST_SENT = "manifest_sent"
    STREAMING = "streaming"
    CLOSED = "closed"


@dataclass(frozen=True)
class StreamEvent:
    event: str
    data: dict[str, Any]

    def encode(self) -> str:
        """Render in SSE wire format: ``event: <name>\\ndata: <json>\\n\\n``."""
        return f"event: {self.event}\ndata: {json.dumps(self.data)}\n\n"


def _utc_timestamp() -> str:
    return datetime.now(UTC).isoformat()


class StreamHandler:
    """Produce the events of one stream connection.

    Parameters
    ----------
    dispatcher:
        Dispatcher used for a POSTed tool invocation.
    heartbeat_interval:
        Seconds between heartbeats.
    is_disconnected:
        Optional coroutine function polled after each sleep; a truthy result
        ends the stream (Starlette's ``Request.is_disconnected``).
    sleep:
        Awaitable sleep, replaceable in tests.
    clock:
        Timestamp source for heartbeat payloads.
    """

    def __init__(
        self,
        dispatcher: ToolDispatcher,
        *,
        heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL_S,
        is_disconnected: Callable[[], Awaitable[bool]] | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], str] = _utc_timestamp,
    ) -> None:
        if heartbeat_interval <= 0:
            raise ValueError("heartbeat_interval must be positive")
        self._dispatcher = dispatcher
        self._heartbeat_interval = heartbeat_interval
        self._is_disconnected = is_disconnected
        self._sleep = sleep
        self._clock = clock
        self.state = StreamState.OPENED

    async def events(
        self,
        body: bytes | None = None,
        *,
        keep_alive: bool = True,
    ) -> AsyncGenerator[StreamEvent, None]:
        """Yield the connection's events; *body* is the POSTed invocation, if any."""
        if self.state is not StreamState.OPENED:
            raise RuntimeError(f"Stream already used (state={self.state})")
        try:
            self.state = StreamState.MANIFEST_SENT
            yield StreamEvent(EVENT_MANIFEST, manifest_payload())

            self.state = StreamState.STREAMING
            if body is not None:
                yield await self._invoke(body)

            while keep_alive:
                await self._sleep(self._heartbeat_interval)
                if self._is_disconnected is not None and await self._is_disconnected():
                    logger.debug("Peer disconnected; stopping heartbeats")
                    break
                yield StreamEvent(EVENT_HEARTBEAT, {"timestamp": self._clock()})
        finally:
            self.state = StreamState.CLOSED
            logger.debug("Stream closed")

    async def _invoke(self, body: bytes) -> StreamEvent:
        try:
            invocation = ToolInvocation.from_json(body)
            result = await self._dispatcher.dispatch(invocation)
        except BridgeError as exc:
            logger.info("Stream invocation rejected: %s", exc.message)
            return StreamEvent(EVENT_ERROR, {"message": exc.message})
        except Exception as exc:
            logger.error("Unhandled error during stream tool invocation", exc_info=True)
            return StreamEvent(EVENT_ERROR, {"message": str(exc) or type(exc).__name__})

        if result.ok:
            return StreamEvent(EVENT_TOOL_RESPONSE, result.to_payload())
        return StreamEvent(EVENT_ERROR, result.to_payload())


async def encode_events(
    events: AsyncGenerator[StreamEvent, None],
) -> AsyncGenerator[str, None]:
    """Adapt a :class:`StreamEvent` generator to SSE text chunks.

    The source generator is closed when this one is, so its ``finally`` runs
    as soon as the response is torn down.
    """
    async with aclosing(events):
        async for event in events:
            yield event.encode()
