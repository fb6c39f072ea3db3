"""REST debug endpoints: direct access to calendar events.

Responses are the Google Calendar JSON, forwarded unchanged.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query, Request

from calendar_bridge.api.deps import get_calendar_client, read_json_body
from calendar_bridge.calendar_client import DEFAULT_MAX_RESULTS, CalendarClient
from calendar_bridge.errors import ValidationError

router = APIRouter(prefix="/events", tags=["events"])


async def _event_body(request: Request) -> dict[str, Any]:
    body = await read_json_body(request)
    if not isinstance(body, dict):
        raise ValidationError("Event body must be a JSON object")
    return body


@router.get("")
async def list_events(
    time_min: str | None = Query(default=None, alias="timeMin"),
    time_max: str | None = Query(default=None, alias="timeMax"),
    max_results: int = Query(default=DEFAULT_MAX_RESULTS, alias="maxResults", ge=1),
    client: CalendarClient = Depends(get_calendar_client),
) -> Any:
    return await client.list_events(
        time_min=time_min,
        time_max=time_max,
        max_results=max_results,
    )


@router.post("")
async def create_event(
    request: Request,
    client: CalendarClient = Depends(get_calendar_client),
) -> Any:
    return await client.create_event(await _event_body(request))


@router.get("/{event_id}")
async def get_event(
    event_id: str,
    client: CalendarClient = Depends(get_calendar_client),
) -> Any:
    return await client.get_event(event_id)


@router.put("/{event_id}")
async def update_event(
    event_id: str,
    request: Request,
    client: CalendarClient = Depends(get_calendar_client),
) -> Any:
    return await client.update_event(event_id, await _event_body(request))


@router.delete("/{event_id}")
async def delete_event(
    event_id: str,
    client: CalendarClient = Depends(get_calendar_client),
) -> dict[str, bool]:
    await client.delete_event(event_id)
    return {"deleted": True}
