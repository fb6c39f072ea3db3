"""Thin authenticated pass-through to the Google Calendar v3 REST API.

Every operation fetches one access token from the :class:`TokenProvider` and
issues exactly one HTTP request.  Event payloads are forwarded as opaque JSON;
there is no retry, rate-limit handling or pagination.
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

import httpx

from calendar_bridge.auth import TokenCache, TokenProvider
from calendar_bridge.config import BridgeConfig
from calendar_bridge.errors import CalendarApiError, TransportError
from calendar_bridge.kv import KVStore

logger = logging.getLogger(__name__)

GOOGLE_CALENDAR_API_BASE_URL = "https://www.googleapis.com/calendar/v3"
DEFAULT_MAX_RESULTS = 10


class CalendarClient:
    """Calendar operations scoped to a single calendar id."""

    def __init__(
        self,
        calendar_id: str,
        token_provider: TokenProvider,
        http_client: httpx.AsyncClient,
        *,
        base_url: str = GOOGLE_CALENDAR_API_BASE_URL,
    ) -> None:
        self.calendar_id = calendar_id
        self._token_provider = token_provider
        self._http_client = http_client
        self._base_url = base_url.rstrip("/")

    def _url(self, path: str) -> str:
        normalized_path = path if path.startswith("/") else f"/{path}"
        return f"{self._base_url}/calendars/{quote(self.calendar_id, safe='')}{normalized_path}"

    async def _api_fetch(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: Any = None,
    ) -> Any:
        """Issue one authenticated request and decode the response.

        Returns ``None`` for ``204 No Content`` and the decoded JSON body for
        any other 2xx status.

        Raises
        ------
        AuthError
            When no access token can be obtained; no request is sent.
        CalendarApiError
            For any non-2xx status.
        TransportError
            On network failure or a 2xx body that is not JSON.
        """
        access_token = await self._token_provider.get_access_token()
        headers = {
            "Authorization": f"Bearer {access_token.token}",
            "Content-Type": "application/json",
        }
        url = self._url(path)
        try:
            response = await self._http_client.request(
                method,
                url,
                params=params,
                json=json_body,
                headers=headers,
            )
        except httpx.HTTPError as exc:
            raise TransportError(f"Google Calendar request failed: {exc}") from exc

        if not response.is_success:
            logger.warning(
                "Google Calendar API %s %s returned %d", method, path, response.status_code
            )
            raise CalendarApiError(
                http_status=response.status_code,
                status_text=response.reason_phrase,
                body_text=response.text,
            )

        if response.status_code == 204:
            return None

        try:
            return response.json()
        except ValueError as exc:
            raise TransportError(
                "Google Calendar API returned invalid JSON for a successful response"
            ) from exc

    async def list_events(
        self,
        *,
        time_min: str | None = None,
        time_max: str | None = None,
        max_results: int = DEFAULT_MAX_RESULTS,
    ) -> Any:
        """List single (expanded) event occurrences ordered by start time."""
        params: dict[str, Any] = {}
        if time_min:
            params["timeMin"] = time_min
        if time_max:
            params["timeMax"] = time_max
        params["maxResults"] = str(max_results)
        params["singleEvents"] = "true"
        params["orderBy"] = "startTime"
        return await self._api_fetch("GET", "/events", params=params)

    async def get_event(self, event_id: str) -> Any:
        return await self._api_fetch("GET", f"/events/{quote(event_id, safe='')}")

    async def create_event(self, event: dict[str, Any]) -> Any:
        return await self._api_fetch("POST", "/events", json_body=event)

    async def update_event(self, event_id: str, event: dict[str, Any]) -> Any:
        """Replace an event (``PUT``); fields absent from *event* are cleared upstream."""
        return await self._api_fetch(
            "PUT", f"/events/{quote(event_id, safe='')}", json_body=event
        )

    async def delete_event(self, event_id: str) -> None:
        await self._api_fetch("DELETE", f"/events/{quote(event_id, safe='')}")


def build_calendar_client(
    config: BridgeConfig,
    kv_store: KVStore,
    http_client: httpx.AsyncClient,
    token_cache: TokenCache | None = None,
) -> CalendarClient:
    """Wire a fresh :class:`TokenProvider` into a fresh :class:`CalendarClient`."""
    token_provider = TokenProvider(
        kv_store,
        http_client=http_client,
        key=config.credentials.key,
        scopes=config.credentials.scopes,
        cache=token_cache,
    )
    return CalendarClient(config.calendar_id, token_provider, http_client)
