"""Bearer-token acquisition for Google Calendar API calls.

:class:`TokenProvider` reads credential JSON from a :class:`~calendar_bridge.kv.KVStore`
on every call and exchanges it at Google's token endpoint:

- ``type: "service_account"``: a JWT assertion signed with the account's
  private key (``google-auth``) is posted as a ``jwt-bearer`` grant.
- ``type: "authorized_user"`` (or an OAuth client JSON carrying a
  ``refresh_token``): a ``refresh_token`` grant.

There is no retry.  Caching is opt-in through :class:`TokenCache`; without a
cache every call performs exactly one exchange.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx
from google.auth import jwt as google_jwt
from google.oauth2 import service_account

from calendar_bridge.config import CALENDAR_SCOPE, DEFAULT_CREDENTIAL_KEY
from calendar_bridge.errors import AuthError
from calendar_bridge.kv import KVStore

logger = logging.getLogger(__name__)

GOOGLE_OAUTH_TOKEN_URL = "https://oauth2.googleapis.com/token"
JWT_BEARER_GRANT_TYPE = "urn:ietf:params:oauth:grant-type:jwt-bearer"
ASSERTION_LIFETIME_SECONDS = 3600
DEFAULT_EXPIRES_IN_SECONDS = 3600
MISSING_CREDENTIAL_MESSAGE = "Service account JSON not found"


@dataclass(frozen=True)
class AccessToken:
    """A short-lived bearer token and the instant it stops being valid."""

    token: str
    expires_at: datetime

    def __repr__(self) -> str:
        return f"AccessToken(token=<REDACTED>, expires_at={self.expires_at.isoformat()!r})"

    __str__ = __repr__


class TokenCache:
    """Time-bounded token cache keyed by credential identity and scopes.

    A token is served until ``refresh_margin`` before it expires, but for at
    least ``min_ttl`` after it was stored.  Concurrent misses for the same
    identity share one exchange.
    """

    def __init__(
        self,
        *,
        refresh_margin: timedelta = timedelta(seconds=60),
        min_ttl: timedelta = timedelta(seconds=30),
    ) -> None:
        self._refresh_margin = refresh_margin
        self._min_ttl = min_ttl
        self._entries: dict[tuple[str, tuple[str, ...]], tuple[AccessToken, datetime]] = {}
        self._locks: dict[tuple[str, tuple[str, ...]], asyncio.Lock] = {}

    def lock_for(self, key: tuple[str, tuple[str, ...]]) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    def get(self, key: tuple[str, tuple[str, ...]]) -> AccessToken | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        token, cached_until = entry
        if datetime.now(UTC) >= cached_until:
            del self._entries[key]
            return None
        return token

    def put(self, key: tuple[str, tuple[str, ...]], token: AccessToken) -> None:
        now = datetime.now(UTC)
        cached_until = max(token.expires_at - self._refresh_margin, now + self._min_ttl)
        self._entries[key] = (token, min(cached_until, token.expires_at))

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


def _coerce_expires_in_seconds(value: Any) -> int:
    if isinstance(value, bool):
        return DEFAULT_EXPIRES_IN_SECONDS
    if isinstance(value, int | float):
        return int(value) if value > 0 else DEFAULT_EXPIRES_IN_SECONDS
    return DEFAULT_EXPIRES_IN_SECONDS


def _extract_credential_value(payload: dict[str, Any], key: str) -> Any:
    if key in payload:
        return payload[key]

    for nested_key in ("installed", "web"):
        nested = payload.get(nested_key)
        if isinstance(nested, dict) and key in nested:
            return nested[key]
    return None


def _safe_token_error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None

    if isinstance(payload, dict):
        description = payload.get("error_description")
        if isinstance(description, str) and description.strip():
            return " ".join(description.split())[:200]
        error = payload.get("error")
        if isinstance(error, str) and error.strip():
            return " ".join(error.split())[:200]

    raw_text = response.text.strip()
    if raw_text:
        return " ".join(raw_text.split())[:200]
    return "Request failed without an error payload"


def parse_credential_json(raw_value: str) -> dict[str, Any]:
    """Decode stored credential JSON, raising :class:`AuthError` when malformed."""
    try:
        payload = json.loads(raw_value)
    except json.JSONDecodeError as exc:
        raise AuthError(f"Credential JSON must be valid JSON: {exc.msg}") from exc

    if not isinstance(payload, dict):
        raise AuthError("Credential JSON must decode to a JSON object")
    return payload


def credential_identity(info: dict[str, Any]) -> str:
    """Return a non-secret identity for *info* (service account email or client id)."""
    for key in ("client_email", "client_id"):
        value = _extract_credential_value(info, key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    raise AuthError("Credential JSON has neither client_email nor client_id")


def _sign_assertion(info: dict[str, Any], scopes: Sequence[str], issued_at: int) -> str:
    """Build and sign the JWT-bearer assertion for a service account."""
    try:
        credentials = service_account.Credentials.from_service_account_info(
            info, scopes=list(scopes)
        )
    except (ValueError, TypeError) as exc:
        raise AuthError(f"Service account JSON is invalid: {exc}") from exc

    claims = {
        "iss": credentials.service_account_email,
        "scope": " ".join(scopes),
        "aud": info.get("token_uri") or GOOGLE_OAUTH_TOKEN_URL,
        "iat": issued_at,
        "exp": issued_at + ASSERTION_LIFETIME_SECONDS,
    }
    assertion = google_jwt.encode(credentials.signer, claims)
    return assertion.decode("ascii") if isinstance(assertion, bytes) else assertion


def _refresh_grant(info: dict[str, Any]) -> dict[str, str]:
    grant = {
        "client_id": _extract_credential_value(info, "client_id"),
        "client_secret": _extract_credential_value(info, "client_secret"),
        "refresh_token": _extract_credential_value(info, "refresh_token"),
    }
    invalid = sorted(
        key for key, value in grant.items() if not isinstance(value, str) or not value.strip()
    )
    if invalid:
        raise AuthError(
            f"Credential JSON is missing required field(s): {', '.join(invalid)}"
        )
    return {
        **{key: value.strip() for key, value in grant.items()},
        "grant_type": "refresh_token",
    }


class TokenProvider:
    """Exchange KV-stored credentials for a Google access token.

    Parameters
    ----------
    kv_store:
        Where the credential JSON is read from on every call.
    http_client:
        Shared ``httpx.AsyncClient`` used for the token exchange.
    key:
        KV key holding the credential JSON.
    scopes:
        OAuth scopes requested for service-account tokens.
    cache:
        Optional :class:`TokenCache`.  ``None`` means one exchange per call.
    """

    def __init__(
        self,
        kv_store: KVStore,
        *,
        http_client: httpx.AsyncClient,
        key: str = DEFAULT_CREDENTIAL_KEY,
        scopes: Sequence[str] = (CALENDAR_SCOPE,),
        cache: TokenCache | None = None,
    ) -> None:
        self._kv_store = kv_store
        self._http_client = http_client
        self._key = key
        self._scopes = tuple(scopes)
        self._cache = cache

    async def get_access_token(self) -> AccessToken:
        raw_value = await self._kv_store.get(self._key)
        if raw_value is None or not raw_value.strip():
            raise AuthError(MISSING_CREDENTIAL_MESSAGE)
        info = parse_credential_json(raw_value)

        if self._cache is None:
            return await self._exchange(info)

        cache_key = (credential_identity(info), self._scopes)
        cached = self._cache.get(cache_key)
        if cached is not None:
            return cached
        async with self._cache.lock_for(cache_key):
            cached = self._cache.get(cache_key)
            if cached is not None:
                return cached
            token = await self._exchange(info)
            self._cache.put(cache_key, token)
            return token

    async def _exchange(self, info: dict[str, Any]) -> AccessToken:
        credential_type = info.get("type")
        if credential_type == "service_account":
            token_uri = info.get("token_uri") or GOOGLE_OAUTH_TOKEN_URL
            data = {
                "grant_type": JWT_BEARER_GRANT_TYPE,
                "assertion": _sign_assertion(info, self._scopes, int(time.time())),
            }
        elif credential_type == "authorized_user" or (
            credential_type is None and _extract_credential_value(info, "refresh_token")
        ):
            token_uri = _extract_credential_value(info, "token_uri") or GOOGLE_OAUTH_TOKEN_URL
            data = _refresh_grant(info)
        else:
            raise AuthError(f"Unsupported credential type: {credential_type!r}")

        return await self._post_token_request(token_uri, data)

    async def _post_token_request(self, token_uri: str, data: dict[str, str]) -> AccessToken:
        try:
            response = await self._http_client.post(
                token_uri,
                data=data,
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as exc:
            raise AuthError(f"Google OAuth token request failed: {exc}") from exc

        if response.status_code < 200 or response.status_code >= 300:
            raise AuthError(
                "Google OAuth token exchange rejected "
                f"({response.status_code}): {_safe_token_error_message(response)}"
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise AuthError("Google OAuth token endpoint returned invalid JSON") from exc

        access_token = payload.get("access_token") if isinstance(payload, dict) else None
        if not isinstance(access_token, str) or not access_token.strip():
            raise AuthError("Google OAuth token response is missing a non-empty access_token")

        expires_in = _coerce_expires_in_seconds(payload.get("expires_in"))
        logger.debug("Obtained Google access token (expires_in=%ds)", expires_in)
        return AccessToken(
            token=access_token.strip(),
            expires_at=datetime.now(UTC) + timedelta(seconds=expires_in),
        )
