"""Error taxonomy shared by the token provider, calendar client and dispatcher.

Every failure that can surface to a caller is a :class:`BridgeError`.  The
dispatch boundary, the stream handler and the HTTP error handlers all key off
that base class, so anything raised below them with a subclass is converted
into a user-visible payload instead of crashing the connection.

- ``AuthError``: credential missing/invalid, or the token exchange was rejected
- ``CalendarApiError``: non-2xx response from the Google Calendar API
- ``ValidationError``: unknown tool or missing/invalid parameter
- ``TransportError``: network failure, or an unparseable request/response body

Messages are safe to log: they never include token or key material.
"""

from __future__ import annotations


class BridgeError(Exception):
    """Base class for all errors converted to ``{message}``/``{error}`` payloads."""

    @property
    def message(self) -> str:
        return str(self)


class AuthError(BridgeError):
    """Raised when a bearer token cannot be obtained."""


class CalendarApiError(BridgeError):
    """Raised when the Google Calendar API answers with a non-2xx status."""

    def __init__(self, *, http_status: int, status_text: str, body_text: str) -> None:
        self.http_status = http_status
        self.status_text = status_text
        self.body_text = body_text
        super().__init__(
            f"Google Calendar API error: {http_status} {status_text} - {body_text}"
        )


class ValidationError(BridgeError):
    """Raised for unknown tools and missing or malformed tool parameters."""


class TransportError(BridgeError):
    """Raised on network failures and unparseable bodies."""
