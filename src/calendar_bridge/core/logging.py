"""Structured logging setup for the bridge process.

Modules log through ``logging.getLogger(__name__)``; :func:`configure_logging`
attaches a structlog ``ProcessorFormatter`` to the root logger so those
records are rendered as colored console lines (``text``) or JSON lines
(``json``), optionally mirrored to a JSON log file.

Every record carries the service name, the current OTel trace/span ids, and
has bearer tokens and credential fields masked before rendering.
"""

from __future__ import annotations

import logging
import re
import sys
from contextvars import ContextVar
from pathlib import Path

import structlog
from opentelemetry import trace

REDACTED = "<REDACTED>"

_service_context: ContextVar[str | None] = ContextVar("service_name", default=None)

# Loggers that are chatty at INFO; uvicorn.error carries startup lines and stays.
_QUIET_LOGGERS = (
    "uvicorn.access",
    "httpx",
    "httpcore",
    "mcp.server.lowlevel.server",
)

_SECRET_FIELDS = frozenset(
    {
        "access_token",
        "refresh_token",
        "client_secret",
        "private_key",
        "assertion",
        "authorization",
    }
)
_BEARER_PATTERN = re.compile(r"(Bearer\s+)[A-Za-z0-9._~+/=-]+")


def set_service_context(name: str) -> None:
    """Set the service name stamped on records from the current context."""
    _service_context.set(name)


def add_service_context(
    logger: logging.Logger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: dict,
) -> dict:
    event_dict["service"] = _service_context.get()
    return event_dict


def add_otel_context(
    logger: logging.Logger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: dict,
) -> dict:
    """Add ``trace_id``/``span_id`` of the current span (zeros outside a span)."""
    ctx = trace.get_current_span().get_span_context()
    trace_id = ctx.trace_id if ctx else 0
    span_id = ctx.span_id if ctx and trace_id else 0
    event_dict["trace_id"] = format(trace_id, "032x")
    event_dict["span_id"] = format(span_id, "016x")
    return event_dict


def redact_secrets(
    logger: logging.Logger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: dict,
) -> dict:
    """Mask credential fields and ``Bearer`` tokens in a record."""
    for key in list(event_dict):
        if key.lower() in _SECRET_FIELDS:
            event_dict[key] = REDACTED
    event = event_dict.get("event")
    if isinstance(event, str):
        event_dict["event"] = _BEARER_PATTERN.sub(rf"\1{REDACTED}", event)
    return event_dict


def _pre_chain(timestamp_fmt: str) -> list[structlog.types.Processor]:
    return [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt=timestamp_fmt, utc=True),
        structlog.stdlib.ExtraAdder(),
        add_service_context,
        add_otel_context,
        redact_secrets,
    ]


def _handler(
    handler: logging.Handler,
    renderer: structlog.types.Processor,
    *,
    timestamp_fmt: str,
) -> logging.Handler:
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
            foreign_pre_chain=_pre_chain(timestamp_fmt),
        )
    )
    return handler


def configure_logging(
    level: str = "INFO",
    fmt: str = "text",
    log_file: Path | str | None = None,
    service_name: str | None = None,
) -> None:
    """Route all stdlib logging through structlog renderers.

    Parameters
    ----------
    level:
        Root log level name, case-insensitive.
    fmt:
        ``"text"`` for the console renderer, ``"json"`` for JSON lines.
    log_file:
        Optional JSON-lines file written in addition to stderr; parent
        directories are created.
    service_name:
        Value of the ``service`` field on every record.
    """
    if service_name:
        set_service_context(service_name)

    if fmt == "json":
        console = _handler(
            logging.StreamHandler(sys.stderr),
            structlog.processors.JSONRenderer(),
            timestamp_fmt="iso",
        )
    else:
        console = _handler(
            logging.StreamHandler(sys.stderr),
            structlog.dev.ConsoleRenderer(),
            timestamp_fmt="%H:%M:%S",
        )

    handlers = [console]
    if log_file is not None:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = _handler(
            logging.FileHandler(path, encoding="utf-8"),
            structlog.processors.JSONRenderer(),
            timestamp_fmt="iso",
        )
        file_handler.setLevel(logging.DEBUG)
        handlers.append(file_handler)

    root = logging.getLogger()
    for existing in root.handlers[:]:
        root.removeHandler(existing)
        if isinstance(existing, logging.FileHandler):
            existing.close()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
