"""Tests for structured logging setup."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest
import structlog

from calendar_bridge.core.logging import (
    _QUIET_LOGGERS,
    REDACTED,
    _service_context,
    add_otel_context,
    add_service_context,
    configure_logging,
    redact_secrets,
    set_service_context,
)

pytestmark = pytest.mark.unit


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_logging():
    """Reset logging and service context between tests."""
    token = _service_context.set(None)
    yield
    _service_context.reset(token)
    root = logging.getLogger()
    for handler in root.handlers:
        if isinstance(handler, logging.FileHandler):
            handler.close()
    root.handlers.clear()
    root.setLevel(logging.WARNING)
    for name in (*_QUIET_LOGGERS, "uvicorn.error"):
        logging.getLogger(name).setLevel(logging.NOTSET)


def _read_json_lines(path: Path) -> list[dict]:
    for handler in logging.getLogger().handlers:
        handler.flush()
    return [json.loads(line) for line in path.read_text().splitlines() if line.strip()]


# ---------------------------------------------------------------------------
# Processors
# ---------------------------------------------------------------------------


class TestServiceContext:
    def test_processor_injects_service(self):
        set_service_context("calendar-bridge")
        result = add_service_context(None, "info", {"event": "test"})
        assert result["service"] == "calendar-bridge"

    def test_unset_context_is_none(self):
        assert add_service_context(None, "info", {"event": "test"})["service"] is None


class TestAddOtelContext:
    def test_zeroed_ids_when_no_span(self):
        result = add_otel_context(None, "info", {"event": "test"})
        assert result["trace_id"] == "0" * 32
        assert result["span_id"] == "0" * 16

    def test_real_ids_when_span_active(self):
        from opentelemetry.sdk.trace import TracerProvider

        provider = TracerProvider()
        tracer = provider.get_tracer("test")
        with tracer.start_as_current_span("test-span") as span:
            result = add_otel_context(None, "info", {"event": "test"})
            assert result["trace_id"] == format(span.get_span_context().trace_id, "032x")
            assert result["span_id"] == format(span.get_span_context().span_id, "016x")
        provider.shutdown()


class TestRedactSecrets:
    def test_masks_credential_fields(self):
        result = redact_secrets(
            None,
            "info",
            {"event": "exchange", "access_token": "ya29.x", "Client_Secret": "s", "tool": "t"},
        )
        assert result["access_token"] == REDACTED
        assert result["Client_Secret"] == REDACTED
        assert result["tool"] == "t"

    def test_masks_bearer_tokens_in_message(self):
        result = redact_secrets(None, "info", {"event": "sent Authorization: Bearer ya29.abc-123"})
        assert result["event"] == f"sent Authorization: Bearer {REDACTED}"


# ---------------------------------------------------------------------------
# configure_logging()
# ---------------------------------------------------------------------------


class TestConfigureLogging:
    def test_text_format_installs_console_renderer(self):
        configure_logging(fmt="text")
        formatter = logging.getLogger().handlers[0].formatter
        assert isinstance(formatter, structlog.stdlib.ProcessorFormatter)
        assert isinstance(formatter.processors[-1], structlog.dev.ConsoleRenderer)

    def test_json_format_installs_json_renderer(self):
        configure_logging(fmt="json")
        formatter = logging.getLogger().handlers[0].formatter
        assert isinstance(formatter.processors[-1], structlog.processors.JSONRenderer)

    def test_sets_service_context(self):
        configure_logging(service_name="calendar-bridge")
        assert _service_context.get() == "calendar-bridge"

    def test_quiet_loggers_capped(self):
        configure_logging()
        assert logging.getLogger("httpx").level == logging.WARNING
        assert logging.getLogger("uvicorn.access").level == logging.WARNING

    def test_uvicorn_startup_lines_kept(self):
        configure_logging(level="INFO")
        assert logging.getLogger("uvicorn.error").getEffectiveLevel() == logging.INFO

    def test_log_level_applied(self):
        configure_logging(level="debug")
        assert logging.getLogger().level == logging.DEBUG

    def test_reconfiguration_does_not_duplicate_handlers(self):
        configure_logging()
        configure_logging()
        assert len(logging.getLogger().handlers) == 1


class TestLogFile:
    def test_writes_json_lines(self, tmp_path: Path):
        log_file = tmp_path / "logs" / "bridge.log"
        configure_logging(log_file=log_file, service_name="calendar-bridge")

        logging.getLogger("calendar_bridge.test").warning("token exchange rejected")

        record = _read_json_lines(log_file)[-1]
        assert record["event"] == "token exchange rejected"
        assert record["service"] == "calendar-bridge"
        assert record["level"] == "warning"
        assert record["logger"] == "calendar_bridge.test"
        assert "trace_id" in record

    def test_secrets_masked_in_file(self, tmp_path: Path):
        log_file = tmp_path / "bridge.log"
        configure_logging(log_file=log_file)

        logging.getLogger("calendar_bridge.test").info(
            "calling with Bearer ya29.secret", extra={"refresh_token": "rt-secret"}
        )

        text = log_file.read_text()
        assert "ya29.secret" not in text
        assert "rt-secret" not in text
        assert _read_json_lines(log_file)[-1]["refresh_token"] == REDACTED
