"""
Unit Tests for Logging Module

Tests logger configuration, request context, processors and redaction.
"""

from unittest.mock import MagicMock

import pytest

from llm_reliability.core.logging.logger import (
    add_log_level_name,
    add_request_id,
    add_timestamp,
    clear_request_id,
    get_logger,
    get_request_id,
    log_stage,
    redact_secrets,
    set_request_id,
    setup_logging,
)


@pytest.fixture(autouse=True)
def _clear_context():
    clear_request_id()
    yield
    clear_request_id()


@pytest.mark.unit
class TestLoggerCreation:
    def test_get_logger_returns_logger_instance(self):
        logger = get_logger(__name__)
        assert hasattr(logger, "info")
        assert hasattr(logger, "warning")

    def test_setup_logging_accepts_both_formats(self):
        setup_logging(log_level="DEBUG", log_format="console")
        setup_logging(log_level="INFO", log_format="json")


@pytest.mark.unit
class TestRequestContext:
    def test_set_and_get_request_id(self):
        set_request_id("req-123")
        assert get_request_id() == "req-123"

    def test_clear_request_id(self):
        set_request_id("req-123")
        clear_request_id()
        assert get_request_id() is None

    def test_add_request_id_processor(self):
        set_request_id("req-abc")
        event = add_request_id(None, "info", {"event": "hello"})
        assert event["request_id"] == "req-abc"

    def test_add_request_id_skips_when_unset(self):
        event = add_request_id(None, "info", {"event": "hello"})
        assert "request_id" not in event


@pytest.mark.unit
class TestProcessors:
    def test_add_timestamp_is_utc_iso(self):
        event = add_timestamp(None, "info", {"event": "x"})
        assert event["timestamp"].endswith("Z")

    def test_add_log_level_name_uppercases(self):
        event = add_log_level_name(None, "info", {"event": "x", "level": "warning"})
        assert event["level"] == "WARNING"

    @pytest.mark.parametrize(
        "raw",
        [
            "using key sk-abc123DEF456",
            "google key AIzaSyExample_1234",
            "token hf_abcdef123456",
        ],
    )
    def test_redact_provider_keys(self, raw):
        event = redact_secrets(None, "info", {"event": raw})
        assert "[REDACTED]" in event["event"]

    def test_redact_bearer_token_in_any_field(self):
        event = redact_secrets(None, "info", {"event": "request", "auth": "Bearer abc.def.ghi"})
        assert event["auth"] == "Bearer [REDACTED]"

    def test_redact_leaves_plain_text(self):
        event = redact_secrets(None, "info", {"event": "connection acquired", "count": 3})
        assert event == {"event": "connection acquired", "count": 3}


@pytest.mark.unit
class TestLogStage:
    def test_log_stage_passes_stage_and_fields(self):
        logger = MagicMock()
        log_stage(logger, "CP.2", "Connection acquired", host="api.example.com")
        logger.info.assert_called_once_with("Connection acquired", stage="CP.2", host="api.example.com")

    def test_log_stage_honours_level(self):
        logger = MagicMock()
        log_stage(logger, "CB.1", "Circuit opened", level="WARNING")
        logger.warning.assert_called_once_with("Circuit opened", stage="CB.1")
