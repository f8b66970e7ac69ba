"""
Unit Tests for the Exception Hierarchy

Tests structure, context helpers and the classification used by callers.
"""

import pytest

from llm_reliability.core.exceptions import (
    CacheEntryTooLargeError,
    CacheError,
    CircuitBreakerError,
    CircuitBreakerOpenError,
    ConfigurationError,
    ConnectionPoolError,
    ConnectionPoolExhaustedError,
    NoActiveConnectionError,
    OperationTimeoutError,
    ReconnectionExhaustedError,
    ReliabilityError,
    ResponseStatusError,
    SerializationError,
    SessionClosedError,
    TransportError,
    WebSocketError,
)


@pytest.mark.unit
class TestReliabilityError:
    def test_message_and_details(self):
        err = ReliabilityError("boom", request_id="req-1", details={"host": "a"})

        assert str(err) == "boom"
        assert err.request_id == "req-1"
        assert err.details == {"host": "a"}

    def test_details_are_copied(self):
        details = {"host": "a"}
        err = ReliabilityError("boom", details=details)
        err.with_context(port=443)

        assert details == {"host": "a"}
        assert err.details == {"host": "a", "port": 443}

    def test_to_dict(self):
        err = TransportError("down", details={"operation": "send"})

        assert err.to_dict() == {
            "error_type": "TransportError",
            "message": "down",
            "request_id": None,
            "details": {"operation": "send"},
        }

    def test_from_exception_keeps_cause_information(self):
        cause = ValueError("bad value")
        err = SerializationError.from_exception(cause, operation="encode_request")

        assert isinstance(err, SerializationError)
        assert err.message == "bad value"
        assert err.details["original_error"] == "ValueError"
        assert err.details["operation"] == "encode_request"

    def test_repr_includes_details(self):
        err = ConfigurationError("missing", details={"key": "X"})
        assert "ConfigurationError" in repr(err)
        assert "key" in repr(err)


@pytest.mark.unit
class TestHierarchy:
    @pytest.mark.parametrize(
        "exc_type",
        [
            TransportError,
            OperationTimeoutError,
            SerializationError,
            CircuitBreakerOpenError,
            ConnectionPoolExhaustedError,
            CacheEntryTooLargeError,
            ReconnectionExhaustedError,
            NoActiveConnectionError,
            SessionClosedError,
        ],
    )
    def test_everything_is_a_reliability_error(self, exc_type):
        assert issubclass(exc_type, ReliabilityError)

    def test_timeout_is_distinct_from_transport(self):
        assert not issubclass(OperationTimeoutError, TransportError)

    def test_grouping(self):
        assert issubclass(CircuitBreakerOpenError, CircuitBreakerError)
        assert issubclass(ConnectionPoolExhaustedError, ConnectionPoolError)
        assert issubclass(CacheEntryTooLargeError, CacheError)
        assert issubclass(ReconnectionExhaustedError, WebSocketError)


@pytest.mark.unit
class TestSpecificErrors:
    def test_response_status_error(self):
        err = ResponseStatusError("HTTP 503", status_code=503)

        assert err.status_code == 503
        assert err.is_server_error is True
        assert err.details["status_code"] == 503

    def test_client_status_is_not_server_error(self):
        assert ResponseStatusError("HTTP 404", status_code=404).is_server_error is False

    def test_pool_exhausted_code(self):
        err = ConnectionPoolExhaustedError(details={"host": "a"})

        assert err.code == "CONNECTION_POOL_EXHAUSTED"
        assert "exhausted" in err.message
