"""
Tests for error classification.
"""
import asyncio

import pytest
import requests

from sales_dashboard.core.error_taxonomy import (
    AllCallsFailedError,
    DataFormatError,
    ErrorCategory,
    RetryExhaustedError,
    SessionExpiredError,
    UpstreamHTTPError,
    UpstreamRequestError,
    UpstreamResponseError,
    classify_error,
    is_retryable_error,
)


class TestRetryability:
    """The retry decision derived from classification."""

    @pytest.mark.parametrize("error", [
        UpstreamHTTPError(500),
        UpstreamHTTPError(502),
        UpstreamHTTPError(503),
        UpstreamHTTPError(504),
        UpstreamRequestError("Request timeout - please try again", timeout=True),
        UpstreamRequestError("Network error: connection refused"),
        requests.ConnectionError("boom"),
        requests.Timeout("read"),
        asyncio.TimeoutError(),
        Exception("El servidor está sobrecargado"),
        Exception("La consulta tardó demasiado"),
        Exception("Maximum execution time of 30 seconds exceeded"),
        Exception("The operation was aborted"),
    ])
    def test_transient_errors_are_retryable(self, error):
        assert is_retryable_error(error) is True

    @pytest.mark.parametrize("error", [
        UpstreamHTTPError(400),
        UpstreamHTTPError(401),
        UpstreamHTTPError(403),
        UpstreamHTTPError(404),
        UpstreamHTTPError(422),
        SessionExpiredError(),
        Exception("Tu sesión ha expirado"),
        Exception("CSRF token mismatch"),
        Exception("Unauthorized"),
        UpstreamResponseError("Invalid date range"),
        DataFormatError("bad payload"),
        ValueError("something unexpected"),
    ])
    def test_permanent_errors_are_not_retryable(self, error):
        assert is_retryable_error(error) is False

    def test_non_retryable_pattern_wins(self):
        # Mentions both a timeout and a 401
        assert is_retryable_error(Exception("timeout after 401 Unauthorized")) is False

    def test_transport_type_with_auth_message_not_retried(self):
        assert is_retryable_error(requests.ConnectionError("403 Forbidden by proxy")) is False

    @pytest.mark.parametrize("port", [4000, 4010, 8403, 14190])
    def test_request_error_with_port_digits_is_retryable(self, port):
        error = UpstreamRequestError(
            f"Network error: HTTPConnectionPool(host='localhost', port={port}): Connection refused"
        )
        classified = classify_error(error, pipeline_phase="current-data")

        assert classified.recoverable is True
        assert classified.category == ErrorCategory.NETWORK_ERROR
        assert classified.pipeline_phase == "current-data"


class TestCategories:
    """Category assignment."""

    def test_server_error(self):
        assert classify_error(UpstreamHTTPError(503)).category == ErrorCategory.SERVER_ERROR

    def test_timeout(self):
        error = UpstreamRequestError("Request timeout - please try again", timeout=True)
        assert classify_error(error).category == ErrorCategory.TIMEOUT

    def test_network(self):
        assert classify_error(requests.ConnectionError("connection refused")).category == ErrorCategory.NETWORK_ERROR

    def test_overloaded(self):
        assert classify_error(Exception("server overloaded")).category == ErrorCategory.SERVER_OVERLOADED

    def test_session_expired(self):
        classified = classify_error(SessionExpiredError())
        assert classified.category == ErrorCategory.SESSION_EXPIRED
        assert classified.recovery_actions[0].action_type == "reauthenticate"

    def test_auth(self):
        assert classify_error(UpstreamHTTPError(401)).category == ErrorCategory.AUTHENTICATION_FAILED

    def test_client_error(self):
        assert classify_error(UpstreamHTTPError(422)).category == ErrorCategory.CLIENT_ERROR

    def test_data_format_keeps_own_category(self):
        assert classify_error(DataFormatError("bad")).category == ErrorCategory.DATA_FORMAT_ERROR

    def test_unknown(self):
        classified = classify_error(RuntimeError("weird"), pipeline_phase="chart-data")
        assert classified.category == ErrorCategory.UNKNOWN_ERROR
        assert classified.pipeline_phase == "chart-data"
        assert classified.stack_trace is not None

    def test_to_dict(self):
        data = classify_error(UpstreamHTTPError(503), context={"fetch": "current-data"}).to_dict()
        assert data["category"] == "SERVER_ERROR"
        assert data["recoverable"] is True
        assert data["context"] == {"fetch": "current-data"}
        assert data["user_message"]


class TestExceptions:

    def test_http_error_message(self):
        error = UpstreamHTTPError(503)
        assert str(error) == "HTTP error! status: 503"
        assert error.status == 503

    def test_retry_exhausted(self):
        errors = [UpstreamHTTPError(503), UpstreamHTTPError(502)]
        error = RetryExhaustedError("Monthly totals", 2, 1.5, errors)
        assert str(error) == "Monthly totals failed after 2 attempts. Last error: HTTP error! status: 502"
        assert error.context["errors"] == ["HTTP error! status: 503", "HTTP error! status: 502"]

    def test_all_calls_failed(self):
        error = AllCallsFailedError({"current-data": UpstreamHTTPError(500)})
        assert "All API calls failed" in str(error)
        assert "current-data" in error.failures
        assert error.category == ErrorCategory.ALL_CALLS_FAILED
