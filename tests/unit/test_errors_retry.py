"""Tests for the error taxonomy and retry kernel."""
import time

import pytest
import requests

from node_sdk.errors import ErrorCode, ExecutionError, create_error, normalize_error
from node_sdk.retry import RetryConfig, calculate_backoff_delay, is_retryable_error, with_retry


class TestExecutionError:
    """Test ExecutionError defaults and serialization."""

    def test_retryable_defaults_from_code(self):
        assert ExecutionError(ErrorCode.RATE_LIMITED, "slow down").retryable is True
        assert ExecutionError(ErrorCode.SERVICE_UNAVAILABLE, "down").retryable is True
        assert ExecutionError(ErrorCode.VALIDATION_ERROR, "bad").retryable is False
        assert ExecutionError(ErrorCode.UNAUTHORIZED, "no").retryable is False

    def test_explicit_retryable_wins(self):
        error = create_error(ErrorCode.TIMEOUT, "deadline", retryable=False)
        assert error.retryable is False

    def test_string_code_is_coerced(self):
        assert ExecutionError("NOT_FOUND", "gone").code == ErrorCode.NOT_FOUND
        assert ExecutionError("CUSTOM_CODE", "x").code == "CUSTOM_CODE"

    def test_to_dict(self):
        error = ExecutionError(
            ErrorCode.BAD_REQUEST,
            "Invalid payload",
            provider="openai",
            operation="chat.completion",
            details={"status": 400},
        )
        assert error.to_dict() == {
            "code": "BAD_REQUEST",
            "message": "Invalid payload",
            "retryable": False,
            "provider": "openai",
            "operation": "chat.completion",
            "details": {"status": 400},
        }


class TestNormalizeError:
    """Test mapping of arbitrary failures onto the taxonomy."""

    def test_execution_error_passes_through(self):
        error = ExecutionError(ErrorCode.FORBIDDEN, "nope")
        assert normalize_error(error) is error

    def test_requests_timeout(self):
        error = normalize_error(requests.Timeout("read timed out"))
        assert error.code == ErrorCode.TIMEOUT
        assert error.retryable is True

    def test_requests_connection_error(self):
        error = normalize_error(requests.ConnectionError("refused"))
        assert error.code == ErrorCode.NETWORK_ERROR

    @pytest.mark.parametrize(
        "message,code",
        [
            ("Rate limit exceeded", ErrorCode.RATE_LIMITED),
            ("upstream returned 503", ErrorCode.SERVICE_UNAVAILABLE),
            ("Resource not found", ErrorCode.NOT_FOUND),
            ("401 Unauthorized", ErrorCode.UNAUTHORIZED),
        ],
    )
    def test_message_patterns(self, message, code):
        assert normalize_error(RuntimeError(message)).code == code

    def test_unknown_is_not_retryable(self):
        error = normalize_error(RuntimeError("something odd"))
        assert error.code == ErrorCode.UNKNOWN
        assert error.retryable is False

    def test_non_exception_value(self):
        error = normalize_error("plain string failure")
        assert error.code == ErrorCode.UNKNOWN
        assert error.message == "plain string failure"


class TestRetry:
    """Test with_retry backoff behaviour."""

    def test_succeeds_after_two_retries(self, no_sleep):
        attempts = []
        retries = []

        def flaky():
            attempts.append(1)
            if len(attempts) < 3:
                raise ExecutionError(ErrorCode.SERVICE_UNAVAILABLE, "try again")
            return "ok"

        result = with_retry(
            flaky,
            RetryConfig(max_retries=3, initial_delay_ms=100),
            on_retry=lambda attempt, error, delay: retries.append((attempt, error.code)),
            sleep=no_sleep,
        )

        assert result == "ok"
        assert len(attempts) == 3
        assert retries == [
            (1, ErrorCode.SERVICE_UNAVAILABLE),
            (2, ErrorCode.SERVICE_UNAVAILABLE),
        ]
        assert len(no_sleep.calls) == 2

    def test_non_retryable_raises_immediately(self, no_sleep):
        calls = []

        def broken():
            calls.append(1)
            raise ExecutionError(ErrorCode.VALIDATION_ERROR, "bad input")

        with pytest.raises(ExecutionError) as exc_info:
            with_retry(broken, sleep=no_sleep)

        assert exc_info.value.code == ErrorCode.VALIDATION_ERROR
        assert len(calls) == 1
        assert no_sleep.calls == []

    def test_gives_up_after_max_retries(self, no_sleep):
        calls = []

        def always_down():
            calls.append(1)
            raise requests.Timeout("timed out")

        with pytest.raises(ExecutionError) as exc_info:
            with_retry(always_down, RetryConfig(max_retries=2), sleep=no_sleep)

        assert exc_info.value.code == ErrorCode.TIMEOUT
        assert len(calls) == 3

    def test_backoff_is_exponential_and_clamped(self):
        config = RetryConfig(initial_delay_ms=1000, max_delay_ms=5000, backoff_multiplier=2)

        first = calculate_backoff_delay(0, config)
        second = calculate_backoff_delay(1, config)
        clamped = calculate_backoff_delay(10, config)

        assert 900 <= first <= 1100
        assert 1800 <= second <= 2200
        assert clamped == 5000

    def test_explicit_non_retryable_flag(self):
        error = ExecutionError(ErrorCode.TIMEOUT, "deadline", retryable=False)
        assert is_retryable_error(error) is False

    def test_backoff_truncated_at_deadline(self, no_sleep):
        def down():
            raise ExecutionError(ErrorCode.SERVICE_UNAVAILABLE, "down")

        deadline = time.monotonic() + 0.5
        with pytest.raises(ExecutionError):
            with_retry(
                down,
                RetryConfig(max_retries=1, initial_delay_ms=10_000),
                sleep=no_sleep,
                deadline=deadline,
            )

        assert len(no_sleep.calls) == 1
        assert no_sleep.calls[0] <= 0.5
