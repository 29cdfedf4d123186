# tests/test_retry.py
"""
Retry with exponential backoff

Tests:
1. Transient failures are retried until the operation succeeds
2. Permanent failures propagate on the first attempt
3. Exhausted retries re-raise the last error
4. Backoff delay grows exponentially, caps at max_delay_ms, stays within jitter
5. Each retry logs a warning naming the attempt and the delay
"""

import asyncio
import logging
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from taskengine.errors import AutomationError, CircuitOpenError, TaskValidationError
from taskengine.resilience import RetryOptions, calculate_backoff_delay, is_retryable_error, with_retry


def http_status_error(status: int) -> httpx.HTTPStatusError:
    request = httpx.Request("GET", "https://api.test/resource")
    response = httpx.Response(status, request=request)
    return httpx.HTTPStatusError(f"status {status}", request=request, response=response)


@pytest.fixture
def options():
    return RetryOptions(max_attempts=3, initial_delay_ms=1, max_delay_ms=5, jitter=0, operation_name="test.op")


# =============================================================================
# Test: Error Classification
# =============================================================================

class TestIsRetryableError:
    """Transient vs permanent classification"""

    @pytest.mark.parametrize("status", [500, 502, 503, 504, 429])
    def test_server_errors_and_rate_limits_are_retryable(self, status):
        assert is_retryable_error(http_status_error(status)) is True

    @pytest.mark.parametrize("status", [400, 401, 403, 404, 422])
    def test_client_errors_are_not_retryable(self, status):
        assert is_retryable_error(http_status_error(status)) is False

    def test_network_and_timeout_errors_are_retryable(self):
        request = httpx.Request("GET", "https://api.test")
        assert is_retryable_error(httpx.ConnectError("refused", request=request)) is True
        assert is_retryable_error(httpx.ReadTimeout("slow", request=request)) is True
        assert is_retryable_error(asyncio.TimeoutError()) is True
        assert is_retryable_error(ConnectionResetError()) is True

    def test_status_code_attribute_is_honoured(self):
        assert is_retryable_error(AutomationError("bad gateway", status_code=502)) is True
        assert is_retryable_error(AutomationError("forbidden", status_code=403)) is False

    def test_engine_errors_are_permanent(self):
        assert is_retryable_error(CircuitOpenError("ghl", 10.0)) is False
        assert is_retryable_error(TaskValidationError("bad config")) is False
        assert is_retryable_error(AutomationError("Browserbase API key not configured")) is False

    def test_untyped_errors_use_message_markers(self):
        assert is_retryable_error(RuntimeError("socket hang up")) is True
        assert is_retryable_error(RuntimeError("ECONNRESET while reading")) is True
        assert is_retryable_error(ValueError("invalid literal")) is False


# =============================================================================
# Test: Backoff
# =============================================================================

class TestBackoffDelay:
    """delay = min(max, initial * multiplier ** attempt) +/- jitter"""

    def test_exponential_growth_without_jitter(self):
        opts = RetryOptions(initial_delay_ms=1000, max_delay_ms=10000, backoff_multiplier=2, jitter=0)
        assert calculate_backoff_delay(0, opts) == 1000
        assert calculate_backoff_delay(1, opts) == 2000
        assert calculate_backoff_delay(2, opts) == 4000

    def test_delay_is_capped(self):
        opts = RetryOptions(initial_delay_ms=1000, max_delay_ms=10000, backoff_multiplier=2, jitter=0)
        assert calculate_backoff_delay(10, opts) == 10000

    def test_jitter_bounds(self):
        opts = RetryOptions(initial_delay_ms=1000, max_delay_ms=10000, backoff_multiplier=2, jitter=0.2)
        for _ in range(50):
            delay = calculate_backoff_delay(1, opts)
            assert 1600 <= delay <= 2400


# =============================================================================
# Test: with_retry
# =============================================================================

class TestWithRetry:
    """Retry loop behavior"""

    @pytest.mark.asyncio
    async def test_succeeds_after_two_transient_failures(self, options):
        """Two 503s then success: three calls, success returned"""
        operation = AsyncMock(side_effect=[http_status_error(503), http_status_error(503), "ok"])

        result = await with_retry(operation, options)

        assert result == "ok"
        assert operation.await_count == 3

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self, options):
        operation = AsyncMock(side_effect=http_status_error(404))

        with pytest.raises(httpx.HTTPStatusError):
            await with_retry(operation, options)

        assert operation.await_count == 1

    @pytest.mark.asyncio
    async def test_exhausted_retries_raise_last_error(self, options):
        errors = [http_status_error(500), http_status_error(502), http_status_error(503)]
        operation = AsyncMock(side_effect=errors)

        with pytest.raises(httpx.HTTPStatusError) as exc_info:
            await with_retry(operation, options)

        assert exc_info.value is errors[-1]
        assert operation.await_count == 3

    @pytest.mark.asyncio
    async def test_custom_classifier_overrides_default(self):
        opts = RetryOptions(max_attempts=4, initial_delay_ms=1, jitter=0, is_retryable=lambda e: isinstance(e, KeyError))
        operation = AsyncMock(side_effect=[KeyError("a"), KeyError("b"), "done"])

        assert await with_retry(operation, opts) == "done"
        assert operation.await_count == 3

    @pytest.mark.asyncio
    async def test_sleeps_between_attempts(self):
        opts = RetryOptions(max_attempts=3, initial_delay_ms=100, backoff_multiplier=2, jitter=0)
        operation = AsyncMock(side_effect=[http_status_error(500), http_status_error(500), "ok"])

        with patch("taskengine.resilience.retry.asyncio.sleep", new=AsyncMock()) as sleep:
            await with_retry(operation, opts)

        assert [call.args[0] for call in sleep.await_args_list] == [0.1, 0.2]

    @pytest.mark.asyncio
    async def test_logs_warning_before_each_retry(self, options, caplog):
        operation = AsyncMock(side_effect=[http_status_error(503), http_status_error(503), "ok"])

        with caplog.at_level(logging.WARNING, logger="taskengine.resilience.retry"):
            assert await with_retry(operation, options) == "ok"

        warnings = [r.getMessage() for r in caplog.records if r.levelno == logging.WARNING]
        assert len(warnings) == 2
        assert warnings[0].startswith("test.op attempt 1/3 failed, retrying in 1ms")
        assert warnings[1].startswith("test.op attempt 2/3 failed, retrying in 2ms")
        assert "status 503" in warnings[0]
