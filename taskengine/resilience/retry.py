# taskengine/resilience/retry.py
"""
Retry with exponential backoff and jitter.

Only transient failures are retried: network errors, timeouts, HTTP 5xx and
HTTP 429. Everything else (other 4xx, validation, auth, open circuits)
propagates on the first failure. Callers are responsible for making the
retried operation idempotent.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import httpx

from taskengine.errors import CircuitOpenError, TaskEngineError, TaskValidationError

logger = logging.getLogger("taskengine.resilience.retry")

# Substrings that mark an otherwise untyped error as transient
TRANSIENT_MESSAGE_MARKERS = (
    "timeout",
    "timed out",
    "econnreset",
    "econnrefused",
    "connection reset",
    "connection refused",
    "socket hang up",
    "network error",
)


@dataclass
class RetryOptions:
    """Retry policy for a single guarded operation"""
    max_attempts: int = 3
    initial_delay_ms: int = 1000
    max_delay_ms: int = 10000
    backoff_multiplier: float = 2.0
    jitter: float = 0.2
    operation_name: str = "operation"
    is_retryable: Optional[Callable[[BaseException], bool]] = None

    @classmethod
    def from_settings(cls, settings, **overrides) -> "RetryOptions":
        options = cls(
            max_attempts=settings.RETRY_MAX_ATTEMPTS,
            initial_delay_ms=settings.RETRY_INITIAL_DELAY_MS,
            max_delay_ms=settings.RETRY_MAX_DELAY_MS,
            backoff_multiplier=settings.RETRY_BACKOFF_MULTIPLIER,
        )
        for key, value in overrides.items():
            setattr(options, key, value)
        return options


def _status_code_of(error: BaseException) -> Optional[int]:
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    status = getattr(error, "status_code", None)
    if isinstance(status, int):
        return status
    return None


def is_retryable_error(error: BaseException) -> bool:
    """Classify an error as transient (retry) or permanent (propagate)"""
    if isinstance(error, (CircuitOpenError, TaskValidationError)):
        return False

    status = _status_code_of(error)
    if status is not None:
        return status == 429 or status >= 500

    if isinstance(error, (httpx.TimeoutException, httpx.TransportError)):
        return True
    if isinstance(error, (asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return True

    if isinstance(error, TaskEngineError):
        return False

    message = str(error).lower()
    return any(marker in message for marker in TRANSIENT_MESSAGE_MARKERS)


def calculate_backoff_delay(attempt: int, options: RetryOptions) -> float:
    """
    Delay in milliseconds before the next attempt.

    delay = min(max_delay_ms, initial_delay_ms * multiplier ** attempt) +/- jitter
    where attempt is 0 for the first retry.
    """
    base = min(
        options.max_delay_ms,
        options.initial_delay_ms * (options.backoff_multiplier ** attempt)
    )
    if options.jitter:
        base *= 1 + random.uniform(-options.jitter, options.jitter)
    return max(0.0, base)


async def with_retry(
    operation: Callable[[], Awaitable[Any]],
    options: Optional[RetryOptions] = None
) -> Any:
    """
    Run operation, retrying transient failures with exponential backoff.

    Raises the last error once max_attempts is exhausted, or the first
    non-retryable error immediately.
    """
    options = options or RetryOptions()
    classify = options.is_retryable or is_retryable_error
    attempt = 0

    while True:
        attempt += 1
        try:
            return await operation()
        except Exception as e:
            if not classify(e):
                logger.debug(
                    f"{options.operation_name} failed with non-retryable error | "
                    f"attempt={attempt} | error={e}"
                )
                raise

            if attempt >= options.max_attempts:
                logger.error(
                    f"{options.operation_name} failed after {attempt} attempts | error={e}"
                )
                raise

            delay_ms = calculate_backoff_delay(attempt - 1, options)
            logger.warning(
                f"{options.operation_name} attempt {attempt}/{options.max_attempts} failed, "
                f"retrying in {delay_ms:.0f}ms | error={e}"
            )
            await asyncio.sleep(delay_ms / 1000)
