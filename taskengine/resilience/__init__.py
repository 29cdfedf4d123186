"""
Resilience primitives - retry with backoff and per-dependency circuit breakers.

Compose them with guarded_call(): the breaker wraps the retry loop.
"""

from .retry import RetryOptions, with_retry, is_retryable_error, calculate_backoff_delay
from .circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    CircuitState,
    DEFAULT_BREAKER_CONFIGS,
    get_circuit_breaker_registry,
    guarded_call,
)

__all__ = [
    "RetryOptions",
    "with_retry",
    "is_retryable_error",
    "calculate_backoff_delay",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerRegistry",
    "CircuitState",
    "DEFAULT_BREAKER_CONFIGS",
    "get_circuit_breaker_registry",
    "guarded_call",
]
