# taskengine/resilience/circuit_breaker.py
"""
Circuit Breaker Pattern Implementation
Protects external dependencies (browser sessions, CRM API, voice, LLM) from
cascading failures. One breaker per dependency name, shared process-wide.
"""

import asyncio
import logging
import threading
from collections import deque
from datetime import datetime, timedelta
from enum import Enum
from functools import lru_cache
from typing import Optional, Callable, Any, Awaitable, Deque, Dict, Tuple
from dataclasses import dataclass, field

from taskengine.config import get_settings
from taskengine.errors import CircuitOpenError
from taskengine.resilience.retry import RetryOptions, with_retry

logger = logging.getLogger("taskengine.resilience.circuit_breaker")


class CircuitState(str, Enum):
    """Circuit breaker states"""
    CLOSED = "closed"      # Normal operation, requests pass through
    OPEN = "open"          # Failure threshold exceeded, requests blocked
    HALF_OPEN = "half_open"  # Testing if service recovered


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker behavior"""
    failure_threshold: int = 5          # Failures (within window) before opening
    reset_timeout: float = 60.0         # Seconds in OPEN before trying half-open
    success_threshold: int = 2          # Successes in half-open to close
    half_open_max_calls: int = 3        # Trial calls in flight while half-open
    monitoring_window: float = 120.0    # Seconds of history used for failure counting/rate


@dataclass
class CircuitBreaker:
    """
    Circuit breaker for a single named dependency.
    Starts in CLOSED state.
    """
    name: str
    config: CircuitBreakerConfig = field(default_factory=CircuitBreakerConfig)

    # State tracking
    state: CircuitState = field(default=CircuitState.CLOSED)
    failure_count: int = field(default=0)
    success_count: int = field(default=0)
    last_failure_time: Optional[datetime] = field(default=None)
    last_state_change: datetime = field(default_factory=datetime.utcnow)
    opened_at: Optional[datetime] = field(default=None)
    half_open_calls: int = field(default=0)
    rejected_calls: int = field(default=0)

    # (timestamp, succeeded) for every call inside the monitoring window
    _calls: Deque[Tuple[datetime, bool]] = field(default_factory=deque, repr=False)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    def __post_init__(self):
        logger.info(f"Circuit breaker initialized for {self.name} in {self.state.value} state")

    @property
    def is_open(self) -> bool:
        return self.current_state() == CircuitState.OPEN

    def current_state(self) -> CircuitState:
        """Current state, applying the OPEN -> HALF_OPEN transition once the reset timeout has elapsed"""
        if self.state == CircuitState.OPEN and self.opened_at is not None:
            elapsed = (datetime.utcnow() - self.opened_at).total_seconds()
            if elapsed >= self.config.reset_timeout:
                self._transition_to(CircuitState.HALF_OPEN)
        return self.state

    def retry_after(self) -> float:
        """Seconds until an OPEN breaker admits a trial call"""
        if self.state != CircuitState.OPEN or self.opened_at is None:
            return 0.0
        elapsed = (datetime.utcnow() - self.opened_at).total_seconds()
        return max(0.0, self.config.reset_timeout - elapsed)

    async def execute(self, operation: Callable[[], Awaitable[Any]]) -> Any:
        """
        Run operation through the breaker.

        Raises:
            CircuitOpenError: If the breaker rejects the call (operation is not invoked)
        """
        trial = await self._acquire()
        try:
            result = await operation()
        except Exception:
            await self.record_failure(trial)
            raise
        await self.record_success(trial)
        return result

    async def _acquire(self) -> bool:
        """Admit or reject a call; returns True for a half-open trial call"""
        async with self._lock:
            state = self.current_state()

            if state == CircuitState.OPEN:
                self.rejected_calls += 1
                raise CircuitOpenError(self.name, self.retry_after())

            if state == CircuitState.HALF_OPEN:
                if self.half_open_calls >= self.config.half_open_max_calls:
                    self.rejected_calls += 1
                    raise CircuitOpenError(self.name, 0.0)
                self.half_open_calls += 1
                return True
            return False

    def _finish_trial(self, trial: bool):
        # half_open_calls counts trial calls in flight
        if trial and self.state == CircuitState.HALF_OPEN and self.half_open_calls > 0:
            self.half_open_calls -= 1

    async def record_success(self, trial: bool = False):
        """Record a successful operation"""
        async with self._lock:
            self._finish_trial(trial)
            self._record_call(True)
            if self.state == CircuitState.HALF_OPEN:
                self.success_count += 1
                if self.success_count >= self.config.success_threshold:
                    self._transition_to(CircuitState.CLOSED)
            elif self.state == CircuitState.CLOSED:
                # Reset failure count on success
                self.failure_count = 0

    async def record_failure(self, trial: bool = False):
        """Record a failed operation"""
        async with self._lock:
            self._finish_trial(trial)
            self._record_call(False)
            self.failure_count += 1
            self.last_failure_time = datetime.utcnow()

            if self.state == CircuitState.HALF_OPEN:
                # Any failure in half-open returns to open
                self._transition_to(CircuitState.OPEN)
            elif self.state == CircuitState.CLOSED:
                if self._failures_in_window() >= self.config.failure_threshold:
                    self._transition_to(CircuitState.OPEN)

    def _record_call(self, succeeded: bool):
        self._calls.append((datetime.utcnow(), succeeded))
        self._prune_window()

    def _prune_window(self):
        """Remove calls outside the monitoring window"""
        cutoff = datetime.utcnow() - timedelta(seconds=self.config.monitoring_window)
        while self._calls and self._calls[0][0] < cutoff:
            self._calls.popleft()

    def _failures_in_window(self) -> int:
        """Consecutive failures that still fall inside the monitoring window"""
        if self.last_failure_time is None:
            return 0
        cutoff = datetime.utcnow() - timedelta(seconds=self.config.monitoring_window)
        count = 0
        for timestamp, succeeded in reversed(self._calls):
            if succeeded or timestamp < cutoff or count >= self.failure_count:
                break
            count += 1
        return count

    def failure_rate(self) -> float:
        """Fraction of failed calls within the monitoring window"""
        self._prune_window()
        if not self._calls:
            return 0.0
        failures = sum(1 for _, succeeded in self._calls if not succeeded)
        return failures / len(self._calls)

    def _transition_to(self, new_state: CircuitState):
        """Transition to a new state with logging"""
        old_state = self.state
        self.state = new_state
        self.last_state_change = datetime.utcnow()

        # Reset counters based on new state
        if new_state == CircuitState.CLOSED:
            self.failure_count = 0
            self.success_count = 0
            self.half_open_calls = 0
            self.opened_at = None
        elif new_state == CircuitState.HALF_OPEN:
            self.success_count = 0
            self.half_open_calls = 0
        elif new_state == CircuitState.OPEN:
            self.success_count = 0
            self.half_open_calls = 0
            self.opened_at = self.last_state_change

        log = logger.warning if new_state == CircuitState.OPEN else logger.info
        log(f"Circuit breaker {self.name}: {old_state.value} -> {new_state.value}")

    async def force_open(self):
        """Manually open the circuit (for maintenance/emergency)"""
        async with self._lock:
            self._transition_to(CircuitState.OPEN)

    async def force_close(self):
        """Manually close the circuit (for recovery)"""
        async with self._lock:
            self._transition_to(CircuitState.CLOSED)
            self._calls.clear()

    def get_status(self) -> Dict[str, Any]:
        """Read-only breaker status for health reporting"""
        state = self.current_state()
        return {
            "name": self.name,
            "state": state.value,
            "failure_count": self.failure_count,
            "success_count": self.success_count,
            "failure_rate": round(self.failure_rate(), 4),
            "rejected_calls": self.rejected_calls,
            "retry_after": round(self.retry_after(), 1),
            "last_failure_time": self.last_failure_time.isoformat() if self.last_failure_time else None,
            "last_state_change": self.last_state_change.isoformat(),
            "config": {
                "failure_threshold": self.config.failure_threshold,
                "reset_timeout": self.config.reset_timeout,
                "success_threshold": self.config.success_threshold,
                "half_open_max_calls": self.config.half_open_max_calls,
                "monitoring_window": self.config.monitoring_window
            }
        }


# =============================================================================
# Registry
# =============================================================================

# Per-dependency thresholds; dependencies not listed use the registry default
DEFAULT_BREAKER_CONFIGS: Dict[str, CircuitBreakerConfig] = {
    "browserbase": CircuitBreakerConfig(failure_threshold=3, reset_timeout=30.0, success_threshold=2),
    "ghl": CircuitBreakerConfig(failure_threshold=5, reset_timeout=60.0, success_threshold=2),
    "openai": CircuitBreakerConfig(failure_threshold=5, reset_timeout=60.0, success_threshold=2),
    "vapi": CircuitBreakerConfig(failure_threshold=3, reset_timeout=120.0, success_threshold=1),
}


class CircuitBreakerRegistry:
    """
    Process-wide map of dependency name -> CircuitBreaker.

    Every call path that reaches the same dependency shares one breaker, so
    failures from any task count toward the protection of all tasks.
    """

    def __init__(
        self,
        configs: Optional[Dict[str, CircuitBreakerConfig]] = None,
        default_config: Optional[CircuitBreakerConfig] = None
    ):
        self._configs = dict(DEFAULT_BREAKER_CONFIGS if configs is None else configs)
        self._default_config = default_config or CircuitBreakerConfig()
        self._breakers: Dict[str, CircuitBreaker] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings) -> "CircuitBreakerRegistry":
        return cls(default_config=CircuitBreakerConfig(
            failure_threshold=settings.CIRCUIT_FAILURE_THRESHOLD,
            reset_timeout=settings.CIRCUIT_RESET_TIMEOUT,
            success_threshold=settings.CIRCUIT_SUCCESS_THRESHOLD,
            half_open_max_calls=settings.CIRCUIT_HALF_OPEN_MAX_CALLS,
            monitoring_window=settings.CIRCUIT_MONITORING_WINDOW,
        ))

    def get(self, name: str) -> CircuitBreaker:
        """Get (lazily creating) the breaker for a dependency"""
        with self._lock:
            breaker = self._breakers.get(name)
            if breaker is None:
                config = self._configs.get(name, self._default_config)
                breaker = CircuitBreaker(name=name, config=config)
                self._breakers[name] = breaker
            return breaker

    def get_all_status(self) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            breakers = list(self._breakers.values())
        return {breaker.name: breaker.get_status() for breaker in breakers}

    def any_open(self) -> bool:
        with self._lock:
            breakers = list(self._breakers.values())
        return any(breaker.is_open for breaker in breakers)

    def reset(self):
        """Drop all breakers (test helper and operator reset)"""
        with self._lock:
            self._breakers.clear()


@lru_cache()
def get_circuit_breaker_registry() -> CircuitBreakerRegistry:
    """Get the process-wide circuit breaker registry"""
    return CircuitBreakerRegistry.from_settings(get_settings())


async def guarded_call(
    registry: CircuitBreakerRegistry,
    dependency: str,
    operation: Callable[[], Awaitable[Any]],
    retry_options: Optional[RetryOptions] = None
) -> Any:
    """
    Run operation with retries inside the dependency's breaker.

    The breaker wraps the retry loop: a whole retry sequence is one success
    or one failure from the breaker's point of view.
    """
    breaker = registry.get(dependency)
    return await breaker.execute(lambda: with_retry(operation, retry_options))
