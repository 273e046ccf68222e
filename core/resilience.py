"""
Resilience patterns for the application workflow.

This module provides mechanisms for building resilient operations using:
- Retry with exponential backoff and symmetric jitter (using tenacity)
- A counting/time-window circuit breaker that notifies pybreaker listeners
- A registry that owns one breaker per external target class
"""

import asyncio
import dataclasses
import logging
import random
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, Generic, List, Optional, TypeVar

import pybreaker
import structlog
from tenacity import AsyncRetrying, before_sleep_log, retry_base, stop_after_attempt, wait_exponential

from config import CircuitBreakerConfig, ResilienceConfig
from core.errors import CircuitOpenError, ConfigurationError
from core.logger import bind_context, get_structured_logger
from core.metrics import MetricsCollector

T = TypeVar("T")

# Standard logger for tenacity hooks
logger = logging.getLogger(__name__)
structured_logger = get_structured_logger(__name__)

RetryCondition = Callable[[BaseException, int], bool]
Sleep = Callable[[float], Awaitable[None]]


def _retry_always(error: BaseException, attempt: int) -> bool:
    return True


@dataclass(frozen=True)
class RetryConfig:
    """
    Retry policy for one call of RetryExecutor.with_retry.

    `retry_condition(error, attempt_number)` decides whether a failed attempt
    is followed by another one.
    """

    max_attempts: int = 3
    base_delay: float = 1.0  # seconds
    max_delay: float = 10.0  # seconds
    backoff_multiplier: float = 2.0
    jitter_ratio: float = 0.25
    retry_condition: RetryCondition = _retry_always

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ConfigurationError("max_attempts must be at least 1", max_attempts=self.max_attempts)
        if self.base_delay < 0:
            raise ConfigurationError("base_delay must be non-negative", base_delay=self.base_delay)
        if self.max_delay < self.base_delay:
            raise ConfigurationError(
                "max_delay must be greater than or equal to base_delay",
                base_delay=self.base_delay,
                max_delay=self.max_delay,
            )
        if self.backoff_multiplier <= 0:
            raise ConfigurationError("backoff_multiplier must be positive", backoff_multiplier=self.backoff_multiplier)
        if not (0.0 <= self.jitter_ratio < 1.0):
            raise ConfigurationError("jitter_ratio must be in [0, 1)", jitter_ratio=self.jitter_ratio)

    @classmethod
    def from_settings(cls, settings: ResilienceConfig, retry_condition: Optional[RetryCondition] = None) -> "RetryConfig":
        return cls(
            max_attempts=settings.max_attempts,
            base_delay=settings.base_delay,
            max_delay=settings.max_delay,
            backoff_multiplier=settings.backoff_multiplier,
            jitter_ratio=settings.jitter_ratio,
            retry_condition=retry_condition or _retry_always,
        )

    def with_overrides(self, **changes: Any) -> "RetryConfig":
        """Returns a validated copy with the given fields replaced."""
        return dataclasses.replace(self, **changes)

    def base_delay_for(self, attempt: int) -> float:
        """Delay after the given failed attempt, before jitter."""
        return min(self.max_delay, self.base_delay * self.backoff_multiplier ** (attempt - 1))


@dataclass
class RetryResult(Generic[T]):
    success: bool
    result: Optional[T] = None
    error: Optional[BaseException] = None
    attempts: int = 0
    total_time: float = 0.0  # seconds


class wait_exponential_jitter_symmetric(wait_exponential):
    """Exponential wait with a symmetric +/- `jitter_ratio` spread around the base value."""

    def __init__(self, multiplier: float, max: float, exp_base: float, jitter_ratio: float, rng: random.Random):
        super().__init__(multiplier=multiplier, max=max, exp_base=exp_base, min=0)
        self.jitter_ratio = jitter_ratio
        self.rng = rng

    def __call__(self, retry_state) -> float:
        base = super().__call__(retry_state)
        if not self.jitter_ratio:
            return base
        return max(0.0, base * (1 + self.rng.uniform(-self.jitter_ratio, self.jitter_ratio)))


class retry_if_condition(retry_base):
    """Retries while `condition(error, attempt_number)` holds for an ordinary exception."""

    def __init__(self, condition: RetryCondition):
        self.condition = condition

    def __call__(self, retry_state) -> bool:
        if not retry_state.outcome.failed:
            return False
        error = retry_state.outcome.exception()
        if not isinstance(error, Exception):
            # Cancellation and interpreter exits are never retried.
            return False
        return bool(self.condition(error, retry_state.attempt_number))


class RetryExecutor:
    """
    Runs an async operation with bounded sequential attempts.

    Never raises for failures of the operation itself: the outcome, the
    number of attempts actually made and the elapsed time are returned in a
    RetryResult.
    """

    def __init__(
        self,
        metrics_collector: Optional[MetricsCollector] = None,
        sleep: Sleep = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        self.metrics_collector = metrics_collector
        self.sleep = sleep
        self.rng = rng or random.Random()
        self.logger = get_structured_logger(__name__)

    async def with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        config: Optional[RetryConfig] = None,
        operation_name: str = "operation",
        context: Optional[Dict[str, Any]] = None,
    ) -> RetryResult[T]:
        config = config or RetryConfig()
        op_logger = bind_context(self.logger, operation=operation_name, **(context or {}))

        retrying = AsyncRetrying(
            stop=stop_after_attempt(config.max_attempts),
            wait=wait_exponential_jitter_symmetric(
                multiplier=config.base_delay,
                max=config.max_delay,
                exp_base=config.backoff_multiplier,
                jitter_ratio=config.jitter_ratio,
                rng=self.rng,
            ),
            retry=retry_if_condition(config.retry_condition),
            sleep=self.sleep,
            reraise=True,
            before_sleep=before_sleep_log(logger, logging.DEBUG),
        )

        attempts = 0
        start_time = time.monotonic()

        async def _attempt() -> T:
            nonlocal attempts
            attempts += 1
            attempt_start = time.monotonic()
            try:
                op_logger.debug("retry_attempt_start", attempt=attempts, max_attempts=config.max_attempts)
                return await operation()
            except Exception as e:
                duration_ms = (time.monotonic() - attempt_start) * 1000
                op_logger.warning(
                    "retry_attempt_failed",
                    attempt=attempts,
                    max_attempts=config.max_attempts,
                    error=str(e),
                    error_type=type(e).__name__,
                    duration_ms=round(duration_ms, 2),
                )
                if self.metrics_collector and attempts < config.max_attempts:
                    self.metrics_collector.record_operation(
                        operation_name, "retry", duration_ms, attempt=attempts, error=str(e), context=context
                    )
                raise

        try:
            result = None
            async for attempt in retrying:
                with attempt:
                    result = await _attempt()
        except Exception as e:
            total_time = time.monotonic() - start_time
            op_logger.error(
                "retry_exhausted",
                error=str(e),
                error_type=type(e).__name__,
                attempts=attempts,
                max_attempts=config.max_attempts,
                total_duration_ms=round(total_time * 1000, 2),
            )
            if self.metrics_collector:
                self.metrics_collector.record_operation(
                    operation_name, "failure", total_time * 1000, attempt=attempts, error=str(e), context=context
                )
            return RetryResult(success=False, error=e, attempts=attempts, total_time=total_time)

        total_time = time.monotonic() - start_time
        op_logger.debug("retry_succeeded", attempts=attempts, total_duration_ms=round(total_time * 1000, 2))
        if self.metrics_collector:
            self.metrics_collector.record_operation(
                operation_name, "success", total_time * 1000, attempt=attempts, context=context
            )
        return RetryResult(success=True, result=result, attempts=attempts, total_time=total_time)


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreakerStats:
    state: CircuitState
    failures: int
    successes: int
    last_failure_time: Optional[float]
    last_success_time: Optional[float]
    total_requests: int
    rejected_requests: int


class CircuitBreakerListener(pybreaker.CircuitBreakerListener):
    """
    Circuit breaker listener that collects metrics and logs state changes.
    """

    def __init__(self, metrics_collector: Optional[MetricsCollector], logger: structlog.BoundLogger, breaker_name: str):
        self.metrics_collector = metrics_collector
        self.logger = logger
        self.breaker_name = breaker_name

    def state_change(self, breaker, old_state, new_state):
        self.logger.warning(
            "circuit_breaker_state_change",
            breaker=self.breaker_name,
            old_state=old_state.value,
            new_state=new_state.value,
        )
        if self.metrics_collector:
            self.metrics_collector.record_circuit_breaker_state_change(
                breaker.name, old_state.value, new_state.value
            )

    def failure(self, breaker, exc):
        self.logger.error(
            "circuit_breaker_failure",
            breaker=self.breaker_name,
            error=str(exc),
            failure_count=breaker.stats.failures,
            threshold=breaker.failure_threshold,
        )

    def success(self, breaker):
        self.logger.debug("circuit_breaker_success", breaker=self.breaker_name)


class CircuitBreaker:
    """
    Guards a class of operations against one external target.

    CLOSED -> OPEN once `failure_threshold` failures fall within
    `monitoring_period`; OPEN -> HALF_OPEN on the first call after
    `recovery_timeout` has elapsed since the last failure; HALF_OPEN -> CLOSED
    after `success_threshold` consecutive successes, or back to OPEN on any
    failure. All state lives on the instance, which must have a single owner.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        monitoring_period: float = 300.0,
        success_threshold: int = 3,
        listeners: Optional[List[pybreaker.CircuitBreakerListener]] = None,
        clock: Callable[[], float] = time.monotonic,
        metrics_collector: Optional[MetricsCollector] = None,
    ):
        if failure_threshold < 1 or success_threshold < 1:
            raise ConfigurationError(
                "failure_threshold and success_threshold must be at least 1",
                failure_threshold=failure_threshold,
                success_threshold=success_threshold,
            )
        if recovery_timeout < 0 or monitoring_period <= 0:
            raise ConfigurationError(
                "recovery_timeout must be >= 0 and monitoring_period > 0",
                recovery_timeout=recovery_timeout,
                monitoring_period=monitoring_period,
            )
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.monitoring_period = monitoring_period
        self.success_threshold = success_threshold
        self.listeners = list(listeners or [])
        self.clock = clock
        self.metrics_collector = metrics_collector
        self.logger = bind_context(get_structured_logger(__name__), breaker=name)

        self._state = CircuitState.CLOSED
        self._failure_times: Deque[float] = deque()
        self._successes = 0
        self._half_open_in_flight = 0
        self._last_failure_time: Optional[float] = None
        self._last_success_time: Optional[float] = None
        self._total_requests = 0
        self._rejected_requests = 0

    @classmethod
    def from_config(
        cls,
        name: str,
        settings: CircuitBreakerConfig,
        listeners: Optional[List[pybreaker.CircuitBreakerListener]] = None,
        clock: Callable[[], float] = time.monotonic,
        metrics_collector: Optional[MetricsCollector] = None,
    ) -> "CircuitBreaker":
        return cls(
            name=name,
            failure_threshold=settings.failure_threshold,
            recovery_timeout=settings.recovery_timeout,
            monitoring_period=settings.monitoring_period,
            success_threshold=settings.success_threshold,
            listeners=listeners,
            clock=clock,
            metrics_collector=metrics_collector,
        )

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def stats(self) -> CircuitBreakerStats:
        self._prune_failures(self.clock())
        return CircuitBreakerStats(
            state=self._state,
            failures=len(self._failure_times),
            successes=self._successes,
            last_failure_time=self._last_failure_time,
            last_success_time=self._last_success_time,
            total_requests=self._total_requests,
            rejected_requests=self._rejected_requests,
        )

    def retry_after(self) -> float:
        """Seconds until an open circuit admits a trial call; 0.0 unless open."""
        if self._state != CircuitState.OPEN:
            return 0.0
        if self._last_failure_time is None:
            return self.recovery_timeout
        return max(self.recovery_timeout - (self.clock() - self._last_failure_time), 0.0)

    def add_listener(self, listener: pybreaker.CircuitBreakerListener) -> None:
        self.listeners.append(listener)

    async def execute(self, operation: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """
        Runs `operation` unless the circuit is open.

        Raises:
            CircuitOpenError: if the call is rejected; `operation` is not invoked.
        """
        self._total_requests += 1

        if self._state == CircuitState.OPEN:
            remaining = self.retry_after()
            if remaining <= 0:
                self._transition(CircuitState.HALF_OPEN)
            else:
                self._reject(remaining)

        trial = self._state == CircuitState.HALF_OPEN
        if trial:
            if self._half_open_in_flight + self._successes >= self.success_threshold:
                self._reject(0.0)
            self._half_open_in_flight += 1

        for listener in self.listeners:
            listener.before_call(self, operation, *args, **kwargs)

        try:
            result = await operation(*args, **kwargs)
        except Exception as e:
            if trial:
                self._half_open_in_flight -= 1
            self._on_failure(e)
            raise
        except BaseException:
            if trial:
                self._half_open_in_flight -= 1
            raise

        if trial:
            self._half_open_in_flight -= 1
        self._on_success()
        return result

    def force_open(self) -> None:
        self._last_failure_time = self.clock()
        self._transition(CircuitState.OPEN)

    def force_close(self) -> None:
        self._transition(CircuitState.CLOSED)

    def _reject(self, retry_after: float) -> None:
        self._rejected_requests += 1
        self.logger.warning("circuit_breaker_rejected", rejected_requests=self._rejected_requests)
        if self.metrics_collector:
            self.metrics_collector.record_operation(
                self.name, "rejected", 0.0, context={"retry_after": round(retry_after, 3)}
            )
        raise CircuitOpenError(self.name, retry_after)

    def _prune_failures(self, now: float) -> None:
        while self._failure_times and now - self._failure_times[0] > self.monitoring_period:
            self._failure_times.popleft()

    def _on_failure(self, error: Exception) -> None:
        now = self.clock()
        self._last_failure_time = now
        self._failure_times.append(now)
        self._prune_failures(now)

        for listener in self.listeners:
            listener.failure(self, error)

        if self._state == CircuitState.HALF_OPEN:
            self._transition(CircuitState.OPEN)
        elif self._state == CircuitState.CLOSED and len(self._failure_times) >= self.failure_threshold:
            self._transition(CircuitState.OPEN)

    def _on_success(self) -> None:
        self._last_success_time = self.clock()

        for listener in self.listeners:
            listener.success(self)

        if self._state == CircuitState.HALF_OPEN:
            self._successes += 1
            if self._successes >= self.success_threshold:
                self._transition(CircuitState.CLOSED)
        elif self._state == CircuitState.CLOSED:
            self._failure_times.clear()

    def _transition(self, new_state: CircuitState) -> None:
        old_state = self._state
        self._state = new_state
        if new_state in (CircuitState.CLOSED, CircuitState.HALF_OPEN):
            self._successes = 0
        if new_state == CircuitState.CLOSED:
            self._failure_times.clear()
            self._half_open_in_flight = 0
        if old_state != new_state:
            for listener in self.listeners:
                listener.state_change(self, old_state, new_state)


class CircuitBreakerRegistry:
    """
    Owns one circuit breaker per external target class.
    """

    def __init__(
        self,
        settings: CircuitBreakerConfig,
        metrics_collector: Optional[MetricsCollector] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings
        self.metrics_collector = metrics_collector
        self.clock = clock
        self.logger = get_structured_logger(__name__)
        self.breakers: Dict[str, CircuitBreaker] = {}

    def get_breaker(self, name: str) -> CircuitBreaker:
        if name not in self.breakers:
            listener = CircuitBreakerListener(
                self.metrics_collector,
                bind_context(self.logger, breaker=name),
                name,
            )
            breaker = CircuitBreaker.from_config(
                name, self.settings, clock=self.clock, metrics_collector=self.metrics_collector
            )
            breaker.add_listener(listener)
            self.breakers[name] = breaker
        return self.breakers[name]

    def get_all_states(self) -> Dict[str, str]:
        return {name: breaker.state.value for name, breaker in self.breakers.items()}
