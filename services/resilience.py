"""
Resilience primitives for upstream calls: retry with exponential backoff
composed with a circuit breaker.

The retry policy wraps the breaker, so every attempt (including retries) is
subject to the breaker's fail-fast. One CircuitBreaker instance exists per
upstream target and is shared by every request that talks to it.
"""
from __future__ import annotations

import asyncio
import enum
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Mapping, Optional

import httpx

from utils.clock import Clock, SystemClock
from utils.exceptions import CircuitOpenError

logger = logging.getLogger(__name__)

TRANSIENT_STATUS_CODES = frozenset({408, 429})


def is_transient_status(status_code: int) -> bool:
    """408, 429 and every 5xx are worth retrying."""
    return status_code in TRANSIENT_STATUS_CODES or 500 <= status_code <= 599


def _describe(response: Optional[httpx.Response], exc: Optional[BaseException]) -> str:
    if exc is not None:
        return f"{type(exc).__name__}: {exc}"[:500]
    if response is not None:
        return f"HTTP {response.status_code}"
    return "unknown"


@dataclass(frozen=True)
class RetryPolicy:
    """Retry transient outcomes with delay ``base_backoff_seconds ** attempt``."""

    retry_count: int = 3
    base_backoff_seconds: float = 2.0

    def __post_init__(self) -> None:
        if self.retry_count < 0 or self.base_backoff_seconds < 0:
            raise ValueError(
                "Invalid configuration provided: retry_count and "
                "base_backoff_seconds should be >= 0"
            )

    def delay_for(self, attempt: int) -> float:
        return float(self.base_backoff_seconds) ** attempt


class CircuitState(str, enum.Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class CircuitBreaker:
    """
    Circuit breaker guarding a single upstream.

    Transitions:
    - CLOSED -> OPEN: after `failures_before_breaking` consecutive failures.
    - OPEN -> HALF_OPEN: once `break_duration` has elapsed.
    - HALF_OPEN -> CLOSED: the single trial call succeeds.
    - HALF_OPEN -> OPEN: the trial call fails.

    State lives behind a threading lock because Flask runs every async view on
    its own event loop, possibly on different worker threads.
    """

    def __init__(
        self,
        name: str,
        failures_before_breaking: int = 5,
        break_duration_minutes: float = 1,
        clock: Optional[Clock] = None,
    ) -> None:
        if failures_before_breaking < 1 or break_duration_minutes < 1:
            raise ValueError(
                "Invalid configuration provided: break_duration_minutes and "
                "failures_before_breaking should be >= 1"
            )
        self.name = name
        self.failures_before_breaking = failures_before_breaking
        self.break_duration = timedelta(minutes=break_duration_minutes)
        self._clock = clock or SystemClock()
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_at: Optional[datetime] = None
        self._trial_in_flight = False
        self._last_error: Optional[str] = None

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._current_state()

    @property
    def failure_count(self) -> int:
        return self._failure_count

    def _current_state(self) -> CircuitState:
        if self._state is CircuitState.OPEN and self._opened_at is not None:
            if self._clock.utcnow() - self._opened_at >= self.break_duration:
                self._state = CircuitState.HALF_OPEN
                self._trial_in_flight = False
                logger.info("%s circuit breaker half-open.", self.name)
        return self._state

    def before_call(self) -> None:
        """Raise CircuitOpenError unless a call may go through right now."""
        with self._lock:
            state = self._current_state()
            if state is CircuitState.CLOSED:
                return
            if state is CircuitState.HALF_OPEN and not self._trial_in_flight:
                self._trial_in_flight = True
                return
            retry_after = self._opened_at + self.break_duration if self._opened_at else None
        raise CircuitOpenError(self.name, retry_after=retry_after)

    def record_success(self) -> None:
        with self._lock:
            was = self._state
            self._state = CircuitState.CLOSED
            self._failure_count = 0
            self._opened_at = None
            self._trial_in_flight = False
            self._last_error = None
        if was is not CircuitState.CLOSED:
            logger.info("%s circuit breaker reset.", self.name)

    def record_failure(self, error: str) -> None:
        with self._lock:
            self._failure_count += 1
            self._last_error = error[:500]
            if self._state is CircuitState.HALF_OPEN or (
                self._failure_count >= self.failures_before_breaking
            ):
                self._trip()

    def release_trial(self) -> None:
        """A trial call ended with an outcome the breaker does not judge."""
        with self._lock:
            self._trial_in_flight = False

    def _trip(self) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = self._clock.utcnow()
        self._trial_in_flight = False
        logger.error(
            "%s circuit breaker opened for %s due to %s",
            self.name,
            self.break_duration,
            self._last_error,
            extra={"breaker": self.name, "failures": self._failure_count},
        )


class ResiliencePipeline:
    """
    Execute an upstream call under retry(circuit_breaker(call)).

    Transient outcomes are transport errors (httpx.TransportError) and
    responses whose status is 408, 429 or 5xx. When retries run out the last
    transient response is returned to the caller; a last transport error is
    re-raised. CircuitOpenError is never retried.
    """

    def __init__(
        self,
        retry: RetryPolicy,
        breaker: CircuitBreaker,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.retry = retry
        self.breaker = breaker
        self._sleep = sleep

    @classmethod
    def from_config(
        cls, config: Mapping[str, Any], name: str, clock: Optional[Clock] = None
    ) -> "ResiliencePipeline":
        retry = RetryPolicy(
            retry_count=int(config["RETRY_COUNT"]),
            base_backoff_seconds=float(config["BASE_BACKOFF_SECONDS"]),
        )
        breaker = CircuitBreaker(
            name,
            failures_before_breaking=int(config["FAILURES_BEFORE_BREAKING"]),
            break_duration_minutes=float(config["BREAK_DURATION_MINUTES"]),
            clock=clock,
        )
        return cls(retry, breaker)

    async def execute(self, action: Callable[[], Awaitable[httpx.Response]]) -> httpx.Response:
        attempt = 0
        while True:
            response: Optional[httpx.Response] = None
            try:
                response = await self._call_through_breaker(action)
            except httpx.TransportError as exc:
                if attempt >= self.retry.retry_count:
                    raise
                attempt += 1
                await self._wait_before_retry(attempt, None, exc)
                continue

            if not is_transient_status(response.status_code) or attempt >= self.retry.retry_count:
                return response
            attempt += 1
            await self._wait_before_retry(attempt, response, None)

    async def _call_through_breaker(
        self, action: Callable[[], Awaitable[httpx.Response]]
    ) -> httpx.Response:
        self.breaker.before_call()
        try:
            response = await action()
        except httpx.TransportError as exc:
            self.breaker.record_failure(_describe(None, exc))
            raise
        except BaseException:
            self.breaker.release_trial()
            raise

        if is_transient_status(response.status_code):
            self.breaker.record_failure(_describe(response, None))
        else:
            self.breaker.record_success()
        return response

    async def _wait_before_retry(
        self,
        attempt: int,
        response: Optional[httpx.Response],
        exc: Optional[BaseException],
    ) -> None:
        delay = self.retry.delay_for(attempt)
        logger.warning(
            "Retry attempt %d after %.2fs due to %s or exception %s",
            attempt,
            delay,
            response.status_code if response is not None else None,
            str(exc) if exc is not None else None,
            extra={"retry_attempt": attempt, "retry_delay": delay},
        )
        await self._sleep(delay)
