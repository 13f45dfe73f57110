"""Circuit breaker and retry policies for collaborator calls.

Breaker state is an immutable :class:`BreakerState` value advanced by the pure
:func:`transition` function; :class:`CircuitBreaker` only holds the current
value and the clock.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Tuple, Type, TypeVar

from app.exceptions import ServiceUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T")
AsyncCallable = Callable[..., Awaitable[T]]


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class BreakerEvent(str, Enum):
    ATTEMPT = "attempt"
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass(frozen=True)
class BreakerState:
    state: CircuitState = CircuitState.CLOSED
    failures: int = 0
    opened_at: Optional[float] = None
    trial_in_flight: bool = False


def transition(
    current: BreakerState,
    event: BreakerEvent,
    now: float,
    *,
    failure_threshold: int,
    recovery_timeout: float,
) -> BreakerState:
    if event is BreakerEvent.ATTEMPT:
        if current.state is CircuitState.OPEN and current.opened_at is not None:
            if now - current.opened_at >= recovery_timeout:
                return replace(current, state=CircuitState.HALF_OPEN, trial_in_flight=True)
        elif current.state is CircuitState.HALF_OPEN and not current.trial_in_flight:
            return replace(current, trial_in_flight=True)
        return current

    if event is BreakerEvent.SUCCESS:
        return BreakerState()

    failures = current.failures + 1
    if current.state is CircuitState.HALF_OPEN or failures >= failure_threshold:
        return BreakerState(state=CircuitState.OPEN, failures=failures, opened_at=now)
    return BreakerState(state=CircuitState.CLOSED, failures=failures)


class CircuitBreaker:
    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._clock = clock
        self._state = BreakerState()

    @property
    def state(self) -> CircuitState:
        return self._state.state

    @property
    def failures(self) -> int:
        return self._state.failures

    def _advance(self, event: BreakerEvent) -> None:
        previous = self._state.state
        self._state = transition(
            self._state,
            event,
            self._clock(),
            failure_threshold=self.failure_threshold,
            recovery_timeout=self.recovery_timeout,
        )
        if self._state.state is not previous:
            logger.info("Circuit breaker %s: %s -> %s", self.name, previous.value, self._state.state.value)

    def _admits(self, previous: BreakerState) -> bool:
        if self._state.state is CircuitState.OPEN:
            return False
        # one trial call at a time while half-open
        return not (self._state.state is CircuitState.HALF_OPEN and previous.trial_in_flight)

    async def call(self, func: AsyncCallable[T], *args: Any, **kwargs: Any) -> T:
        previous = self._state
        self._advance(BreakerEvent.ATTEMPT)
        if not self._admits(previous):
            raise ServiceUnavailableError(
                f"Circuit breaker {self.name} is {self._state.state.name} - service unavailable",
                details={"breaker": self.name},
            )
        try:
            result = await func(*args, **kwargs)
        except asyncio.CancelledError:
            if self._state.state is CircuitState.HALF_OPEN:
                self._state = replace(self._state, trial_in_flight=False)
            raise
        except Exception:
            self._advance(BreakerEvent.FAILURE)
            raise
        self._advance(BreakerEvent.SUCCESS)
        return result

    def reset(self) -> None:
        self._state = BreakerState()


class RetryPolicy:
    """Retry with exponential backoff, optionally bounding each attempt by a timeout."""

    def __init__(
        self,
        attempts: int = 3,
        backoff_base: float = 2.0,
        timeout: Optional[float] = None,
        retry_on: Tuple[Type[BaseException], ...] = (Exception,),
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if attempts < 1:
            raise ValueError("attempts must be at least 1")
        self.attempts = attempts
        self.backoff_base = backoff_base
        self.timeout = timeout
        self.retry_on = retry_on
        self._sleep = sleep

    def delay_for(self, attempt: int) -> float:
        return self.backoff_base * (2 ** (attempt - 1))

    async def _attempt(self, func: AsyncCallable[T], *args: Any, **kwargs: Any) -> T:
        if self.timeout is None:
            return await func(*args, **kwargs)
        try:
            return await asyncio.wait_for(func(*args, **kwargs), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise TimeoutError(f"Operation timed out after {self.timeout:g}s") from exc

    async def call(self, func: AsyncCallable[T], *args: Any, **kwargs: Any) -> T:
        for attempt in range(1, self.attempts + 1):
            try:
                return await self._attempt(func, *args, **kwargs)
            except self.retry_on as exc:
                if attempt == self.attempts:
                    raise
                delay = self.delay_for(attempt)
                logger.warning(
                    "Attempt %d/%d failed (%s); retrying in %.1fs", attempt, self.attempts, exc, delay
                )
                await self._sleep(delay)
        raise AssertionError("unreachable")


class ResiliencePolicy:
    """One collaborator call site: a breaker around an optional retry policy."""

    def __init__(self, breaker: CircuitBreaker, retry: Optional[RetryPolicy] = None) -> None:
        self.breaker = breaker
        self.retry = retry

    @property
    def name(self) -> str:
        return self.breaker.name

    async def call(self, func: AsyncCallable[T], *args: Any, **kwargs: Any) -> T:
        if self.retry is None:
            return await self.breaker.call(func, *args, **kwargs)
        return await self.breaker.call(self.retry.call, func, *args, **kwargs)
