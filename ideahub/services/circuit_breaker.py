from __future__ import annotations

import time
from enum import StrEnum
from typing import Any, Awaitable, Callable, TypeVar

from loguru import logger

from ideahub.config import settings

T = TypeVar("T")


class CircuitState(StrEnum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitOpenError(RuntimeError):
    """Raised instead of calling a provider whose circuit is open."""


class CircuitBreaker:
    """Stops calling a provider after repeated consecutive failures.

    After `max_failures` failures in a row the circuit opens. Once
    `reset_seconds` have passed since the last failure, one trial call is
    let through (half-open) and concurrent callers are rejected until it
    settles: success closes the circuit, failure reopens it.
    """

    def __init__(
        self,
        name: str,
        *,
        max_failures: int = 5,
        reset_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.max_failures = max(int(max_failures), 1)
        self.reset_seconds = max(float(reset_seconds), 0.0)
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._last_failure_at: float | None = None
        self._trial_in_flight = False

    @property
    def state(self) -> CircuitState:
        if (
            self._state == CircuitState.OPEN
            and self._last_failure_at is not None
            and self._clock() - self._last_failure_at >= self.reset_seconds
        ):
            self._state = CircuitState.HALF_OPEN
            logger.info(f"Circuit {self.name} half-open")
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failures

    async def call(self, fn: Callable[[], Awaitable[T]]) -> T:
        state = self.state
        if state == CircuitState.OPEN or (state == CircuitState.HALF_OPEN and self._trial_in_flight):
            raise CircuitOpenError(f"circuit open for provider {self.name}")

        trial = state == CircuitState.HALF_OPEN
        if trial:
            self._trial_in_flight = True
        try:
            result = await fn()
        except Exception:
            self._record_failure()
            raise
        finally:
            if trial:
                self._trial_in_flight = False

        if self._state == CircuitState.HALF_OPEN:
            logger.info(f"Circuit {self.name} closed after successful trial call")
        self._state = CircuitState.CLOSED
        self._failures = 0
        return result

    def _record_failure(self) -> None:
        self._failures += 1
        self._last_failure_at = self._clock()
        if self._state == CircuitState.HALF_OPEN or self._failures >= self.max_failures:
            if self._state != CircuitState.OPEN:
                logger.warning(
                    f"Circuit {self.name} opened after {self._failures} consecutive failures"
                )
            self._state = CircuitState.OPEN

    def reset(self) -> None:
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._last_failure_at = None
        self._trial_in_flight = False


class BreakerRegistry:
    """One breaker per provider, kept across fetch runs."""

    def __init__(self, **breaker_kwargs: Any):
        self._kwargs = breaker_kwargs
        self._breakers: dict[str, CircuitBreaker] = {}

    def get(self, provider: str) -> CircuitBreaker:
        breaker = self._breakers.get(provider)
        if breaker is None:
            kwargs = {
                "max_failures": settings.circuit_breaker_max_failures,
                "reset_seconds": settings.circuit_breaker_reset_seconds,
                **self._kwargs,
            }
            breaker = CircuitBreaker(provider, **kwargs)
            self._breakers[provider] = breaker
        return breaker

    def states(self) -> dict[str, str]:
        return {name: breaker.state.value for name, breaker in self._breakers.items()}
