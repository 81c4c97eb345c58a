from __future__ import annotations

import asyncio

import pytest

from ideahub.services.circuit_breaker import (
    BreakerRegistry,
    CircuitBreaker,
    CircuitOpenError,
    CircuitState,
)


class _Clock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


async def _ok():
    return "ok"


async def _boom():
    raise RuntimeError("provider failed")


@pytest.mark.asyncio
async def test_opens_after_consecutive_failures():
    breaker = CircuitBreaker("serper", max_failures=2, reset_seconds=10, clock=_Clock())

    for _ in range(2):
        with pytest.raises(RuntimeError):
            await breaker.call(_boom)

    assert breaker.state == CircuitState.OPEN
    with pytest.raises(CircuitOpenError, match="circuit open for provider serper"):
        await breaker.call(_ok)


@pytest.mark.asyncio
async def test_success_resets_failure_count():
    breaker = CircuitBreaker("brave", max_failures=2, clock=_Clock())

    with pytest.raises(RuntimeError):
        await breaker.call(_boom)
    assert await breaker.call(_ok) == "ok"
    with pytest.raises(RuntimeError):
        await breaker.call(_boom)

    assert breaker.state == CircuitState.CLOSED
    assert breaker.failure_count == 1


@pytest.mark.asyncio
async def test_half_open_trial_closes_or_reopens():
    clock = _Clock()
    breaker = CircuitBreaker("tavily", max_failures=1, reset_seconds=30, clock=clock)
    with pytest.raises(RuntimeError):
        await breaker.call(_boom)

    clock.now = 30
    assert breaker.state == CircuitState.HALF_OPEN
    with pytest.raises(RuntimeError):
        await breaker.call(_boom)
    assert breaker.state == CircuitState.OPEN

    clock.now = 60
    assert await breaker.call(_ok) == "ok"
    assert breaker.state == CircuitState.CLOSED


@pytest.mark.asyncio
async def test_registry_keeps_one_breaker_per_provider():
    registry = BreakerRegistry(max_failures=1, clock=_Clock())

    assert registry.get("serper") is registry.get("serper")
    with pytest.raises(RuntimeError):
        await registry.get("serper").call(_boom)

    assert registry.states() == {"serper": "open"}
    registry.get("serper").reset()
    assert registry.states() == {"serper": "closed"}


@pytest.mark.asyncio
async def test_half_open_admits_a_single_trial_call():
    clock = _Clock()
    breaker = CircuitBreaker("brave", max_failures=1, reset_seconds=30, clock=clock)
    with pytest.raises(RuntimeError):
        await breaker.call(_boom)
    clock.now = 30
    release = asyncio.Event()

    async def slow_ok():
        await release.wait()
        return "ok"

    trial = asyncio.create_task(breaker.call(slow_ok))
    await asyncio.sleep(0)
    with pytest.raises(CircuitOpenError):
        await breaker.call(_ok)
    release.set()

    assert await trial == "ok"
    assert breaker.state == CircuitState.CLOSED
    assert await breaker.call(_ok) == "ok"
