"""Tests for retry and circuit breaker policies."""

import pytest

from mina.errors import (
    CircuitOpenError,
    InvalidRequestError,
    ModelTimeoutError,
    TransientUpstreamError,
)
from mina.llm.resilience import CircuitBreaker, CircuitState, RetryPolicy


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class Flaky:
    """Fails a fixed number of times, then returns 'ok'."""

    def __init__(self, failures: int, error: Exception | None = None):
        self.failures = failures
        self.error = error or TransientUpstreamError("503", status=503)
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return "ok"


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def retry(sleeps: list[float]) -> RetryPolicy:
    async def fake_sleep(delay: float) -> None:
        sleeps.append(delay)

    return RetryPolicy(max_attempts=4, base_delay=1.0, max_delay=8.0, jitter=False, sleep=fake_sleep)


class TestRetryPolicy:
    @pytest.mark.asyncio
    async def test_two_failures_then_success(self, retry: RetryPolicy, sleeps: list[float]):
        func = Flaky(failures=2)

        assert await retry.run(func) == "ok"
        assert func.calls == 3
        assert sleeps == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_exhausted_retries_raise(self, retry: RetryPolicy, sleeps: list[float]):
        func = Flaky(failures=10)

        with pytest.raises(TransientUpstreamError):
            await retry.run(func)
        assert func.calls == 4
        assert len(sleeps) == 3

    @pytest.mark.asyncio
    async def test_timeouts_are_retried(self, retry: RetryPolicy):
        func = Flaky(failures=1, error=ModelTimeoutError(5.0))

        assert await retry.run(func) == "ok"
        assert func.calls == 2

    @pytest.mark.asyncio
    async def test_invalid_request_not_retried(self, retry: RetryPolicy, sleeps: list[float]):
        func = Flaky(failures=1, error=InvalidRequestError("bad", status=400))

        with pytest.raises(InvalidRequestError):
            await retry.run(func)
        assert func.calls == 1
        assert sleeps == []

    def test_delay_is_capped(self):
        policy = RetryPolicy(base_delay=1.0, max_delay=8.0, jitter=False)
        assert [policy.delay_for(i) for i in range(5)] == [1.0, 2.0, 4.0, 8.0, 8.0]

    def test_jitter_stays_within_bounds(self):
        policy = RetryPolicy(base_delay=2.0, jitter=True)
        for _ in range(20):
            assert 1.0 <= policy.delay_for(0) < 2.0


class TestCircuitBreaker:
    @pytest.fixture
    def clock(self) -> FakeClock:
        return FakeClock()

    @pytest.fixture
    def breaker(self, clock: FakeClock) -> CircuitBreaker:
        return CircuitBreaker("chat", failure_threshold=3, cooldown=30.0, clock=clock)

    async def fail_times(self, breaker: CircuitBreaker, n: int) -> None:
        for _ in range(n):
            with pytest.raises(TransientUpstreamError):
                await breaker.call(Flaky(failures=1))

    @pytest.mark.asyncio
    async def test_opens_after_threshold(self, breaker: CircuitBreaker):
        await self.fail_times(breaker, 3)
        assert breaker.state is CircuitState.OPEN

        func = Flaky(failures=0)
        with pytest.raises(CircuitOpenError) as exc_info:
            await breaker.call(func)
        assert func.calls == 0
        assert exc_info.value.retry_in == pytest.approx(30.0)

    @pytest.mark.asyncio
    async def test_success_resets_count(self, breaker: CircuitBreaker):
        await self.fail_times(breaker, 2)
        assert await breaker.call(Flaky(failures=0)) == "ok"
        await self.fail_times(breaker, 2)

        assert breaker.state is CircuitState.CLOSED
        assert breaker.failure_count == 2

    @pytest.mark.asyncio
    async def test_half_open_trial_success_closes(self, breaker: CircuitBreaker, clock: FakeClock):
        await self.fail_times(breaker, 3)
        clock.now += 31

        assert await breaker.call(Flaky(failures=0)) == "ok"
        assert breaker.state is CircuitState.CLOSED
        assert breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_half_open_trial_failure_reopens(self, breaker: CircuitBreaker, clock: FakeClock):
        await self.fail_times(breaker, 3)
        clock.now += 31

        await self.fail_times(breaker, 1)
        assert breaker.state is CircuitState.OPEN
        with pytest.raises(CircuitOpenError):
            await breaker.call(Flaky(failures=0))

    @pytest.mark.asyncio
    async def test_only_one_trial_call(self, breaker: CircuitBreaker, clock: FakeClock):
        await self.fail_times(breaker, 3)
        clock.now += 31
        second = Flaky(failures=0)

        async def trial() -> str:
            # A concurrent caller arrives while the trial is in flight.
            with pytest.raises(CircuitOpenError):
                await breaker.call(second)
            return "ok"

        assert await breaker.call(trial) == "ok"
        assert second.calls == 0
        assert breaker.state is CircuitState.CLOSED

    def test_invalid_threshold(self):
        with pytest.raises(ValueError):
            CircuitBreaker("chat", failure_threshold=0)

    @pytest.mark.asyncio
    async def test_reset_and_status(self, breaker: CircuitBreaker):
        await self.fail_times(breaker, 3)
        assert breaker.status()["state"] == "open"

        breaker.reset()

        status = breaker.status()
        assert status["state"] == "closed"
        assert status["failure_count"] == 0
        assert status["last_failure_at"] is None
