"""Retry and circuit breaker policies for remote model calls.

The two policies are independent. The client composes them as
``breaker.call(lambda: retry.run(attempt))`` so a whole retried call counts
as a single success or failure for the breaker.
"""

import asyncio
import logging
import random
import time
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, TypeVar

from ..errors import CircuitOpenError, ModelTimeoutError, TransientUpstreamError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryPolicy:
    """Exponential backoff retry for transient failures.

    Attributes:
        max_attempts: Total attempts, including the first one.
        base_delay: Delay before the first retry, in seconds.
        max_delay: Upper bound for a single delay.
        jitter: Scale each delay by a random factor in [0.5, 1.0).
        retry_on: Exception types considered transient.
        sleep: Awaitable sleep, replaceable in tests.
    """

    max_attempts: int = 4
    base_delay: float = 1.0
    max_delay: float = 8.0
    jitter: bool = True
    retry_on: tuple[type[BaseException], ...] = (TransientUpstreamError, ModelTimeoutError)
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep

    def delay_for(self, attempt: int) -> float:
        """Delay after the given zero-based attempt."""
        delay = min(self.max_delay, self.base_delay * (2**attempt))
        if self.jitter:
            delay *= 0.5 + random.random() * 0.5
        return delay

    async def run(self, func: Callable[[], Awaitable[T]]) -> T:
        """Call ``func`` until it succeeds or retries are exhausted."""
        attempt = 0
        while True:
            try:
                return await func()
            except self.retry_on as e:
                attempt += 1
                if attempt >= self.max_attempts:
                    raise
                delay = self.delay_for(attempt - 1)
                logger.warning(
                    f"Model API retry {attempt}/{self.max_attempts - 1} "
                    f"after {delay:.2f}s: {e}"
                )
                await self.sleep(delay)


class CircuitState(Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Stops calling an endpoint after repeated failures.

    After ``failure_threshold`` consecutive failures the circuit opens and
    every call fails fast with CircuitOpenError. Once ``cooldown`` seconds
    have passed, a single trial call is let through: success closes the
    circuit, failure opens it again.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        cooldown: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        self.name = name
        self.failure_threshold = failure_threshold
        self.cooldown = cooldown
        self._clock = clock
        self._state = CircuitState.CLOSED
        self.failure_count = 0
        self.last_failure_at: float | None = None
        self._opened_at = 0.0
        self._trial_in_flight = False

    @property
    def state(self) -> CircuitState:
        """Current state, without triggering transitions."""
        return self._state

    def _acquire(self) -> bool:
        """Check whether a call may proceed. Returns True for a trial call."""
        if self._state is CircuitState.OPEN:
            elapsed = self._clock() - self._opened_at
            if elapsed < self.cooldown:
                raise CircuitOpenError(self.name, self.cooldown - elapsed)
            self._state = CircuitState.HALF_OPEN
            logger.info(f"Circuit '{self.name}' half-open, allowing a trial call")

        if self._state is CircuitState.HALF_OPEN:
            if self._trial_in_flight:
                raise CircuitOpenError(self.name, 0.0)
            self._trial_in_flight = True
            return True

        return False

    def record_success(self) -> None:
        if self._state is not CircuitState.CLOSED:
            logger.info(f"Circuit '{self.name}' closed")
        self._state = CircuitState.CLOSED
        self.failure_count = 0

    def record_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_at = self._clock()

        if self._state is CircuitState.HALF_OPEN:
            self._open()
        elif (
            self._state is CircuitState.CLOSED
            and self.failure_count >= self.failure_threshold
        ):
            self._open()

    def _open(self) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = self._clock()
        logger.warning(
            f"Circuit '{self.name}' OPEN after {self.failure_count} failures "
            f"(cooldown {self.cooldown:.0f}s)"
        )

    async def call(self, func: Callable[[], Awaitable[T]]) -> T:
        """Run ``func`` under the breaker."""
        trial = self._acquire()
        try:
            result = await func()
        except Exception:
            self.record_failure()
            raise
        finally:
            if trial:
                self._trial_in_flight = False

        self.record_success()
        return result

    def reset(self) -> None:
        """Force the circuit closed."""
        self._state = CircuitState.CLOSED
        self.failure_count = 0
        self.last_failure_at = None
        self._trial_in_flight = False

    def status(self) -> dict[str, object]:
        return {
            "name": self.name,
            "state": self._state.value,
            "failure_count": self.failure_count,
            "last_failure_at": self.last_failure_at,
        }
