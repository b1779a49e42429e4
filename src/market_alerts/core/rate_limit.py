"""
Request pacing and retry policy for upstream quote calls.

Both classes take injectable clock/sleep callables so they can be driven
without real timers.
"""
import asyncio
import time
from typing import Awaitable, Callable, Optional, TypeVar

from market_alerts.core.errors import RetryableQuoteError
from market_alerts.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")
SleepFn = Callable[[float], Awaitable[None]]


class FixedDelaySequencer:
    """Space consecutive requests at least `delay_seconds` apart."""

    def __init__(
        self,
        delay_seconds: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: SleepFn = asyncio.sleep,
    ):
        self.delay_seconds = max(0.0, delay_seconds)
        self._clock = clock
        self._sleep = sleep
        self._last_request: Optional[float] = None
        self._lock = asyncio.Lock()

    async def wait(self) -> None:
        """Wait if necessary, then record the request time. Concurrent callers queue up."""
        async with self._lock:
            if self._last_request is not None:
                elapsed = self._clock() - self._last_request
                if elapsed < self.delay_seconds:
                    await self._sleep(self.delay_seconds - elapsed)
            self._last_request = self._clock()


class RetryPolicy:
    """Retry RetryableQuoteError with linear backoff; anything else propagates at once."""

    def __init__(self, max_attempts: int = 3, backoff_seconds: float = 0.5, sleep: SleepFn = asyncio.sleep):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self._sleep = sleep

    def delay_for(self, attempt: int) -> float:
        return self.backoff_seconds * attempt

    async def call(self, fn: Callable[..., Awaitable[T]], *args, **kwargs) -> T:
        attempt = 1
        while True:
            try:
                return await fn(*args, **kwargs)
            except RetryableQuoteError as e:
                if attempt >= self.max_attempts:
                    raise
                backoff = self.delay_for(attempt)
                logger.warning(
                    "%s for %s (attempt %s/%s); retrying in %.2fs",
                    type(e).__name__, e.symbol, attempt, self.max_attempts, backoff,
                )
                await self._sleep(backoff)
                attempt += 1
