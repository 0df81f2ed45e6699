"""Rate-limited executor for external matching stages.

Combines a token bucket (requests per minute with a burst capacity) with
tenacity exponential backoff restricted to retryable failures: rate limits,
server errors, timeouts and transport errors.
"""
import asyncio
import time
from typing import Any, Awaitable, Callable, Optional
import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from partmatch.config import stage_settings
from partmatch.errors import RetryableStageError

logger = structlog.get_logger(__name__)

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


def is_retryable(exc: BaseException) -> bool:
    """Classify an exception raised by an external stage call."""
    if isinstance(exc, RetryableStageError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in RETRYABLE_STATUS_CODES
    if isinstance(exc, httpx.TransportError):
        return True
    return "rate limit" in str(exc).lower()


class TokenBucket:
    """Async token bucket.

    Args:
        requests_per_minute: Refill rate
        capacity: Maximum burst
        clock: Monotonic time source (injectable for tests)
    """

    def __init__(
        self,
        requests_per_minute: int,
        capacity: int,
        clock: Callable[[], float] = time.monotonic,
    ):
        if requests_per_minute <= 0 or capacity <= 0:
            raise ValueError(f"Token bucket needs a positive rate and capacity, got {requests_per_minute}/{capacity}")
        self.rate_per_second = requests_per_minute / 60.0
        self.capacity = float(capacity)
        self._tokens = float(capacity)
        self._clock = clock
        self._updated = clock()
        self._lock = asyncio.Lock()

    @property
    def tokens(self) -> float:
        return self._tokens

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._updated)
        self._tokens = min(self.capacity, self._tokens + elapsed * self.rate_per_second)
        self._updated = now

    async def acquire(self) -> float:
        """Take one token, sleeping until one is available.

        Returns:
            Total seconds spent waiting
        """
        waited = 0.0
        async with self._lock:
            while True:
                self._refill()
                if self._tokens >= 1.0:
                    self._tokens -= 1.0
                    return waited
                delay = (1.0 - self._tokens) / self.rate_per_second
                waited += delay
                await asyncio.sleep(delay)


class RateLimitedExecutor:
    """Runs coroutine calls under a token bucket with retry on retryable errors.

    Usage:
        executor = RateLimitedExecutor()
        result = await executor.execute(client.match, store_item, pool)
    """

    def __init__(
        self,
        requests_per_minute: Optional[int] = None,
        burst: Optional[int] = None,
        max_retries: Optional[int] = None,
        backoff_min: Optional[float] = None,
        backoff_max: Optional[float] = None,
        bucket: Optional[TokenBucket] = None,
    ):
        self.max_retries = stage_settings.max_retries if max_retries is None else max_retries
        self.backoff_min = stage_settings.backoff_min if backoff_min is None else backoff_min
        self.backoff_max = stage_settings.backoff_max if backoff_max is None else backoff_max
        self.bucket = bucket or TokenBucket(
            stage_settings.requests_per_minute if requests_per_minute is None else requests_per_minute,
            stage_settings.burst if burst is None else burst,
        )
        self.calls = 0
        self.retries = 0
        self._log = logger.bind(component="RateLimitedExecutor")

    def _before_sleep(self, retry_state: RetryCallState) -> None:
        self.retries += 1
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        self._log.warning(
            "external_call_retry",
            attempt=retry_state.attempt_number,
            max_attempts=self.max_retries,
            wait_seconds=round(retry_state.next_action.sleep, 3) if retry_state.next_action else None,
            error=str(exc) if exc else None,
        )

    async def execute(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """Call func under rate limiting and retry.

        Raises:
            The last exception once retries are exhausted or the error is not retryable
        """
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.max_retries),
            wait=wait_exponential(multiplier=self.backoff_min, min=self.backoff_min, max=self.backoff_max),
            retry=retry_if_exception(is_retryable),
            before_sleep=self._before_sleep,
            reraise=True,
        ):
            with attempt:
                waited = await self.bucket.acquire()
                if waited:
                    self._log.debug("rate_limit_wait", seconds=round(waited, 3))
                self.calls += 1
                return await func(*args, **kwargs)
