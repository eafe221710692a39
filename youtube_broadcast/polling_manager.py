"""
Rate-limited, cached access to the YouTube API.

Every API call goes through :class:`YouTubePollingManager`, which enforces
a token bucket shared by all callers, memoizes identical reads for a few
seconds, retries retryable failures with exponential backoff and spaces
out status polls with jitter.
"""

import asyncio
import logging
import random
import time
from dataclasses import asdict, dataclass
from threading import Lock
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, TypeVar

from youtube_broadcast.errors import PlatformApiError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class PollingStats:
    """Counters exposed for status output."""

    total_requests: int = 0
    cache_hits: int = 0
    rate_limit_waits: int = 0
    retries: int = 0
    cached_entries: int = 0
    is_idle: bool = False


class YouTubePollingManager:
    """
    Shared gate for YouTube API calls.

    Features:
    - Token bucket (requests per minute); callers wait instead of failing
    - Short-lived cache for identical reads
    - Exponential backoff on retryable errors
    - Idle-aware poll interval with uniform jitter
    """

    def __init__(
        self,
        options,
        retry_base_delay: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        """
        Initialize polling manager.

        Args:
            options: Polling settings (``shared.config.PollingSettings``)
            retry_base_delay: Delay before the first retry (seconds)
            clock: Monotonic clock
            sleep: Sleep coroutine
            rng: Random source for jitter
        """
        self.options = options
        self.retry_base_delay = retry_base_delay
        self._clock = clock
        self._sleep = sleep
        self._rng = rng or random.Random()

        self._lock = Lock()
        self._capacity = float(options.requests_per_minute)
        self._tokens = self._capacity
        self._last_refill = clock()
        self._last_request_at: Optional[float] = None
        self._cache: Dict[str, Tuple[float, Any]] = {}
        self._stats = PollingStats()

        logger.info(
            f"YouTube polling manager initialized "
            f"(rpm={options.requests_per_minute}, cache={options.cache_duration_seconds}s)"
        )

    @property
    def _refill_rate(self) -> float:
        return self.options.requests_per_minute / 60.0

    def _refill(self, now: float) -> None:
        # caller holds the lock
        elapsed = max(now - self._last_refill, 0.0)
        self._tokens = min(self._capacity, self._tokens + elapsed * self._refill_rate)
        self._last_refill = now

    async def _acquire_token(self) -> None:
        """Take one token, waiting outside the lock while the bucket is empty."""
        waited = False
        while True:
            with self._lock:
                now = self._clock()
                self._refill(now)
                if self._tokens >= 1.0:
                    self._tokens -= 1.0
                    self._last_request_at = now
                    return
                wait = (1.0 - self._tokens) / self._refill_rate
                if not waited:
                    self._stats.rate_limit_waits += 1
                    waited = True
            logger.debug(f"Rate limit reached, waiting {wait:.2f}s")
            await self._sleep(wait)

    def _cache_get(self, key: str) -> Tuple[bool, Any]:
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                return False, None
            expires_at, value = entry
            if self._clock() >= expires_at:
                del self._cache[key]
                return False, None
            self._stats.cache_hits += 1
            return True, value

    def _cache_put(self, key: str, value: Any) -> None:
        ttl = self.options.cache_duration_seconds
        if ttl <= 0:
            return
        with self._lock:
            self._cache[key] = (self._clock() + ttl, value)

    async def execute(
        self,
        call: Callable[[], Awaitable[T]],
        cache_key: Optional[str] = None,
    ) -> T:
        """
        Run an API call under the rate limit.

        Args:
            call: Zero-argument coroutine factory performing the request
            cache_key: Key for memoizing the result of a read; None disables caching

        Returns:
            The call's result

        Raises:
            PlatformApiError: When the call fails and retries are exhausted
        """
        if not self.options.enabled:
            return await call()

        if cache_key is not None:
            hit, value = self._cache_get(cache_key)
            if hit:
                logger.debug(f"Cache hit for {cache_key}")
                return value

        attempt = 0
        while True:
            await self._acquire_token()
            with self._lock:
                self._stats.total_requests += 1
            try:
                result = await call()
            except PlatformApiError as e:
                if not e.retryable or attempt >= self.options.max_retries:
                    raise
                delay = self.retry_base_delay * (self.options.backoff_multiplier ** attempt)
                attempt += 1
                with self._lock:
                    self._stats.retries += 1
                logger.warning(
                    f"Retryable YouTube API error ({e}); retry {attempt}/"
                    f"{self.options.max_retries} in {delay:.1f}s"
                )
                await self._sleep(delay)
                continue

            if cache_key is not None:
                self._cache_put(cache_key, result)
            return result

    def is_idle(self) -> bool:
        """True when no request was made for the idle threshold."""
        with self._lock:
            last = self._last_request_at
        if last is None:
            return True
        return self._clock() - last >= self.options.idle_threshold_minutes * 60.0

    def calculate_interval(self, attempt: int) -> float:
        """
        Seconds to wait before the given poll attempt.

        Idle managers poll at the maximum interval. Otherwise the interval
        grows from the base by the backoff multiplier per attempt, bounded
        by the configured minimum and maximum, plus uniform jitter.

        Args:
            attempt: 1-based attempt number

        Returns:
            Interval in seconds
        """
        o = self.options
        if self.is_idle():
            interval = o.max_interval_seconds
        else:
            interval = o.base_interval_seconds * (o.backoff_multiplier ** max(attempt - 1, 0))
            interval = min(interval, o.max_interval_seconds)
        interval = max(interval, o.min_interval_seconds)
        return interval + self._jitter()

    def _jitter(self) -> float:
        if self.options.max_jitter_seconds <= 0:
            return 0.0
        return self._rng.uniform(0.0, self.options.max_jitter_seconds)

    async def poll_until(
        self,
        fetch: Callable[[], Awaitable[T]],
        condition: Callable[[Optional[T]], bool],
        timeout: float,
        max_attempts: int,
        context: str = "poll",
    ) -> Tuple[bool, Optional[T]]:
        """
        Poll until a condition holds.

        Polls up to ``max_attempts`` times, evenly spaced over ``timeout``
        with jitter added to each wait. Errors on a single poll are logged
        and count as a failed attempt. Cancellation propagates.

        Args:
            fetch: Coroutine factory returning the polled value
            condition: Predicate on the polled value
            timeout: Total time budget (seconds)
            max_attempts: Maximum number of polls
            context: Label for log messages

        Returns:
            Tuple of (condition met, last polled value)
        """
        attempts = max(1, max_attempts)
        spacing = timeout / attempts
        deadline = self._clock() + timeout
        last: Optional[T] = None

        for attempt in range(1, attempts + 1):
            try:
                last = await fetch()
                if condition(last):
                    logger.info(f"[{context}] condition met on attempt {attempt}/{attempts}")
                    return True, last
            except PlatformApiError as e:
                logger.warning(f"[{context}] poll {attempt}/{attempts} failed: {e}")

            if attempt == attempts:
                break
            remaining = deadline - self._clock()
            if remaining <= 0:
                break
            delay = min(spacing + self._jitter(), remaining)
            logger.debug(f"[{context}] attempt {attempt}/{attempts} not ready, next poll in {delay:.1f}s")
            await self._sleep(delay)

        logger.warning(f"[{context}] condition not met after {attempts} polls / {timeout:.0f}s")
        return False, last

    def get_stats(self) -> Dict[str, Any]:
        """
        Get polling statistics.

        Returns:
            Dictionary of counters
        """
        is_idle = self.is_idle()
        with self._lock:
            stats = PollingStats(
                total_requests=self._stats.total_requests,
                cache_hits=self._stats.cache_hits,
                rate_limit_waits=self._stats.rate_limit_waits,
                retries=self._stats.retries,
                cached_entries=len(self._cache),
                is_idle=is_idle,
            )
        return asdict(stats)

    def clear_cache(self) -> None:
        with self._lock:
            count = len(self._cache)
            self._cache.clear()
        logger.info(f"Cleared {count} cached YouTube responses")
