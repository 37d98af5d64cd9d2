"""Rate admission controller for management API calls."""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Mapping
from typing import TYPE_CHECKING, TypeVar

from .bucket import calculate_available, calculate_wait_seconds, clamp_tokens, try_consume
from .exceptions import is_rate_limit_error
from .models import BucketState, LimiterStats

if TYPE_CHECKING:
    from .config import RateLimitOptions

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Header names sent by the management API on every response
SECOND_REMAINING_HEADER = "x-contentful-ratelimit-second-remaining"
HOUR_REMAINING_HEADER = "x-contentful-ratelimit-hour-remaining"

DEFAULT_REQUESTS_PER_SECOND = 10
DEFAULT_REQUESTS_PER_HOUR = 36_000
DEFAULT_COOLDOWN_SECONDS = 60.0

# After a 429 the hour bucket keeps at most this share of its capacity
HOUR_RESET_FRACTION = 0.5


class AdmissionController:
    """
    Async admission gate enforcing a per-second and a per-hour budget.

    Every outbound call is passed to ``admit``. Before the call runs, one
    token is taken from both buckets, waiting for refill when either is
    empty. Both gates are independent and both must be satisfied.

    A 429 from the remote service triggers a fixed cooldown and a
    conservative bucket reset before the error is re-raised. The controller
    never retries on its own; retrying is the driver's job.

    Example:
        controller = AdmissionController(requests_per_second=10)
        asset = await controller.admit(lambda: env.get_asset("abc"))

    The clock and sleep callables are injectable so tests can run on a
    fake clock. Instances are single-owner and keep their counters private.
    """

    def __init__(
        self,
        requests_per_second: int = DEFAULT_REQUESTS_PER_SECOND,
        requests_per_hour: int = DEFAULT_REQUESTS_PER_HOUR,
        cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
        verbose: bool = True,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if requests_per_second <= 0 or requests_per_hour <= 0:
            raise ValueError("request rates must be positive")
        self.cooldown_seconds = cooldown_seconds
        self.verbose = verbose
        self._clock = clock
        self._sleep = sleep

        now = clock()
        self.second_bucket = BucketState.per_second(requests_per_second, now)
        self.hour_bucket = BucketState.per_hour(requests_per_hour, now)

        self._started_at = now
        self._total_requests = 0
        self._throttled_requests = 0
        self._rate_limited_responses = 0
        self._total_wait_seconds = 0.0

    @classmethod
    def from_options(
        cls,
        options: "RateLimitOptions",
        **kwargs: object,
    ) -> "AdmissionController | None":
        """Build a controller from config, or None when rate limiting is disabled."""
        if not options.enabled:
            return None
        return cls(
            requests_per_second=options.requests_per_second,
            requests_per_hour=options.requests_per_hour,
            cooldown_seconds=options.cooldown_seconds,
            verbose=options.verbose,
            **kwargs,  # type: ignore[arg-type]
        )

    @property
    def buckets(self) -> tuple[BucketState, BucketState]:
        return (self.second_bucket, self.hour_bucket)

    # -------------------------------------------------------------------------
    # Admission
    # -------------------------------------------------------------------------

    async def admit(self, operation: Callable[[], Awaitable[T]]) -> T:
        """
        Run one unit of work once both buckets grant a token.

        Args:
            operation: Zero-argument callable returning an awaitable

        Returns:
            Whatever the operation returns

        Raises:
            Any exception raised by the operation. Rate-limit errors are
            re-raised after the cooldown and bucket reset.
        """
        await self._acquire()

        try:
            return await operation()
        except Exception as e:
            if is_rate_limit_error(e):
                await self._cool_down()
            raise

    async def _acquire(self) -> None:
        waited = False
        while True:
            for bucket in self.buckets:
                if await self._wait_for_token(bucket):
                    waited = True

            now = self._clock()
            results = [try_consume(bucket, now) for bucket in self.buckets]
            if all(r.success for r in results):
                for bucket, result in zip(self.buckets, results):
                    bucket.tokens = result.new_tokens
                    bucket.last_refill = result.new_last_refill
                break

        self._total_requests += 1
        if waited:
            self._throttled_requests += 1

    async def _wait_for_token(self, bucket: BucketState) -> bool:
        """Suspend until ``bucket`` holds a full token. Returns True if it waited."""
        self._refill(bucket)
        waited = False
        while bucket.tokens < 1:
            wait = calculate_wait_seconds(bucket.tokens, bucket.refill_rate)
            self._log(f"Rate limit ({bucket.name}): waiting {wait * 1000:.0f}ms")
            self._total_wait_seconds += wait
            waited = True
            await self._sleep(wait)
            self._refill(bucket)
        return waited

    def _refill(self, bucket: BucketState) -> None:
        now = self._clock()
        bucket.tokens = calculate_available(bucket, now)
        bucket.last_refill = max(bucket.last_refill, now)

    async def _cool_down(self) -> None:
        self._rate_limited_responses += 1
        logger.warning(
            "Received 429 (rate limit exceeded), waiting %.0f seconds",
            self.cooldown_seconds,
        )
        self._total_wait_seconds += self.cooldown_seconds
        await self._sleep(self.cooldown_seconds)

        for bucket in self.buckets:
            self._refill(bucket)
        self.second_bucket.tokens = 0.0
        self.hour_bucket.tokens = min(
            self.hour_bucket.tokens,
            self.hour_bucket.capacity * HOUR_RESET_FRACTION,
        )

    # -------------------------------------------------------------------------
    # Server feedback
    # -------------------------------------------------------------------------

    def update_from_headers(self, headers: Mapping[str, str]) -> None:
        """
        Clamp buckets down to the remaining counts reported by the server.

        Keeps the controller in sync when the quota is shared with other
        clients. Counts are only ever lowered, never raised.
        """
        normalized = {k.lower(): v for k, v in headers.items()}
        second = _parse_int(normalized.get(SECOND_REMAINING_HEADER))
        hour = _parse_int(normalized.get(HOUR_REMAINING_HEADER))

        # Clamp the count as of response time, not as of the last refill
        if second is not None:
            self._refill(self.second_bucket)
            self.second_bucket.tokens = clamp_tokens(self.second_bucket, second)
        if hour is not None:
            self._refill(self.hour_bucket)
            self.hour_bucket.tokens = clamp_tokens(self.hour_bucket, hour)

        if (second is not None and second < 3) or (hour is not None and hour < 100):
            logger.warning(
                "Low rate limit: %s/sec, %s/hour remaining",
                second if second is not None else "?",
                hour if hour is not None else "?",
            )

    # -------------------------------------------------------------------------
    # Diagnostics
    # -------------------------------------------------------------------------

    def stats(self) -> LimiterStats:
        """Snapshot of the running counters."""
        now = self._clock()
        return LimiterStats(
            total_requests=self._total_requests,
            throttled_requests=self._throttled_requests,
            rate_limited_responses=self._rate_limited_responses,
            total_wait_seconds=self._total_wait_seconds,
            runtime_seconds=now - self._started_at,
            second_bucket_tokens=calculate_available(self.second_bucket, now),
            hour_bucket_tokens=calculate_available(self.hour_bucket, now),
        )

    def log_stats(self) -> None:
        """Write the statistics block to the log."""
        s = self.stats()
        logger.info("Rate limiter statistics:")
        logger.info("  - Total requests: %d", s.total_requests)
        logger.info("  - Throttled requests: %d", s.throttled_requests)
        logger.info("  - 429 responses: %d", s.rate_limited_responses)
        logger.info("  - Total wait time: %.1fs", s.total_wait_seconds)
        logger.info("  - Runtime: %.1fs", s.runtime_seconds)
        logger.info("  - Avg rate: %.2f req/s", s.avg_requests_per_second)
        logger.info("  - Remaining tokens (second): %.2f", s.second_bucket_tokens)
        logger.info("  - Remaining tokens (hour): %d", int(s.hour_bucket_tokens))

    def _log(self, message: str) -> None:
        logger.log(logging.INFO if self.verbose else logging.DEBUG, message)


def _parse_int(value: str | None) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None
