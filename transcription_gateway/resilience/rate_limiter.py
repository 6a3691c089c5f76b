"""
Rate Limiter - token bucket with a bounded wait queue.

Pattern: Token bucket algorithm
- Tokens are added continuously at refill_rate per second, up to capacity
- Each admitted request consumes one token
- capacity is the burst size: a full bucket admits that many back-to-back calls

try_acquire() never blocks. acquire() adds a bounded FIFO wait queue on top:
with max_queue_size == 0 a caller that finds the bucket empty fails fast with
RateLimitedError; otherwise it waits for the next token, and once
max_queue_size callers are already waiting newcomers get QueueFullError.

The clock and the sleep function are injectable so tests can drive time
without real waiting.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from transcription_gateway.core.exceptions import QueueFullError, RateLimitedError
from transcription_gateway.resilience.metrics import record_rate_limit_rejection

logger = logging.getLogger(__name__)


# =============================================================================
# Rate Limit Result
# =============================================================================


@dataclass
class RateLimitResult:
    """
    Result of a non-blocking admission check.

    Attributes:
        allowed: Whether a token was taken
        remaining: Whole tokens left after the check
        retry_after: Seconds until the next token (if rejected)
    """

    allowed: bool
    remaining: int
    retry_after: Optional[float] = None

    def __bool__(self) -> bool:
        return self.allowed


# =============================================================================
# Token Bucket Rate Limiter
# =============================================================================


class RateLimiter:
    """
    Per-provider token bucket.

    Invariants:
        0 <= tokens <= capacity at every observation.
        Refill is monotonic in time; a clock that steps backwards adds nothing.

    Example:
        >>> limiter = RateLimiter("deepgram", capacity=100, refill_rate=100 / 60)
        >>> await limiter.acquire()
    """

    def __init__(
        self,
        name: str,
        capacity: int,
        refill_rate: float,
        max_queue_size: int = 0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """
        Initialize the rate limiter with a full bucket.

        Args:
            name: Limiter name (provider identity) for errors and metrics
            capacity: Maximum tokens (burst size)
            refill_rate: Tokens added per second
            max_queue_size: Maximum waiting callers; 0 disables waiting
            clock: Monotonic time source
            sleep: Async sleep used while queued
        """
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        if refill_rate <= 0:
            raise ValueError("refill_rate must be positive")
        if max_queue_size < 0:
            raise ValueError("max_queue_size must be non-negative")

        self._name = name
        self._capacity = capacity
        self._refill_rate = refill_rate
        self._max_queue_size = max_queue_size
        self._clock = clock
        self._sleep = sleep

        self._tokens = float(capacity)
        self._last_refill = clock()
        self._waiting = 0
        self._admitted = 0
        self._rejected = 0

        # Serializes queued waiters in arrival order
        self._lock = asyncio.Lock()

    @classmethod
    def from_config(
        cls,
        name: str,
        config: Any,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> "RateLimiter":
        """Create a limiter from a RateLimitConfig."""
        return cls(
            name=name,
            capacity=config.capacity,
            refill_rate=config.refill_rate,
            max_queue_size=config.max_queue_size,
            clock=clock,
            sleep=sleep,
        )

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def name(self) -> str:
        return self._name

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def refill_rate(self) -> float:
        return self._refill_rate

    @property
    def max_queue_size(self) -> int:
        return self._max_queue_size

    @property
    def available_tokens(self) -> float:
        """Tokens available right now, refill included."""
        return self._refilled(self._clock())

    @property
    def queue_size(self) -> int:
        """Number of callers currently waiting for a token."""
        return self._waiting

    # =========================================================================
    # Token Bucket
    # =========================================================================

    def _refilled(self, now: float) -> float:
        elapsed = max(0.0, now - self._last_refill)
        return min(float(self._capacity), self._tokens + elapsed * self._refill_rate)

    def _refill(self) -> None:
        now = self._clock()
        self._tokens = self._refilled(now)
        if now > self._last_refill:
            self._last_refill = now

    def wait_time(self) -> float:
        """Seconds until at least one token is available (0 if one is now)."""
        tokens = self._refilled(self._clock())
        if tokens >= 1:
            return 0.0
        return (1 - tokens) / self._refill_rate

    def try_acquire(self) -> RateLimitResult:
        """
        Take one token if available. Never blocks.

        Returns:
            RateLimitResult; truthy when a token was taken
        """
        self._refill()

        if self._tokens >= 1:
            self._tokens -= 1
            self._admitted += 1
            return RateLimitResult(allowed=True, remaining=int(self._tokens))

        return RateLimitResult(
            allowed=False,
            remaining=0,
            retry_after=(1 - self._tokens) / self._refill_rate,
        )

    # =========================================================================
    # Queued Admission
    # =========================================================================

    async def _pause(self, delay: float, cancel_event: Optional[asyncio.Event]) -> None:
        if cancel_event is None:
            await self._sleep(delay)
            return

        if cancel_event.is_set():
            raise asyncio.CancelledError("cancelled by caller")

        sleeper = asyncio.ensure_future(self._sleep(delay))
        watcher = asyncio.ensure_future(cancel_event.wait())
        try:
            await asyncio.wait({sleeper, watcher}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            sleeper.cancel()
            watcher.cancel()

        if cancel_event.is_set():
            raise asyncio.CancelledError("cancelled by caller")

    async def acquire(self, cancel_event: Optional[asyncio.Event] = None) -> None:
        """
        Take one token, waiting in the bounded queue if allowed.

        Args:
            cancel_event: Optional caller cancellation signal

        Raises:
            RateLimitedError: Bucket empty and queueing is disabled
            QueueFullError: max_queue_size callers are already waiting
            asyncio.CancelledError: The caller cancelled while waiting
        """
        if self._waiting == 0:
            result = self.try_acquire()
            if result.allowed:
                return
            if self._max_queue_size == 0:
                self._rejected += 1
                record_rate_limit_rejection(self._name, "rate_limited")
                logger.warning(
                    f"Rate limit exceeded for provider '{self._name}': "
                    f"retry_after={result.retry_after:.3f}s"
                )
                raise RateLimitedError(self._name, retry_after=result.retry_after)

        if self._waiting >= self._max_queue_size:
            self._rejected += 1
            record_rate_limit_rejection(self._name, "queue_full")
            logger.warning(
                f"Rate limiter queue full for provider '{self._name}' "
                f"(max={self._max_queue_size})"
            )
            raise QueueFullError(self._name, self._max_queue_size, retry_after=self.wait_time())

        self._waiting += 1
        try:
            async with self._lock:
                while True:
                    if self.try_acquire():
                        return
                    await self._pause(self.wait_time(), cancel_event)
        finally:
            self._waiting -= 1

    # =========================================================================
    # Diagnostics
    # =========================================================================

    def get_stats(self) -> dict[str, Any]:
        """Snapshot of limiter state for diagnostics."""
        return {
            "name": self._name,
            "capacity": self._capacity,
            "refill_rate": self._refill_rate,
            "available_tokens": self.available_tokens,
            "queue_size": self._waiting,
            "max_queue_size": self._max_queue_size,
            "admitted": self._admitted,
            "rejected": self._rejected,
        }

    def reset(self) -> None:
        """Refill the bucket and clear counters. Waiters are not affected."""
        self._tokens = float(self._capacity)
        self._last_refill = self._clock()
        self._admitted = 0
        self._rejected = 0
