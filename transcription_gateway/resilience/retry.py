"""
Retry Strategy - exponential backoff with full positive jitter.

This module implements the retry half of the call pipeline. A RetryPolicy is
an immutable value; RetryStrategy.attempt() runs one operation under a policy
and holds no state between calls.

Backoff:
    delay(n)  = min(base_delay * backoff_multiplier ** (n - 1), max_delay)
    jitter(n) = delay(n) * jitter_factor * U(0, 1)

where n is the number of failed attempts so far. Jitter is never negative,
so the slept time is always at least the pre-jitter delay. Randomising the
sleep keeps many clients from retrying in lock step after a shared outage.

Cancellation:
    asyncio.CancelledError is a BaseException and is never classified,
    retried or wrapped. A caller-supplied cancel_event interrupts the
    backoff sleep immediately.
"""

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, TypeVar

import httpx

from transcription_gateway.core.exceptions import ProviderError, RetriesExhaustedError
from transcription_gateway.resilience.metrics import record_retry_attempt

logger = logging.getLogger(__name__)

T = TypeVar("T")


# =============================================================================
# Constants
# =============================================================================

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY_SECONDS = 1.0
DEFAULT_BACKOFF_MULTIPLIER = 2.0
DEFAULT_MAX_DELAY_SECONDS = 10.0
DEFAULT_JITTER_FACTOR = 0.2


# =============================================================================
# Error Classification
# =============================================================================


def default_is_retryable(error: BaseException) -> bool:
    """
    Decide whether an error is worth another attempt.

    Retryable: ProviderError subclasses flagged retryable (5xx, 429,
    timeouts, network), bare timeouts and transport-level failures.
    Everything else (4xx, validation, configuration) fails immediately.

    Args:
        error: The exception raised by the attempt.

    Returns:
        True if the operation should be retried.
    """
    if isinstance(error, ProviderError):
        return error.retryable
    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        return True
    if isinstance(error, httpx.TransportError):
        return True
    return isinstance(error, ConnectionError)


# =============================================================================
# Retry Policy
# =============================================================================


@dataclass(frozen=True)
class RetryPolicy:
    """
    Immutable retry configuration.

    Attributes:
        max_attempts: Total attempts including the first one.
        base_delay: Delay before the first retry, in seconds.
        backoff_multiplier: Growth factor per retry.
        max_delay: Upper bound for the pre-jitter delay.
        jitter_factor: Maximum jitter as a fraction of the delay.
        is_retryable: Classification function for errors.
    """

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    base_delay: float = DEFAULT_BASE_DELAY_SECONDS
    backoff_multiplier: float = DEFAULT_BACKOFF_MULTIPLIER
    max_delay: float = DEFAULT_MAX_DELAY_SECONDS
    jitter_factor: float = DEFAULT_JITTER_FACTOR
    is_retryable: Callable[[BaseException], bool] = field(
        default=default_is_retryable, compare=False
    )

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be non-negative")
        if self.backoff_multiplier < 1:
            raise ValueError("backoff_multiplier must be >= 1")
        if self.jitter_factor < 0:
            raise ValueError("jitter_factor must be non-negative")


def compute_backoff_delay(policy: RetryPolicy, attempt: int) -> float:
    """
    Pre-jitter delay before the retry that follows failed attempt ``attempt``.

    >>> policy = RetryPolicy(base_delay=1000, backoff_multiplier=2, max_delay=30000)
    >>> [compute_backoff_delay(policy, n) for n in range(1, 7)]
    [1000, 2000, 4000, 8000, 16000, 30000]
    """
    if attempt < 1:
        raise ValueError("attempt is 1-based")
    return min(policy.base_delay * policy.backoff_multiplier ** (attempt - 1), policy.max_delay)


def compute_jittered_delay(
    policy: RetryPolicy,
    attempt: int,
    rng: Optional[random.Random] = None,
) -> float:
    """Pre-jitter delay plus a non-negative random jitter."""
    delay = compute_backoff_delay(policy, attempt)
    sample = (rng or random).random()
    return delay + delay * policy.jitter_factor * sample


async def sleep_or_cancel(delay: float, cancel_event: Optional[asyncio.Event] = None) -> None:
    """
    Sleep for ``delay`` seconds unless ``cancel_event`` fires first.

    Raises:
        asyncio.CancelledError: If the event is set before or during the sleep.
    """
    if cancel_event is None:
        await asyncio.sleep(delay)
        return
    if cancel_event.is_set():
        raise asyncio.CancelledError("cancelled by caller")
    try:
        await asyncio.wait_for(cancel_event.wait(), timeout=delay)
    except asyncio.TimeoutError:
        return
    raise asyncio.CancelledError("cancelled by caller")


# =============================================================================
# Retry Strategy
# =============================================================================


class RetryStrategy:
    """
    Runs an async operation under a RetryPolicy.

    The strategy is stateless across calls; the random source and the sleep
    function are injectable for deterministic tests.

    Example:
        >>> strategy = RetryStrategy()
        >>> result = await strategy.attempt(lambda: provider.call(audio, options), policy)
    """

    def __init__(
        self,
        rng: Optional[random.Random] = None,
        sleep: Optional[Callable[[float, Optional[asyncio.Event]], Awaitable[None]]] = None,
    ) -> None:
        self._rng = rng or random.Random()
        self._sleep = sleep or sleep_or_cancel

    async def attempt(
        self,
        operation: Callable[[], Awaitable[T]],
        policy: Optional[RetryPolicy] = None,
        *,
        name: str = "operation",
        cancel_event: Optional[asyncio.Event] = None,
    ) -> T:
        """
        Execute ``operation`` up to ``policy.max_attempts`` times.

        Args:
            operation: Zero-argument callable returning a fresh awaitable per attempt.
            policy: Retry policy (defaults to RetryPolicy()).
            name: Label used in logs and metrics.
            cancel_event: Optional caller cancellation signal.

        Returns:
            The operation's result.

        Raises:
            RetriesExhaustedError: Every attempt failed with a retryable error.
            asyncio.CancelledError: The caller cancelled.
            Exception: The first non-retryable error, unchanged.
        """
        policy = policy or RetryPolicy()
        last_error: Optional[Exception] = None

        for attempt in range(1, policy.max_attempts + 1):
            if cancel_event is not None and cancel_event.is_set():
                raise asyncio.CancelledError("cancelled by caller")

            try:
                return await operation()
            except Exception as e:
                if not policy.is_retryable(e):
                    raise
                last_error = e

            if attempt == policy.max_attempts:
                break

            delay = compute_jittered_delay(policy, attempt, self._rng)
            logger.debug(
                f"{name}: attempt {attempt}/{policy.max_attempts} failed, "
                f"retrying in {delay:.3f}s: {last_error}"
            )
            record_retry_attempt(name)
            await self._sleep(delay, cancel_event)

        assert last_error is not None
        raise RetriesExhaustedError(
            last_error, policy.max_attempts, provider=name
        ) from last_error
