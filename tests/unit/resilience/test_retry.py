"""
Tests for RetryPolicy, backoff computation and RetryStrategy.

This module tests:
- Exponential backoff growth and the max_delay cap
- Non-negative jitter bounded by jitter_factor
- Error classification (retryable vs. non-retryable)
- Exhaustion wrapping, non-retryable passthrough, cancellation
"""

import asyncio
import random

import httpx
import pytest


# =============================================================================
# Test Fixtures
# =============================================================================


class FlakyOperation:
    """Zero-argument async operation failing with scripted errors, then succeeding."""

    def __init__(self, *errors: BaseException, result: str = "ok") -> None:
        self.errors = list(errors)
        self.result = result
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


@pytest.fixture
def policy():
    from transcription_gateway.resilience.retry import RetryPolicy

    return RetryPolicy(
        max_attempts=3,
        base_delay=1.0,
        backoff_multiplier=2.0,
        max_delay=10.0,
        jitter_factor=0.2,
    )


# =============================================================================
# Policy and Backoff
# =============================================================================


class TestRetryPolicy:
    """Tests for RetryPolicy validation."""

    def test_defaults(self) -> None:
        """Default policy: 3 attempts, 1s base, x2, 10s cap, 20% jitter."""
        from transcription_gateway.resilience.retry import RetryPolicy

        policy = RetryPolicy()
        assert policy.max_attempts == 3
        assert policy.base_delay == 1.0
        assert policy.backoff_multiplier == 2.0
        assert policy.max_delay == 10.0
        assert policy.jitter_factor == 0.2

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"max_attempts": 0},
            {"base_delay": -1},
            {"max_delay": -1},
            {"backoff_multiplier": 0.5},
            {"jitter_factor": -0.1},
        ],
    )
    def test_rejects_invalid_values(self, kwargs) -> None:
        """Invalid policy values raise ValueError."""
        from transcription_gateway.resilience.retry import RetryPolicy

        with pytest.raises(ValueError):
            RetryPolicy(**kwargs)

    def test_policy_is_immutable(self, policy) -> None:
        """RetryPolicy is a frozen value."""
        import dataclasses

        with pytest.raises(dataclasses.FrozenInstanceError):
            policy.max_attempts = 5


class TestBackoff:
    """Tests for compute_backoff_delay and compute_jittered_delay."""

    def test_exponential_growth_with_cap(self) -> None:
        """1000ms base doubling caps at 30000ms."""
        from transcription_gateway.resilience.retry import RetryPolicy, compute_backoff_delay

        policy = RetryPolicy(base_delay=1000, backoff_multiplier=2, max_delay=30000)
        delays = [compute_backoff_delay(policy, n) for n in range(1, 8)]

        assert delays == [1000, 2000, 4000, 8000, 16000, 30000, 30000]

    def test_attempt_is_one_based(self, policy) -> None:
        """Attempt 0 is rejected."""
        from transcription_gateway.resilience.retry import compute_backoff_delay

        with pytest.raises(ValueError):
            compute_backoff_delay(policy, 0)

    def test_jitter_is_non_negative_and_bounded(self, policy) -> None:
        """Jittered delay lies in [delay, delay * (1 + jitter_factor)]."""
        from transcription_gateway.resilience.retry import (
            compute_backoff_delay,
            compute_jittered_delay,
        )

        rng = random.Random(1234)
        for attempt in range(1, 6):
            base = compute_backoff_delay(policy, attempt)
            for _ in range(200):
                jittered = compute_jittered_delay(policy, attempt, rng)
                assert base <= jittered <= base * 1.2

    def test_zero_jitter_is_exact(self) -> None:
        """jitter_factor=0 yields the pre-jitter delay."""
        from transcription_gateway.resilience.retry import RetryPolicy, compute_jittered_delay

        policy = RetryPolicy(base_delay=0.5, jitter_factor=0.0)
        assert compute_jittered_delay(policy, 2, random.Random(7)) == 1.0


# =============================================================================
# Error Classification
# =============================================================================


class TestDefaultIsRetryable:
    """Tests for default_is_retryable."""

    @pytest.mark.parametrize(
        "error_factory",
        [
            lambda e: e.ProviderServerError("whisper"),
            lambda e: e.ProviderRateLimitError("whisper", retry_after=2.0),
            lambda e: e.ProviderTimeoutError("whisper", timeout_seconds=30),
            lambda e: e.ProviderConnectionError("deepgram"),
        ],
    )
    def test_retryable_provider_errors(self, error_factory) -> None:
        """5xx, 429, timeouts and network errors are retryable."""
        from transcription_gateway.core import exceptions
        from transcription_gateway.resilience.retry import default_is_retryable

        assert default_is_retryable(error_factory(exceptions)) is True

    @pytest.mark.parametrize(
        "error_factory",
        [
            lambda e: e.ProviderAuthenticationError("whisper"),
            lambda e: e.ProviderQuotaExceededError("whisper"),
            lambda e: e.ProviderBadRequestError("deepgram", status_code=415),
            lambda e: e.TranscriptionValidationError("empty audio"),
        ],
    )
    def test_non_retryable_errors(self, error_factory) -> None:
        """Auth, quota, bad request and validation errors are not retried."""
        from transcription_gateway.core import exceptions
        from transcription_gateway.resilience.retry import default_is_retryable

        assert default_is_retryable(error_factory(exceptions)) is False

    def test_transport_and_builtin_errors(self) -> None:
        """Bare timeouts, connection errors and httpx transport errors are retryable."""
        from transcription_gateway.resilience.retry import default_is_retryable

        assert default_is_retryable(asyncio.TimeoutError()) is True
        assert default_is_retryable(ConnectionResetError()) is True
        assert default_is_retryable(httpx.ConnectError("refused")) is True
        assert default_is_retryable(ValueError("bad")) is False


# =============================================================================
# Retry Strategy
# =============================================================================


class TestRetryStrategy:
    """Tests for RetryStrategy.attempt."""

    @pytest.mark.asyncio
    async def test_success_first_try(self, retry_strategy, retry_sleep, policy) -> None:
        """A successful first attempt never sleeps."""
        operation = FlakyOperation()

        assert await retry_strategy.attempt(operation, policy) == "ok"
        assert operation.calls == 1
        assert retry_sleep.delays == []

    @pytest.mark.asyncio
    async def test_recovers_after_retryable_errors(
        self, retry_strategy, retry_sleep, policy
    ) -> None:
        """Two transient errors then success: three calls, two backoff sleeps."""
        from transcription_gateway.core.exceptions import ProviderServerError

        operation = FlakyOperation(ProviderServerError("whisper"), ProviderServerError("whisper"))

        assert await retry_strategy.attempt(operation, policy, name="whisper") == "ok"
        assert operation.calls == 3
        assert len(retry_sleep.delays) == 2
        assert 1.0 <= retry_sleep.delays[0] <= 1.2
        assert 2.0 <= retry_sleep.delays[1] <= 2.4

    @pytest.mark.asyncio
    async def test_exhaustion_wraps_last_error(self, retry_strategy, policy) -> None:
        """After max_attempts retryable failures RetriesExhaustedError carries the last error."""
        from transcription_gateway.core.exceptions import (
            ProviderServerError,
            ProviderTimeoutError,
            RetriesExhaustedError,
        )

        last = ProviderTimeoutError("whisper", timeout_seconds=30)
        operation = FlakyOperation(ProviderServerError("whisper"), ProviderServerError("whisper"), last)

        with pytest.raises(RetriesExhaustedError) as exc_info:
            await retry_strategy.attempt(operation, policy, name="whisper")

        assert exc_info.value.last_error is last
        assert exc_info.value.attempts == 3
        assert exc_info.value.provider == "whisper"
        assert exc_info.value.__cause__ is last
        assert operation.calls == 3

    @pytest.mark.asyncio
    async def test_non_retryable_passes_through(self, retry_strategy, retry_sleep, policy) -> None:
        """A non-retryable error is raised unchanged after one call."""
        from transcription_gateway.core.exceptions import ProviderAuthenticationError

        error = ProviderAuthenticationError("whisper")
        operation = FlakyOperation(error)

        with pytest.raises(ProviderAuthenticationError) as exc_info:
            await retry_strategy.attempt(operation, policy)

        assert exc_info.value is error
        assert operation.calls == 1
        assert retry_sleep.delays == []

    @pytest.mark.asyncio
    async def test_single_attempt_policy(self, retry_strategy) -> None:
        """max_attempts=1 wraps the first retryable error without sleeping."""
        from transcription_gateway.core.exceptions import (
            ProviderServerError,
            RetriesExhaustedError,
        )
        from transcription_gateway.resilience.retry import RetryPolicy

        with pytest.raises(RetriesExhaustedError) as exc_info:
            await retry_strategy.attempt(
                FlakyOperation(ProviderServerError("deepgram")), RetryPolicy(max_attempts=1)
            )
        assert exc_info.value.attempts == 1

    @pytest.mark.asyncio
    async def test_custom_classifier(self, retry_strategy) -> None:
        """A policy's is_retryable overrides the default classification."""
        from transcription_gateway.resilience.retry import RetryPolicy

        policy = RetryPolicy(max_attempts=2, is_retryable=lambda e: isinstance(e, KeyError))
        operation = FlakyOperation(KeyError("transient"))

        assert await retry_strategy.attempt(operation, policy) == "ok"
        assert operation.calls == 2

    @pytest.mark.asyncio
    async def test_cancel_event_set_before_start(self, retry_strategy, policy) -> None:
        """A pre-set cancel event stops the operation from running at all."""
        operation = FlakyOperation()
        cancel = asyncio.Event()
        cancel.set()

        with pytest.raises(asyncio.CancelledError):
            await retry_strategy.attempt(operation, policy, cancel_event=cancel)
        assert operation.calls == 0

    @pytest.mark.asyncio
    async def test_cancelled_error_is_not_retried(self, retry_strategy, policy) -> None:
        """CancelledError from the operation propagates immediately."""
        operation = FlakyOperation(asyncio.CancelledError())

        with pytest.raises(asyncio.CancelledError):
            await retry_strategy.attempt(operation, policy)
        assert operation.calls == 1


class TestSleepOrCancel:
    """Tests for the default cancellable sleep."""

    @pytest.mark.asyncio
    async def test_sleeps_without_event(self) -> None:
        """Without an event it is a plain sleep."""
        from transcription_gateway.resilience.retry import sleep_or_cancel

        await sleep_or_cancel(0)

    @pytest.mark.asyncio
    async def test_event_interrupts_sleep(self) -> None:
        """Setting the event during the sleep raises CancelledError promptly."""
        from transcription_gateway.resilience.retry import sleep_or_cancel

        cancel = asyncio.Event()
        asyncio.get_running_loop().call_soon(cancel.set)

        with pytest.raises(asyncio.CancelledError):
            await sleep_or_cancel(60, cancel)

    @pytest.mark.asyncio
    async def test_elapsed_sleep_returns(self) -> None:
        """An unset event lets the sleep run to completion."""
        from transcription_gateway.resilience.retry import sleep_or_cancel

        await sleep_or_cancel(0.01, asyncio.Event())
