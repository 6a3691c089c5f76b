"""
Circuit Breaker State Machine

One breaker guards one provider. After enough consecutive failures the
breaker trips and calls fail fast until a recovery timeout has passed; then
a single trial call probes whether the provider has recovered.

State Machine:
    CLOSED: Normal operation. Failures are counted; a success resets the
        count. failure_count >= failure_threshold trips the breaker.
    OPEN: Calls fail fast with CircuitOpenError. The transition to HALF_OPEN
        happens lazily, on the first gate check at or after
        opened_at + reset_timeout.
    HALF_OPEN: One trial call in flight at a time. success_threshold
        successes close the breaker; any failure reopens it with a fresh
        opened_at.

The consecutive-failure counter has no time window: three failures spread
over an hour trip a threshold-3 breaker just like three in a second.

All state mutations are protected by asyncio.Lock(). Callers that cancel a
gated call must call release() so a half-open trial slot is not leaked.

before_call() returns the generation the call was admitted in; the
generation advances on every transition. Outcomes reported with an older
generation count toward the totals only, so a slow call admitted while
CLOSED cannot close, reopen or free the trial slot of a later HALF_OPEN.
"""

import asyncio
import logging
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, TypeVar

from transcription_gateway.core.exceptions import CircuitOpenError
from transcription_gateway.resilience.metrics import record_circuit_state_transition

logger = logging.getLogger(__name__)

T = TypeVar("T")

StateChangeListener = Callable[[str, "CircuitState", "CircuitState"], None]


# =============================================================================
# Constants
# =============================================================================

DEFAULT_FAILURE_THRESHOLD = 5
DEFAULT_SUCCESS_THRESHOLD = 2
DEFAULT_RESET_TIMEOUT_SECONDS = 60.0


# =============================================================================
# State Enum
# =============================================================================


class CircuitState(str, Enum):
    """
    State of a circuit breaker.

    States:
        CLOSED: Normal operation, all requests pass through
        OPEN: Circuit is tripped, requests fail immediately
        HALF_OPEN: Recovery testing, one trial request at a time
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


# =============================================================================
# Circuit Breaker
# =============================================================================


class CircuitBreaker:
    """
    Circuit breaker for one provider.

    Example:
        >>> breaker = CircuitBreaker(name="whisper", failure_threshold=3)
        >>> result = await breaker.execute(provider.call, audio, options)

    Or, when the caller needs to interleave other work between the gate and
    the outcome (as the orchestrator does):

        >>> generation = await breaker.before_call()
        >>> try:
        ...     result = await do_call()
        ... except asyncio.CancelledError:
        ...     breaker.release(generation)
        ...     raise
        ... except Exception:
        ...     await breaker.record_failure(generation)
        ...     raise
        >>> await breaker.record_success(generation)

    Attributes:
        name: Identifier for this breaker (the provider identity)
        failure_threshold: Consecutive failures before opening
        success_threshold: Half-open successes before closing
        reset_timeout_seconds: Seconds in OPEN before a trial is allowed
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = DEFAULT_FAILURE_THRESHOLD,
        success_threshold: int = DEFAULT_SUCCESS_THRESHOLD,
        reset_timeout_seconds: float = DEFAULT_RESET_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        on_state_change: Optional[StateChangeListener] = None,
    ) -> None:
        """
        Initialize CircuitBreaker.

        Args:
            name: Name for identification and metrics
            failure_threshold: Number of consecutive failures before opening
            success_threshold: Number of half-open successes before closing
            reset_timeout_seconds: Seconds to wait before attempting recovery
            clock: Monotonic time source, injectable for tests
            on_state_change: Called with (name, from_state, to_state) on
                every transition
        """
        if failure_threshold < 1 or success_threshold < 1:
            raise ValueError("thresholds must be at least 1")
        if reset_timeout_seconds <= 0:
            raise ValueError("reset_timeout_seconds must be positive")

        self._name = name
        self._failure_threshold = failure_threshold
        self._success_threshold = success_threshold
        self._reset_timeout_seconds = reset_timeout_seconds
        self._clock = clock
        self._on_state_change = on_state_change

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._opened_at: Optional[float] = None
        self._trial_in_flight = False
        self._generation = 0
        self._total_failures = 0
        self._total_successes = 0
        self._times_opened = 0

        self._lock = asyncio.Lock()

    # =========================================================================
    # Factory Methods
    # =========================================================================

    @classmethod
    def from_config(
        cls,
        name: str,
        config: Any,
        clock: Callable[[], float] = time.monotonic,
        on_state_change: Optional[StateChangeListener] = None,
    ) -> "CircuitBreaker":
        """
        Create a breaker from a CircuitBreakerConfig.

        Args:
            name: Name for identification
            config: Object with failure_threshold, success_threshold and
                reset_timeout_seconds attributes
            clock: Monotonic time source
            on_state_change: Transition listener

        Returns:
            Configured CircuitBreaker instance
        """
        return cls(
            name=name,
            failure_threshold=config.failure_threshold,
            success_threshold=config.success_threshold,
            reset_timeout_seconds=config.reset_timeout_seconds,
            clock=clock,
            on_state_change=on_state_change,
        )

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def name(self) -> str:
        """Name of this circuit breaker."""
        return self._name

    @property
    def failure_threshold(self) -> int:
        return self._failure_threshold

    @property
    def success_threshold(self) -> int:
        return self._success_threshold

    @property
    def reset_timeout_seconds(self) -> float:
        return self._reset_timeout_seconds

    @property
    def state(self) -> CircuitState:
        """
        Current state of the circuit breaker.

        Note: This returns the stored state. An OPEN breaker whose timeout has
        elapsed still reports OPEN until the next before_call().
        """
        return self._state

    @property
    def failure_count(self) -> int:
        """Current consecutive failure count."""
        return self._failure_count

    @property
    def success_count(self) -> int:
        """Successes counted in the current HALF_OPEN period."""
        return self._success_count

    @property
    def next_attempt_at(self) -> Optional[float]:
        """Clock reading at which an OPEN breaker admits a trial."""
        if self._opened_at is None:
            return None
        return self._opened_at + self._reset_timeout_seconds

    # =========================================================================
    # State Management
    # =========================================================================

    def _recovery_due(self) -> bool:
        next_attempt = self.next_attempt_at
        return next_attempt is not None and self._clock() >= next_attempt

    def _transition(self, new_state: CircuitState) -> None:
        old_state = self._state
        if old_state == new_state:
            return
        self._state = new_state
        self._generation += 1
        if new_state == CircuitState.OPEN:
            self._times_opened += 1

        logger.info(
            f"Circuit breaker '{self._name}' {old_state.value} -> {new_state.value}",
            extra={"circuit_name": self._name, "failure_count": self._failure_count},
        )
        record_circuit_state_transition(self._name, new_state.value, old_state.value)

        if self._on_state_change is not None:
            try:
                self._on_state_change(self._name, old_state, new_state)
            except Exception as e:
                logger.warning(f"Circuit state listener for '{self._name}' failed: {e}")

    def open_error(self) -> CircuitOpenError:
        """Build the CircuitOpenError describing the current open period."""
        next_attempt = self.next_attempt_at
        retry_after = None
        if next_attempt is not None:
            retry_after = max(0.0, next_attempt - self._clock())
        return CircuitOpenError(
            self._name,
            next_attempt_at=next_attempt,
            retry_after=retry_after,
        )

    def is_available(self) -> bool:
        """
        Non-mutating eligibility probe.

        True when the breaker is CLOSED, HALF_OPEN, or OPEN with recovery
        due. A HALF_OPEN breaker with its trial slot taken still counts as
        available; the gate decides who gets the slot.
        """
        if self._state != CircuitState.OPEN:
            return True
        return self._recovery_due()

    def _is_current(self, generation: Optional[int]) -> bool:
        return generation is None or generation == self._generation

    async def before_call(self) -> int:
        """
        Gate a call.

        Returns:
            The generation the call was admitted in. Pass it back to
            record_success / record_failure / release so an outcome from a
            call admitted before the last transition cannot steer the
            current state.

        Raises:
            CircuitOpenError: The breaker is OPEN and recovery is not yet due,
                or a half-open trial is already in flight.
        """
        async with self._lock:
            if self._state == CircuitState.OPEN:
                if not self._recovery_due():
                    raise self.open_error()
                self._success_count = 0
                self._trial_in_flight = False
                self._transition(CircuitState.HALF_OPEN)

            if self._state == CircuitState.HALF_OPEN:
                if self._trial_in_flight:
                    raise CircuitOpenError(
                        self._name,
                        message=f"Circuit for provider '{self._name}' is half-open "
                        "and a trial call is already in flight",
                    )
                self._trial_in_flight = True

            return self._generation

    async def record_success(self, generation: Optional[int] = None) -> None:
        """
        Record a successful call.

        CLOSED: resets the consecutive failure count.
        HALF_OPEN: counts toward success_threshold; closes when reached.
        A stale generation only counts toward the totals.
        """
        async with self._lock:
            self._total_successes += 1
            if not self._is_current(generation):
                return

            if self._state == CircuitState.HALF_OPEN:
                self._trial_in_flight = False
                self._success_count += 1
                if self._success_count >= self._success_threshold:
                    self._failure_count = 0
                    self._success_count = 0
                    self._opened_at = None
                    self._transition(CircuitState.CLOSED)
            elif self._state == CircuitState.CLOSED:
                self._failure_count = 0

    async def record_failure(self, generation: Optional[int] = None) -> None:
        """
        Record a failed call.

        CLOSED: increments the failure count; opens at failure_threshold.
        HALF_OPEN: reopens immediately with a fresh opened_at.
        A stale generation only counts toward the totals.
        """
        async with self._lock:
            self._total_failures += 1
            if not self._is_current(generation):
                return

            if self._state == CircuitState.HALF_OPEN:
                self._trial_in_flight = False
                self._success_count = 0
                self._opened_at = self._clock()
                self._transition(CircuitState.OPEN)
            elif self._state == CircuitState.CLOSED:
                self._failure_count += 1
                if self._failure_count >= self._failure_threshold:
                    self._opened_at = self._clock()
                    self._transition(CircuitState.OPEN)

    def release(self, generation: Optional[int] = None) -> None:
        """End a gated call without recording an outcome (cancellation)."""
        if self._state == CircuitState.HALF_OPEN and self._is_current(generation):
            self._trial_in_flight = False

    async def reset(self) -> None:
        """Force the breaker back to CLOSED with cleared counters."""
        async with self._lock:
            self._failure_count = 0
            self._success_count = 0
            self._opened_at = None
            self._trial_in_flight = False
            self._transition(CircuitState.CLOSED)

    def get_stats(self) -> dict[str, Any]:
        """Snapshot of breaker state for diagnostics."""
        return {
            "name": self._name,
            "state": self._state.value,
            "failure_count": self._failure_count,
            "success_count": self._success_count,
            "failure_threshold": self._failure_threshold,
            "success_threshold": self._success_threshold,
            "reset_timeout_seconds": self._reset_timeout_seconds,
            "next_attempt_at": self.next_attempt_at,
            "total_failures": self._total_failures,
            "total_successes": self._total_successes,
            "times_opened": self._times_opened,
        }

    # =========================================================================
    # Execution
    # =========================================================================

    async def execute(
        self,
        func: Callable[..., Awaitable[T]],
        *args: Any,
        **kwargs: Any,
    ) -> T:
        """
        Execute an async function through the circuit breaker.

        Args:
            func: Async function to call
            *args: Positional arguments for the function
            **kwargs: Keyword arguments for the function

        Returns:
            The result of the function call

        Raises:
            CircuitOpenError: If the circuit is open
            asyncio.CancelledError: Propagated without touching counters
            Exception: Any exception raised by the wrapped function
        """
        generation = await self.before_call()

        try:
            result = await func(*args, **kwargs)
        except asyncio.CancelledError:
            self.release(generation)
            raise
        except Exception:
            await self.record_failure(generation)
            raise

        await self.record_success(generation)
        return result
