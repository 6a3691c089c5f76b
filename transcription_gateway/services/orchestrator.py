"""
Transcription Orchestrator - composition root and call pipeline.

The orchestrator owns one runtime per enabled provider (adapter instance,
circuit breaker, optional rate limiter, concurrency semaphore) and routes
each transcription request through them:

    resolve provider (explicit preference, or ProviderSelector policy)
      -> RateLimiter admission          (RateLimitedError / QueueFullError)
      -> CircuitBreaker gate            (CircuitOpenError)
      -> RetryStrategy over a timeout-bounded provider call,
         each attempt under the provider's concurrency semaphore
      -> outcome recorded in MetricsTracker and the breaker
      -> on RetriesExhaustedError, optional fallback to the next
         eligible provider in chain order

Configuration is an immutable snapshot. reconfigure() builds new runtimes
with fresh breakers, limiters and semaphores, publishes them with a single
reference swap, and closes adapters that are no longer used once their last
in-flight call finishes. Calls keep the snapshot they started with.
Metrics live for the orchestrator's lifetime and survive reconfiguration.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping, Optional, Sequence, Union

from transcription_gateway.core.config import Settings, get_settings
from transcription_gateway.core.exceptions import (
    ConfigurationError,
    NoProviderAvailableError,
    ProviderTimeoutError,
    ProviderUnavailableError,
    RetriesExhaustedError,
)
from transcription_gateway.models.domain import (
    AggregateMetrics,
    OrchestratorConfig,
    ProviderConfig,
    ProviderIdentity,
    ProviderMetrics,
    TranscriptionRequest,
    TranscriptionResult,
)
from transcription_gateway.observability.logging import (
    configure_logging,
    get_correlation_id,
    get_logger,
    request_correlation,
)
from transcription_gateway.providers.base import TranscriptionProvider
from transcription_gateway.providers.registry import ProviderFactory, build_provider
from transcription_gateway.providers.selector import ProviderSelector
from transcription_gateway.resilience.circuit_breaker import CircuitBreaker, CircuitState
from transcription_gateway.resilience.metrics import record_fallback, record_provider_request
from transcription_gateway.resilience.rate_limiter import RateLimiter
from transcription_gateway.resilience.retry import RetryStrategy
from transcription_gateway.services.metrics_tracker import MetricsTracker
from transcription_gateway.services.pricing import estimate_cost

ProviderRef = Union[ProviderIdentity, str]


# =============================================================================
# Runtime State
# =============================================================================


@dataclass(eq=False)
class ProviderRuntime:
    """Everything the pipeline needs to call one provider."""

    identity: ProviderIdentity
    config: ProviderConfig
    provider: TranscriptionProvider
    circuit_breaker: CircuitBreaker
    rate_limiter: Optional[RateLimiter]
    semaphore: asyncio.Semaphore
    in_flight: int = 0
    retired: bool = False


@dataclass(frozen=True)
class _Snapshot:
    """Immutable pairing of a configuration with the runtimes built from it."""

    config: OrchestratorConfig
    runtimes: Mapping[ProviderIdentity, ProviderRuntime] = field(default_factory=dict)


# =============================================================================
# Orchestrator
# =============================================================================


class Orchestrator:
    """
    Resilient front door to the transcription providers.

    Example:
        >>> async with Orchestrator(settings.to_orchestrator_config()) as orchestrator:
        ...     result = await orchestrator.execute(
        ...         TranscriptionRequest(audio=audio_bytes, filename="memo.m4a")
        ...     )
        ...     print(result.text, result.provider, result.metadata.cost)

    Args:
        config: Initial configuration snapshot
        provider_factory: Builds an adapter from a ProviderConfig
        metrics_tracker: Shared tracker (a fresh one by default)
        retry_strategy: Retry runner (injectable RNG/sleep for tests)
        clock: Monotonic clock shared by breakers, limiters and latency timing
        sleep: Async sleep used by rate limiter queues
    """

    def __init__(
        self,
        config: OrchestratorConfig,
        provider_factory: ProviderFactory = build_provider,
        metrics_tracker: Optional[MetricsTracker] = None,
        retry_strategy: Optional[RetryStrategy] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._provider_factory = provider_factory
        self._metrics = metrics_tracker or MetricsTracker(clock=clock)
        self._retry = retry_strategy or RetryStrategy()
        self._clock = clock
        self._sleep = sleep
        self._selector = ProviderSelector(self._metrics)
        self._logger = get_logger(__name__)
        self._reconfigure_lock = asyncio.Lock()
        self._closed = False

        self._snapshot = self._build_snapshot(config, previous=None)

    # =========================================================================
    # Snapshot Construction
    # =========================================================================

    def _on_circuit_state_change(
        self, name: str, old_state: CircuitState, new_state: CircuitState
    ) -> None:
        self._logger.info(
            "circuit_state_changed",
            provider=name,
            from_state=old_state.value,
            to_state=new_state.value,
        )

    def _build_runtime(
        self,
        provider_config: ProviderConfig,
        provider: Optional[TranscriptionProvider] = None,
    ) -> Optional[ProviderRuntime]:
        identity = provider_config.identity
        if provider is None:
            try:
                provider = self._provider_factory(provider_config)
            except ConfigurationError as e:
                self._logger.warning(
                    "provider_skipped",
                    provider=identity.value,
                    reason=e.message,
                    field=e.field,
                )
                return None

        rate_limiter = None
        if provider_config.rate_limit is not None:
            rate_limiter = RateLimiter.from_config(
                identity.value,
                provider_config.rate_limit,
                clock=self._clock,
                sleep=self._sleep,
            )

        return ProviderRuntime(
            identity=identity,
            config=provider_config,
            provider=provider,
            circuit_breaker=CircuitBreaker.from_config(
                identity.value,
                provider_config.circuit_breaker,
                clock=self._clock,
                on_state_change=self._on_circuit_state_change,
            ),
            rate_limiter=rate_limiter,
            semaphore=asyncio.Semaphore(provider_config.max_concurrency),
        )

    def _build_snapshot(
        self, config: OrchestratorConfig, previous: Optional[_Snapshot]
    ) -> _Snapshot:
        runtimes: dict[ProviderIdentity, ProviderRuntime] = {}
        for identity, provider_config in config.providers.items():
            if not provider_config.enabled:
                continue
            # Gating state is always rebuilt; only an adapter with an
            # unchanged config is carried over.
            existing = previous.runtimes.get(identity) if previous else None
            provider = None
            if existing is not None and existing.config == provider_config:
                provider = existing.provider
            runtime = self._build_runtime(provider_config, provider)
            if runtime is not None:
                runtimes[identity] = runtime
        return _Snapshot(config=config, runtimes=runtimes)

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def config(self) -> OrchestratorConfig:
        """The currently published configuration snapshot."""
        return self._snapshot.config

    @property
    def metrics_tracker(self) -> MetricsTracker:
        return self._metrics

    @property
    def selector(self) -> ProviderSelector:
        return self._selector

    def get_runtime(self, identity: ProviderRef) -> Optional[ProviderRuntime]:
        """Runtime of an enabled, built provider in the current snapshot."""
        return self._snapshot.runtimes.get(ProviderIdentity(identity))

    # =========================================================================
    # Resolution
    # =========================================================================

    @staticmethod
    def _eligible(
        snapshot: _Snapshot, exclude: Sequence[ProviderIdentity] = ()
    ) -> list[ProviderIdentity]:
        return [
            identity
            for identity, runtime in snapshot.runtimes.items()
            if identity not in exclude and runtime.circuit_breaker.is_available()
        ]

    def _resolve(
        self,
        snapshot: _Snapshot,
        preference: Optional[ProviderRef],
        selection_key: Optional[str],
    ) -> ProviderIdentity:
        if preference is not None:
            try:
                preferred = ProviderIdentity(preference)
            except ValueError:
                raise ProviderUnavailableError(
                    str(preference), message=f"Unknown provider '{preference}'"
                ) from None

            runtime = snapshot.runtimes.get(preferred)
            if runtime is not None and runtime.circuit_breaker.is_available():
                return preferred

            if snapshot.config.fallback_enabled:
                alternatives = self._eligible(snapshot, exclude=(preferred,))
                if alternatives:
                    chosen = alternatives[0]
                    reason = "circuit_open" if runtime is not None else "disabled"
                    self._logger.warning(
                        "provider_fallback",
                        from_provider=preferred.value,
                        to_provider=chosen.value,
                        reason=reason,
                    )
                    record_fallback(preferred.value, chosen.value)
                    return chosen

            if runtime is not None:
                raise runtime.circuit_breaker.open_error()
            raise ProviderUnavailableError(preferred.value)

        eligible = self._eligible(snapshot)
        strategy = snapshot.config.selection_strategy
        chosen = self._selector.select(strategy, eligible, snapshot.config, selection_key)
        if chosen is None:
            if not eligible:
                raise NoProviderAvailableError()
            chosen = eligible[0]

        self._logger.debug(
            "provider_selected",
            provider=chosen.value,
            strategy=strategy.value,
            eligible=[p.value for p in eligible],
        )
        return chosen

    def resolve_provider(
        self,
        preference: Optional[ProviderRef] = None,
        selection_key: Optional[str] = None,
    ) -> TranscriptionProvider:
        """
        Resolve the adapter that would serve a request right now.

        Args:
            preference: Explicitly requested provider
            selection_key: User or session id for A/B bucketing

        Returns:
            The provider adapter

        Raises:
            CircuitOpenError: The preferred provider's breaker is open and no
                fallback applies
            ProviderUnavailableError: The preferred provider is disabled or
                unknown and no fallback applies
            NoProviderAvailableError: No preference and nothing eligible
        """
        snapshot = self._snapshot
        identity = self._resolve(snapshot, preference, selection_key)
        return snapshot.runtimes[identity].provider

    def get_available_providers(self) -> list[ProviderIdentity]:
        """Enabled, built providers whose breakers admit calls, in chain order."""
        return self._eligible(self._snapshot)

    # =========================================================================
    # Execution
    # =========================================================================

    async def execute(
        self,
        request: TranscriptionRequest,
        preference: Optional[ProviderRef] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> TranscriptionResult:
        """
        Transcribe ``request`` through the resilience pipeline.

        Args:
            request: Audio and options
            preference: Explicitly requested provider
            cancel_event: Optional caller cancellation signal

        Returns:
            Normalized TranscriptionResult with metadata (model, processing
            time, estimated cost, word count)

        Raises:
            RateLimitedError / QueueFullError: Admission denied, no attempt made
            CircuitOpenError: Breaker open, no attempt made
            ProviderUnavailableError / NoProviderAvailableError: Resolution failed
            RetriesExhaustedError: Every attempt failed and no fallback remained
            ProviderError / TranscriptionValidationError: Non-retryable errors,
                unchanged
            asyncio.CancelledError: The caller cancelled

        Every event logged while handling the request carries a
        ``correlation_id``: the request's ``request_id``, an id the caller
        already bound, or a fresh one. It is echoed in the result metadata.
        """
        with request_correlation(request.request_id):
            return await self._execute(request, preference, cancel_event)

    async def _execute(
        self,
        request: TranscriptionRequest,
        preference: Optional[ProviderRef],
        cancel_event: Optional[asyncio.Event],
    ) -> TranscriptionResult:
        snapshot = self._snapshot
        identity = self._resolve(snapshot, preference, request.selection_key)
        tried: list[ProviderIdentity] = []

        while True:
            tried.append(identity)
            try:
                return await self._execute_on(snapshot, identity, request, cancel_event)
            except RetriesExhaustedError:
                if not snapshot.config.fallback_enabled:
                    raise
                remaining = self._eligible(snapshot, exclude=tried)
                if not remaining:
                    raise
                self._logger.warning(
                    "provider_fallback",
                    from_provider=identity.value,
                    to_provider=remaining[0].value,
                    reason="retries_exhausted",
                )
                record_fallback(identity.value, remaining[0].value)
                identity = remaining[0]

    async def _execute_on(
        self,
        snapshot: _Snapshot,
        identity: ProviderIdentity,
        request: TranscriptionRequest,
        cancel_event: Optional[asyncio.Event],
    ) -> TranscriptionResult:
        runtime = snapshot.runtimes[identity]
        breaker = runtime.circuit_breaker

        if runtime.rate_limiter is not None:
            await runtime.rate_limiter.acquire(cancel_event)

        generation = await breaker.before_call()

        async def attempt() -> TranscriptionResult:
            async with runtime.semaphore:
                try:
                    return await asyncio.wait_for(
                        runtime.provider.call(
                            request.audio, request.options, filename=request.filename
                        ),
                        timeout=runtime.config.timeout_seconds,
                    )
                except asyncio.TimeoutError as e:
                    raise ProviderTimeoutError(
                        identity.value, timeout_seconds=runtime.config.timeout_seconds
                    ) from e

        runtime.in_flight += 1
        start = self._clock()
        try:
            result = await self._retry.attempt(
                attempt,
                snapshot.config.retry,
                name=identity.value,
                cancel_event=cancel_event,
            )
        except asyncio.CancelledError:
            breaker.release(generation)
            self._logger.info("transcription_cancelled", provider=identity.value)
            raise
        except Exception as e:
            latency = self._clock() - start
            await breaker.record_failure(generation)
            self._metrics.record_failure(identity, e, latency)
            record_provider_request(identity.value, "failure", latency)
            if isinstance(e, RetriesExhaustedError):
                self._logger.warning(
                    "retries_exhausted",
                    provider=identity.value,
                    attempts=e.attempts,
                    error=str(e.last_error),
                )
            self._logger.error(
                "transcription_failed",
                provider=identity.value,
                error_type=type(e).__name__,
                error=str(e),
                latency_seconds=round(latency, 3),
            )
            raise
        finally:
            runtime.in_flight -= 1
            if runtime.retired and runtime.in_flight == 0:
                await self._close_runtime(runtime)

        latency = self._clock() - start
        duration = (
            result.duration_seconds
            if result.duration_seconds is not None
            else request.duration_seconds
        )
        model = result.metadata.model or request.options.model or runtime.config.model
        cost = estimate_cost(model, duration)

        await breaker.record_success(generation)
        self._metrics.record_success(identity, latency, cost)
        record_provider_request(identity.value, "success", latency, cost)

        metadata = result.metadata.model_copy(
            update={
                "model": model,
                "processing_time_seconds": latency,
                "cost": cost,
                "word_count": result.word_count,
                "request_id": get_correlation_id(),
            }
        )
        self._logger.info(
            "transcription_completed",
            provider=identity.value,
            latency_seconds=round(latency, 3),
            cost=cost,
            word_count=result.word_count,
        )
        return result.model_copy(update={"metadata": metadata})

    # =========================================================================
    # Reconfiguration
    # =========================================================================

    async def _close_runtime(self, runtime: ProviderRuntime) -> None:
        try:
            await runtime.provider.aclose()
        except Exception as e:
            self._logger.warning(
                "provider_close_failed", provider=runtime.identity.value, error=str(e)
            )

    async def reconfigure(self, config: OrchestratorConfig) -> None:
        """
        Publish a new configuration snapshot.

        Every enabled provider gets a fresh circuit breaker, rate limiter
        and concurrency semaphore, so gating state resets. Adapters whose
        ProviderConfig is unchanged are reused; adapters no longer
        referenced are closed, immediately or after their last in-flight
        call. Metrics are kept.
        """
        async with self._reconfigure_lock:
            previous = self._snapshot
            snapshot = self._build_snapshot(config, previous)
            self._snapshot = snapshot

            kept = {id(runtime.provider) for runtime in snapshot.runtimes.values()}
            for runtime in previous.runtimes.values():
                if id(runtime.provider) in kept:
                    continue
                runtime.retired = True
                if runtime.in_flight == 0:
                    await self._close_runtime(runtime)

        self._logger.info(
            "orchestrator_reconfigured",
            providers=[p.value for p in snapshot.runtimes],
            default_provider=config.default_provider.value,
            selection_strategy=config.selection_strategy.value,
            fallback_enabled=config.fallback_enabled,
        )

    async def toggle_provider(self, identity: ProviderRef, enabled: bool) -> None:
        """Enable or disable a configured provider."""
        identity = ProviderIdentity(identity)
        config = self._snapshot.config
        if identity not in config.providers:
            raise ConfigurationError(
                f"Provider '{identity.value}' is not configured", field="providers"
            )
        await self.reconfigure(config.with_provider_enabled(identity, enabled))

    async def set_default_provider(self, identity: ProviderRef) -> None:
        """Change the provider used by the manual strategy."""
        identity = ProviderIdentity(identity)
        config = self._snapshot.config
        if identity not in config.providers:
            raise ConfigurationError(
                f"Provider '{identity.value}' is not configured", field="default_provider"
            )
        await self.reconfigure(config.with_default_provider(identity))

    # =========================================================================
    # Introspection
    # =========================================================================

    def get_metrics(
        self, provider: Optional[ProviderRef] = None
    ) -> Union[ProviderMetrics, AggregateMetrics]:
        """One provider's metrics, or the aggregate across all providers."""
        if provider is None:
            return self._metrics.get_aggregate()
        return self._metrics.get_metrics(ProviderIdentity(provider))

    def get_circuit_states(self) -> dict[ProviderIdentity, CircuitState]:
        return {
            identity: runtime.circuit_breaker.state
            for identity, runtime in self._snapshot.runtimes.items()
        }

    def get_statistics(self) -> dict[str, Any]:
        """Diagnostics across routing, resilience and metrics."""
        snapshot = self._snapshot
        return {
            "default_provider": snapshot.config.default_provider.value,
            "selection_strategy": snapshot.config.selection_strategy.value,
            "fallback_enabled": snapshot.config.fallback_enabled,
            "available_providers": [p.value for p in self._eligible(snapshot)],
            "circuit_breakers": {
                identity.value: runtime.circuit_breaker.get_stats()
                for identity, runtime in snapshot.runtimes.items()
            },
            "rate_limiters": {
                identity.value: runtime.rate_limiter.get_stats()
                for identity, runtime in snapshot.runtimes.items()
                if runtime.rate_limiter is not None
            },
            "selector": self._selector.get_statistics(),
            "metrics": self._metrics.get_aggregate().to_dict(),
        }

    def clear_metrics(self, provider: Optional[ProviderRef] = None) -> None:
        """Reset tracked metrics and the selector's round-robin state."""
        self._metrics.reset(ProviderIdentity(provider) if provider is not None else None)
        if provider is None:
            self._selector.reset()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def aclose(self) -> None:
        """Close every adapter in the current snapshot."""
        if self._closed:
            return
        self._closed = True
        for runtime in self._snapshot.runtimes.values():
            await self._close_runtime(runtime)

    async def __aenter__(self) -> "Orchestrator":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()


def create_orchestrator(settings: Optional[Settings] = None) -> Orchestrator:
    """
    Create an orchestrator from settings.

    Configures logging at the settings' level and builds every enabled
    provider. Providers missing credentials are skipped with a warning.
    """
    settings = settings or get_settings()
    configure_logging(level=settings.log_level)
    orchestrator = Orchestrator(settings.to_orchestrator_config())
    get_logger(__name__).info(
        "orchestrator_created",
        service=settings.service_name,
        environment=settings.environment,
        providers=[p.value for p in orchestrator.get_available_providers()],
    )
    return orchestrator
