"""
Pytest configuration and shared fixtures.

This configuration sets up:
- Project root on sys.path
- Test markers for categorization
- A controllable monotonic clock (FakeClock) shared by breakers, limiters
  and latency timing
- A FakeProvider factory so the orchestrator never touches the network
- Config builders for common orchestrator setups
"""

import asyncio
import random
import sys
from pathlib import Path
from typing import Any, Optional

import pytest

# Add project root to Python path for imports
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from transcription_gateway.models.domain import (  # noqa: E402
    ABTestConfig,
    CircuitBreakerConfig,
    OrchestratorConfig,
    ProviderConfig,
    ProviderIdentity,
    RateLimitConfig,
    SelectionStrategy,
)
from transcription_gateway.observability.logging import configure_logging  # noqa: E402
from transcription_gateway.providers.fake import FakeProvider  # noqa: E402
from transcription_gateway.resilience.retry import RetryPolicy, RetryStrategy  # noqa: E402


# =============================================================================
# Test Markers
# =============================================================================


def pytest_configure(config):
    """Register custom markers for test categorization."""
    config.addinivalue_line("markers", "unit: Unit tests for individual components")
    config.addinivalue_line("markers", "integration: Integration tests for component interactions")


# =============================================================================
# Time Control
# =============================================================================


class FakeClock:
    """
    Manually advanced monotonic clock.

    ``sleep`` advances the clock by the requested delay and yields to the
    event loop once, so code that waits on the clock makes progress without
    real waiting.
    """

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


class RecordingSleep:
    """Retry sleep that records delays and returns immediately."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float, cancel_event: Optional[asyncio.Event] = None) -> None:
        self.delays.append(delay)
        if cancel_event is not None and cancel_event.is_set():
            raise asyncio.CancelledError("cancelled by caller")
        await asyncio.sleep(0)


@pytest.fixture
def retry_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def retry_strategy(retry_sleep) -> RetryStrategy:
    """RetryStrategy with a seeded RNG and no real sleeping."""
    return RetryStrategy(rng=random.Random(42), sleep=retry_sleep)


# =============================================================================
# Providers
# =============================================================================


class FakeProviderFactory:
    """
    Provider factory for the orchestrator that builds FakeProviders.

    ``configure(identity, **kwargs)`` sets FakeProvider keyword arguments for
    every future build of that identity; ``fail_build(identity)`` makes the
    factory raise ConfigurationError for it, like a missing API key.
    """

    def __init__(self) -> None:
        self.options: dict[ProviderIdentity, dict[str, Any]] = {}
        self.failing: set[ProviderIdentity] = set()
        self.instances: list[FakeProvider] = []

    def configure(self, identity: Any, **kwargs: Any) -> None:
        self.options[ProviderIdentity(identity)] = kwargs

    def fail_build(self, identity: Any) -> None:
        self.failing.add(ProviderIdentity(identity))

    def __call__(self, config: ProviderConfig) -> FakeProvider:
        from transcription_gateway.core.exceptions import ConfigurationError

        if config.identity in self.failing:
            raise ConfigurationError("missing API key", field="api_key")
        fake = FakeProvider(
            identity=config.identity,
            config=config,
            **self.options.get(config.identity, {}),
        )
        self.instances.append(fake)
        return fake

    def latest(self, identity: Any) -> FakeProvider:
        identity = ProviderIdentity(identity)
        return [f for f in self.instances if f.identity == identity][-1]

    def built(self, identity: Any) -> list[FakeProvider]:
        identity = ProviderIdentity(identity)
        return [f for f in self.instances if f.identity == identity]


@pytest.fixture
def provider_factory() -> FakeProviderFactory:
    return FakeProviderFactory()


# =============================================================================
# Configuration Builders
# =============================================================================


def build_config(
    providers: tuple[str, ...] = ("whisper", "deepgram"),
    *,
    disabled: tuple[str, ...] = (),
    default_provider: str = "whisper",
    strategy: SelectionStrategy = SelectionStrategy.MANUAL,
    fallback_enabled: bool = True,
    failure_threshold: int = 3,
    success_threshold: int = 1,
    reset_timeout_seconds: float = 30.0,
    rate_limit: Optional[RateLimitConfig] = None,
    max_attempts: int = 1,
    timeout_seconds: float = 5.0,
    max_concurrency: int = 4,
    ab_test: Optional[ABTestConfig] = None,
    quality_ranking: tuple[str, ...] = ("deepgram", "whisper"),
) -> OrchestratorConfig:
    """OrchestratorConfig with test-friendly defaults."""
    breaker = CircuitBreakerConfig(
        failure_threshold=failure_threshold,
        success_threshold=success_threshold,
        reset_timeout_seconds=reset_timeout_seconds,
    )
    provider_configs = {
        ProviderIdentity(name): ProviderConfig(
            identity=ProviderIdentity(name),
            enabled=name not in disabled,
            api_key="test-key",
            timeout_seconds=timeout_seconds,
            max_concurrency=max_concurrency,
            rate_limit=rate_limit,
            circuit_breaker=breaker,
        )
        for name in providers
    }
    return OrchestratorConfig(
        providers=provider_configs,
        default_provider=ProviderIdentity(default_provider),
        selection_strategy=strategy,
        fallback_enabled=fallback_enabled,
        quality_ranking=tuple(ProviderIdentity(p) for p in quality_ranking),
        ab_test=ab_test or ABTestConfig(),
        retry=RetryPolicy(
            max_attempts=max_attempts,
            base_delay=0.5,
            backoff_multiplier=2.0,
            max_delay=4.0,
            jitter_factor=0.2,
        ),
    )


@pytest.fixture
def make_config():
    """Return the config builder."""
    return build_config


@pytest.fixture
def make_orchestrator(provider_factory, retry_strategy, fake_clock):
    """Return a function building an Orchestrator wired to fakes and the fake clock."""
    from transcription_gateway.services.orchestrator import Orchestrator

    def _make(config: Optional[OrchestratorConfig] = None, **kwargs: Any) -> Orchestrator:
        return Orchestrator(
            config or build_config(**kwargs),
            provider_factory=provider_factory,
            retry_strategy=retry_strategy,
            clock=fake_clock,
            sleep=fake_clock.sleep,
        )

    return _make


@pytest.fixture
def audio_request():
    """A small transcription request with a duration hint."""
    from transcription_gateway.models.domain import TranscriptionRequest

    return TranscriptionRequest(audio=b"RIFF....WAVEfmt ", duration_seconds=60.0)


@pytest.fixture
def structlog_reset():
    """Force a fresh structlog configuration so capture_logs sees every logger."""
    configure_logging(level="DEBUG", force=True)
    yield
    configure_logging(force=True)
