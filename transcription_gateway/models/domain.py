"""
Domain Models - providers, configuration snapshots and normalized results.

This module contains the value objects shared by the orchestrator, the
resilience components and the provider adapters.

Pattern: Domain models as value objects (frozen Pydantic models)
Pattern: Tagged union of providers via ProviderIdentity rather than inheritance

Note: ProviderConfig and OrchestratorConfig are immutable. The orchestrator
only changes configuration by publishing a new OrchestratorConfig snapshot
through reconfigure().
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, InstanceOf, SecretStr, field_validator, model_validator

from transcription_gateway.resilience.retry import RetryPolicy


# =============================================================================
# Enumerations
# =============================================================================


class ProviderIdentity(str, Enum):
    """Identifies one transcription backend."""

    WHISPER = "whisper"
    DEEPGRAM = "deepgram"


class SelectionStrategy(str, Enum):
    """Policy used to pick a provider when the caller names none."""

    MANUAL = "manual"
    ROUND_ROBIN = "round_robin"
    COST_OPTIMIZED = "cost_optimized"
    PERFORMANCE_OPTIMIZED = "performance_optimized"
    QUALITY_OPTIMIZED = "quality_optimized"
    AB_TEST = "ab_test"


# =============================================================================
# Provider Configuration
# =============================================================================


class RateLimitConfig(BaseModel):
    """
    Token bucket parameters for one provider.

    Attributes:
        capacity: Maximum number of tokens (burst size).
        refill_rate: Tokens added per second.
        max_queue_size: Callers allowed to wait for a token. 0 disables
            waiting, so a rejected admission fails fast.
    """

    capacity: int = Field(..., ge=1, description="Maximum tokens in the bucket")
    refill_rate: float = Field(..., gt=0, description="Tokens added per second")
    max_queue_size: int = Field(default=0, ge=0, description="Bounded wait queue depth")

    model_config = {"frozen": True}

    @classmethod
    def per_window(
        cls,
        requests: int,
        window_seconds: float,
        max_queue_size: int = 0,
    ) -> "RateLimitConfig":
        """Build a bucket allowing ``requests`` per ``window_seconds``."""
        return cls(
            capacity=requests,
            refill_rate=requests / window_seconds,
            max_queue_size=max_queue_size,
        )


class CircuitBreakerConfig(BaseModel):
    """Circuit breaker thresholds for one provider."""

    failure_threshold: int = Field(default=5, ge=1)
    success_threshold: int = Field(default=2, ge=1)
    reset_timeout_seconds: float = Field(default=60.0, gt=0)

    model_config = {"frozen": True}


class ProviderConfig(BaseModel):
    """
    Per-provider settings.

    Attributes:
        identity: Which backend this configuration belongs to.
        enabled: Disabled providers are never selected.
        api_key: Credential, masked in logs and repr.
        model: Provider model name (adapter default when None).
        base_url: Optional endpoint override (proxies, self-hosted gateways).
        max_concurrency: Maximum simultaneous calls to this provider.
        timeout_seconds: Timeout for a single call attempt.
        rate_limit: Token bucket parameters; None means unlimited.
        circuit_breaker: Breaker thresholds.
    """

    identity: ProviderIdentity
    enabled: bool = True
    api_key: SecretStr = Field(default=SecretStr(""))
    model: Optional[str] = None
    base_url: Optional[str] = None
    max_concurrency: int = Field(default=1, ge=1)
    timeout_seconds: float = Field(default=30.0, gt=0)
    rate_limit: Optional[RateLimitConfig] = None
    circuit_breaker: CircuitBreakerConfig = Field(default_factory=CircuitBreakerConfig)

    model_config = {"frozen": True}


class ABTestConfig(BaseModel):
    """
    A/B test traffic split.

    ``traffic_split`` is the share of traffic (0-1) assigned to the
    control provider; the remainder goes to the treatment provider.
    """

    enabled: bool = False
    traffic_split: float = Field(default=0.5, ge=0.0, le=1.0)
    control_provider: ProviderIdentity = ProviderIdentity.WHISPER
    treatment_provider: ProviderIdentity = ProviderIdentity.DEEPGRAM
    experiment_id: str = "default"
    force_provider: Optional[ProviderIdentity] = None

    model_config = {"frozen": True}


class OrchestratorConfig(BaseModel):
    """
    Immutable configuration snapshot for the orchestrator.

    Provider insertion order is the fallback chain order.
    """

    providers: dict[ProviderIdentity, ProviderConfig] = Field(default_factory=dict)
    default_provider: ProviderIdentity = ProviderIdentity.WHISPER
    selection_strategy: SelectionStrategy = SelectionStrategy.MANUAL
    fallback_enabled: bool = True
    quality_ranking: tuple[ProviderIdentity, ...] = (
        ProviderIdentity.DEEPGRAM,
        ProviderIdentity.WHISPER,
    )
    ab_test: ABTestConfig = Field(default_factory=ABTestConfig)
    retry: InstanceOf[RetryPolicy] = Field(default_factory=RetryPolicy)

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def validate_provider_keys(self) -> "OrchestratorConfig":
        """Each provider config must be stored under its own identity."""
        for identity, provider_config in self.providers.items():
            if provider_config.identity != identity:
                raise ValueError(
                    f"Provider config for '{provider_config.identity.value}' "
                    f"stored under '{identity.value}'"
                )
        return self

    def with_provider_enabled(
        self, identity: ProviderIdentity, enabled: bool
    ) -> "OrchestratorConfig":
        """Return a copy with one provider toggled."""
        providers = dict(self.providers)
        providers[identity] = providers[identity].model_copy(update={"enabled": enabled})
        return self.model_copy(update={"providers": providers})

    def with_default_provider(self, identity: ProviderIdentity) -> "OrchestratorConfig":
        """Return a copy with a different default provider."""
        return self.model_copy(update={"default_provider": identity})


# =============================================================================
# Requests and Results
# =============================================================================


class ProviderCapabilities(BaseModel):
    """What a provider can do."""

    streaming: bool = False
    realtime: bool = False
    languages: list[str] = Field(default_factory=list)
    max_file_size: int = Field(default=25 * 1024 * 1024, description="Bytes")
    audio_formats: list[str] = Field(default_factory=list)
    features: list[str] = Field(default_factory=list)
    models: list[str] = Field(default_factory=list)

    model_config = {"frozen": True}


class TranscriptionOptions(BaseModel):
    """Provider-neutral transcription options."""

    language: Optional[str] = None
    model: Optional[str] = None
    prompt: Optional[str] = None
    temperature: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    diarize: bool = False
    punctuate: bool = True
    smart_format: bool = True

    model_config = {"frozen": True}


class TranscriptionRequest(BaseModel):
    """
    A request to transcribe one audio payload.

    Attributes:
        audio: Raw audio bytes.
        filename: Name sent to providers that need a file name.
        mime_type: Content type of the audio.
        options: Provider-neutral options.
        selection_key: User or session id used for A/B bucketing.
        duration_seconds: Audio length hint used for cost estimation when
            the provider does not report a duration.
        request_id: Caller-supplied id used as the correlation id of every
            event logged for this request.
    """

    audio: bytes
    filename: str = "audio.wav"
    mime_type: str = "audio/wav"
    options: TranscriptionOptions = Field(default_factory=TranscriptionOptions)
    selection_key: Optional[str] = None
    duration_seconds: Optional[float] = Field(default=None, ge=0.0)
    request_id: Optional[str] = None

    model_config = {"frozen": True}


class TranscriptionSegment(BaseModel):
    """A timed span of transcribed text."""

    start: float
    end: float
    text: str
    speaker: Optional[str] = None
    confidence: Optional[float] = None

    model_config = {"frozen": True}


class TranscriptionMetadata(BaseModel):
    """Bookkeeping attached by the orchestrator."""

    model: Optional[str] = None
    processing_time_seconds: Optional[float] = None
    cost: Optional[float] = None
    word_count: Optional[int] = None
    request_id: Optional[str] = None

    model_config = {"frozen": True}


class TranscriptionResult(BaseModel):
    """
    Normalized transcription output.

    Every adapter maps its native response into this shape; nothing
    provider-specific crosses the orchestrator boundary.
    """

    text: str
    provider: ProviderIdentity
    language: Optional[str] = None
    segments: Optional[list[TranscriptionSegment]] = None
    duration_seconds: Optional[float] = None
    confidence: Optional[float] = None
    metadata: TranscriptionMetadata = Field(default_factory=TranscriptionMetadata)

    model_config = {"frozen": True}

    @field_validator("text")
    @classmethod
    def strip_text(cls, v: str) -> str:
        return v.strip()

    @property
    def word_count(self) -> int:
        return len(self.text.split())


# =============================================================================
# Metrics Snapshots
# =============================================================================


class ProviderMetrics(BaseModel):
    """
    Point-in-time view of one provider's accumulated statistics.

    Attributes:
        provider: Provider identity.
        total_requests: Successful plus failed requests.
        successful_requests: Requests that returned a result.
        failed_requests: Requests that raised (cancellations excluded).
        average_latency_seconds: Running mean latency of successful requests.
        average_cost: Running mean estimated cost of successful requests.
        last_failure_at: When the most recent failure was recorded.
        last_error: Message of the most recent failure.
    """

    provider: ProviderIdentity
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    average_latency_seconds: float = 0.0
    average_cost: float = 0.0
    last_failure_at: Optional[datetime] = None
    last_error: Optional[str] = None

    model_config = {"frozen": True}

    @property
    def success_rate(self) -> float:
        if self.total_requests == 0:
            return 0.0
        return self.successful_requests / self.total_requests

    @property
    def failure_rate(self) -> float:
        if self.total_requests == 0:
            return 0.0
        return self.failed_requests / self.total_requests


class AggregateMetrics(BaseModel):
    """Statistics summed across every tracked provider."""

    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    average_latency_seconds: float = 0.0
    average_cost: float = 0.0
    total_cost: float = 0.0
    providers: dict[ProviderIdentity, ProviderMetrics] = Field(default_factory=dict)

    model_config = {"frozen": True}

    @property
    def failure_rate(self) -> float:
        if self.total_requests == 0:
            return 0.0
        return self.failed_requests / self.total_requests

    def to_dict(self) -> dict[str, Any]:
        """Plain-dict export for logging sinks."""
        return self.model_dump(mode="json")
