"""
Core configuration module for the Transcription Gateway.

Centralized configuration management using Pydantic Settings. All
configuration is loaded from environment variables with the
TRANSCRIPTION_GATEWAY_ prefix, e.g. TRANSCRIPTION_GATEWAY_DEEPGRAM_ENABLED=true.

Settings is the flat, environment-facing shape; to_orchestrator_config()
turns it into the immutable OrchestratorConfig snapshot the orchestrator
runs on.
"""

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings

from transcription_gateway.models.domain import (
    ABTestConfig,
    CircuitBreakerConfig,
    OrchestratorConfig,
    ProviderConfig,
    ProviderIdentity,
    RateLimitConfig,
    SelectionStrategy,
)
from transcription_gateway.resilience.retry import RetryPolicy


class Settings(BaseSettings):
    """
    Gateway settings loaded from environment variables.

    All fields use the TRANSCRIPTION_GATEWAY_ prefix.
    Example: TRANSCRIPTION_GATEWAY_SELECTION_STRATEGY=cost_optimized
    """

    # =========================================================================
    # Service Configuration
    # =========================================================================
    service_name: str = Field(
        default="transcription-gateway",
        description="Name of the service for logging and identification",
    )
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Deployment environment",
    )
    log_level: str = Field(
        default="INFO",
        description="Minimum log level (DEBUG, INFO, WARNING, ERROR)",
    )

    # =========================================================================
    # Routing
    # =========================================================================
    default_provider: ProviderIdentity = Field(
        default=ProviderIdentity.WHISPER,
        description="Provider used by the manual strategy",
    )
    selection_strategy: SelectionStrategy = Field(
        default=SelectionStrategy.MANUAL,
        description="Policy used when the caller names no provider",
    )
    fallback_enabled: bool = Field(
        default=True,
        description="Fall back to another provider when one is unavailable or exhausted",
    )
    quality_ranking: list[ProviderIdentity] = Field(
        default_factory=lambda: [ProviderIdentity.DEEPGRAM, ProviderIdentity.WHISPER],
        description="Static ranking used by the quality_optimized strategy",
    )

    # =========================================================================
    # Whisper (OpenAI)
    # SecretStr masks values in logs/repr, use .get_secret_value() to access
    # =========================================================================
    whisper_enabled: bool = Field(default=True)
    whisper_api_key: SecretStr = Field(
        default=SecretStr(""),
        description="OpenAI API key for Whisper",
    )
    whisper_model: str = Field(default="whisper-1")
    whisper_base_url: Optional[str] = Field(
        default=None,
        description="Optional OpenAI-compatible endpoint (Azure OpenAI, proxies)",
    )
    whisper_max_concurrency: int = Field(default=1, ge=1, le=100)
    whisper_timeout_seconds: float = Field(default=30.0, gt=0, le=600.0)
    whisper_rate_limit_capacity: Optional[int] = Field(
        default=None,
        ge=1,
        description="Token bucket burst size; unset means no client-side limit",
    )
    whisper_rate_limit_refill_per_second: float = Field(default=1.0, gt=0)

    # =========================================================================
    # Deepgram
    # =========================================================================
    deepgram_enabled: bool = Field(default=False)
    deepgram_api_key: SecretStr = Field(
        default=SecretStr(""),
        description="Deepgram API key",
    )
    deepgram_model: str = Field(default="nova-2")
    deepgram_base_url: Optional[str] = Field(default=None)
    deepgram_max_concurrency: int = Field(default=5, ge=1, le=100)
    deepgram_timeout_seconds: float = Field(default=30.0, gt=0, le=600.0)
    deepgram_rate_limit_capacity: Optional[int] = Field(default=100, ge=1)
    deepgram_rate_limit_refill_per_second: float = Field(default=100 / 60, gt=0)

    rate_limit_max_queue_size: int = Field(
        default=0,
        ge=0,
        description="Callers allowed to wait for a rate-limit token; 0 fails fast",
    )

    # =========================================================================
    # Circuit Breaker Configuration
    # =========================================================================
    circuit_breaker_failure_threshold: int = Field(
        default=5,
        ge=1,
        le=100,
        description="Number of consecutive failures before circuit opens",
    )
    circuit_breaker_success_threshold: int = Field(
        default=2,
        ge=1,
        le=100,
        description="Half-open successes required to close the circuit",
    )
    circuit_breaker_reset_timeout_seconds: float = Field(
        default=60.0,
        ge=1.0,
        le=3600.0,
        description="Seconds to wait before attempting circuit recovery",
    )

    # =========================================================================
    # Retry Configuration
    # =========================================================================
    retry_max_attempts: int = Field(default=3, ge=1, le=10)
    retry_base_delay_seconds: float = Field(default=1.0, ge=0.0)
    retry_backoff_multiplier: float = Field(default=2.0, ge=1.0)
    retry_max_delay_seconds: float = Field(default=10.0, ge=0.0)
    retry_jitter_factor: float = Field(default=0.2, ge=0.0, le=1.0)

    # =========================================================================
    # A/B Testing
    # =========================================================================
    ab_test_enabled: bool = Field(default=False)
    ab_test_traffic_split: float = Field(
        default=0.5,
        ge=0.0,
        le=1.0,
        description="Share of traffic sent to the control provider",
    )
    ab_test_control_provider: ProviderIdentity = Field(default=ProviderIdentity.WHISPER)
    ab_test_treatment_provider: ProviderIdentity = Field(default=ProviderIdentity.DEEPGRAM)
    ab_test_experiment_id: str = Field(default="default")
    ab_test_force_provider: Optional[ProviderIdentity] = Field(default=None)

    model_config = {
        "env_prefix": "TRANSCRIPTION_GATEWAY_",
        "case_sensitive": False,
        "extra": "ignore",
    }

    # =========================================================================
    # Field Validators
    # =========================================================================
    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Normalize and validate the log level."""
        level = v.upper()
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if level not in valid_levels:
            raise ValueError(f"Log level must be one of: {sorted(valid_levels)}")
        return level

    @field_validator("whisper_base_url", "deepgram_base_url")
    @classmethod
    def validate_base_url(cls, v: Optional[str]) -> Optional[str]:
        """Endpoint overrides must be http(s) URLs."""
        if v is not None and not v.startswith(("http://", "https://")):
            raise ValueError("Base URL must start with http:// or https://")
        return v

    # =========================================================================
    # Conversion
    # =========================================================================

    def _circuit_breaker(self) -> CircuitBreakerConfig:
        return CircuitBreakerConfig(
            failure_threshold=self.circuit_breaker_failure_threshold,
            success_threshold=self.circuit_breaker_success_threshold,
            reset_timeout_seconds=self.circuit_breaker_reset_timeout_seconds,
        )

    def _rate_limit(self, capacity: Optional[int], refill: float) -> Optional[RateLimitConfig]:
        if capacity is None:
            return None
        return RateLimitConfig(
            capacity=capacity,
            refill_rate=refill,
            max_queue_size=self.rate_limit_max_queue_size,
        )

    def to_orchestrator_config(self) -> OrchestratorConfig:
        """Build the immutable orchestrator snapshot. Whisper precedes Deepgram in the chain."""
        breaker = self._circuit_breaker()
        providers = {
            ProviderIdentity.WHISPER: ProviderConfig(
                identity=ProviderIdentity.WHISPER,
                enabled=self.whisper_enabled,
                api_key=self.whisper_api_key,
                model=self.whisper_model,
                base_url=self.whisper_base_url,
                max_concurrency=self.whisper_max_concurrency,
                timeout_seconds=self.whisper_timeout_seconds,
                rate_limit=self._rate_limit(
                    self.whisper_rate_limit_capacity,
                    self.whisper_rate_limit_refill_per_second,
                ),
                circuit_breaker=breaker,
            ),
            ProviderIdentity.DEEPGRAM: ProviderConfig(
                identity=ProviderIdentity.DEEPGRAM,
                enabled=self.deepgram_enabled,
                api_key=self.deepgram_api_key,
                model=self.deepgram_model,
                base_url=self.deepgram_base_url,
                max_concurrency=self.deepgram_max_concurrency,
                timeout_seconds=self.deepgram_timeout_seconds,
                rate_limit=self._rate_limit(
                    self.deepgram_rate_limit_capacity,
                    self.deepgram_rate_limit_refill_per_second,
                ),
                circuit_breaker=breaker,
            ),
        }

        return OrchestratorConfig(
            providers=providers,
            default_provider=self.default_provider,
            selection_strategy=self.selection_strategy,
            fallback_enabled=self.fallback_enabled,
            quality_ranking=tuple(self.quality_ranking),
            ab_test=ABTestConfig(
                enabled=self.ab_test_enabled,
                traffic_split=self.ab_test_traffic_split,
                control_provider=self.ab_test_control_provider,
                treatment_provider=self.ab_test_treatment_provider,
                experiment_id=self.ab_test_experiment_id,
                force_provider=self.ab_test_force_provider,
            ),
            retry=RetryPolicy(
                max_attempts=self.retry_max_attempts,
                base_delay=self.retry_base_delay_seconds,
                backoff_multiplier=self.retry_backoff_multiplier,
                max_delay=self.retry_max_delay_seconds,
                jitter_factor=self.retry_jitter_factor,
            ),
        )


@lru_cache
def get_settings() -> Settings:
    """
    Get the settings singleton.

    functools.lru_cache ensures only one Settings instance is created.
    Tests call get_settings.cache_clear() after changing the environment.
    """
    return Settings()
