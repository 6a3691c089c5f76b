"""
Unit tests for transcription_gateway/core/config.py - Settings and conversion.

Settings are read from TRANSCRIPTION_GATEWAY_* environment variables and
converted into the immutable OrchestratorConfig snapshot.
"""

import os
from unittest.mock import patch

import pytest
from pydantic import ValidationError


# =============================================================================
# Settings Defaults and Environment
# =============================================================================


class TestSettingsDefaults:
    """Tests for default Settings values."""

    def test_settings_extends_base_settings(self):
        from pydantic_settings import BaseSettings

        from transcription_gateway.core.config import Settings

        assert issubclass(Settings, BaseSettings)

    def test_defaults(self):
        """Whisper on, Deepgram off, manual routing with fallback."""
        from transcription_gateway.core.config import Settings
        from transcription_gateway.models.domain import ProviderIdentity, SelectionStrategy

        with patch.dict(os.environ, {}, clear=True):
            settings = Settings()

        assert settings.service_name == "transcription-gateway"
        assert settings.whisper_enabled is True
        assert settings.deepgram_enabled is False
        assert settings.default_provider == ProviderIdentity.WHISPER
        assert settings.selection_strategy == SelectionStrategy.MANUAL
        assert settings.fallback_enabled is True
        assert settings.circuit_breaker_failure_threshold == 5
        assert settings.retry_max_attempts == 3

    def test_environment_prefix(self):
        """Values come from TRANSCRIPTION_GATEWAY_ variables."""
        from transcription_gateway.core.config import Settings
        from transcription_gateway.models.domain import SelectionStrategy

        env = {
            "TRANSCRIPTION_GATEWAY_DEEPGRAM_ENABLED": "true",
            "TRANSCRIPTION_GATEWAY_DEEPGRAM_API_KEY": "dg-secret",
            "TRANSCRIPTION_GATEWAY_SELECTION_STRATEGY": "cost_optimized",
            "TRANSCRIPTION_GATEWAY_LOG_LEVEL": "debug",
        }
        with patch.dict(os.environ, env, clear=True):
            settings = Settings()

        assert settings.deepgram_enabled is True
        assert settings.deepgram_api_key.get_secret_value() == "dg-secret"
        assert settings.selection_strategy == SelectionStrategy.COST_OPTIMIZED
        assert settings.log_level == "DEBUG"

    def test_api_keys_masked(self):
        """API keys never appear in repr."""
        from transcription_gateway.core.config import Settings

        settings = Settings(whisper_api_key="sk-very-secret")
        assert "sk-very-secret" not in repr(settings)


class TestSettingsValidation:
    """Tests for field validation."""

    def test_invalid_log_level(self):
        from transcription_gateway.core.config import Settings

        with pytest.raises(ValidationError):
            Settings(log_level="LOUD")

    def test_invalid_base_url(self):
        from transcription_gateway.core.config import Settings

        with pytest.raises(ValidationError):
            Settings(deepgram_base_url="ftp://deepgram")

    def test_invalid_strategy(self):
        from transcription_gateway.core.config import Settings

        with pytest.raises(ValidationError):
            Settings(selection_strategy="cheapest")

    def test_traffic_split_bounds(self):
        from transcription_gateway.core.config import Settings

        with pytest.raises(ValidationError):
            Settings(ab_test_traffic_split=1.5)


# =============================================================================
# Conversion
# =============================================================================


class TestToOrchestratorConfig:
    """Tests for Settings.to_orchestrator_config."""

    def test_chain_order_and_fields(self):
        """Whisper precedes Deepgram; per-provider fields carry over."""
        from transcription_gateway.core.config import Settings
        from transcription_gateway.models.domain import ProviderIdentity

        settings = Settings(
            whisper_api_key="sk",
            whisper_max_concurrency=3,
            deepgram_enabled=True,
            deepgram_model="nova-3",
            circuit_breaker_failure_threshold=2,
        )
        config = settings.to_orchestrator_config()

        assert list(config.providers) == [ProviderIdentity.WHISPER, ProviderIdentity.DEEPGRAM]
        whisper = config.providers[ProviderIdentity.WHISPER]
        deepgram = config.providers[ProviderIdentity.DEEPGRAM]
        assert whisper.max_concurrency == 3
        assert whisper.api_key.get_secret_value() == "sk"
        assert deepgram.enabled is True
        assert deepgram.model == "nova-3"
        assert deepgram.circuit_breaker.failure_threshold == 2

    def test_rate_limits(self):
        """Whisper is unlimited by default; Deepgram allows 100 per minute."""
        from transcription_gateway.core.config import Settings
        from transcription_gateway.models.domain import ProviderIdentity

        config = Settings(rate_limit_max_queue_size=4).to_orchestrator_config()

        assert config.providers[ProviderIdentity.WHISPER].rate_limit is None
        deepgram_limit = config.providers[ProviderIdentity.DEEPGRAM].rate_limit
        assert deepgram_limit.capacity == 100
        assert deepgram_limit.refill_rate == pytest.approx(100 / 60)
        assert deepgram_limit.max_queue_size == 4

    def test_retry_and_ab_test(self):
        from transcription_gateway.core.config import Settings
        from transcription_gateway.models.domain import ProviderIdentity

        config = Settings(
            retry_max_attempts=5,
            retry_base_delay_seconds=0.5,
            ab_test_enabled=True,
            ab_test_traffic_split=0.2,
            ab_test_force_provider="deepgram",
        ).to_orchestrator_config()

        assert config.retry.max_attempts == 5
        assert config.retry.base_delay == 0.5
        assert config.ab_test.enabled is True
        assert config.ab_test.traffic_split == 0.2
        assert config.ab_test.force_provider == ProviderIdentity.DEEPGRAM

    def test_config_is_immutable(self):
        from transcription_gateway.core.config import Settings

        config = Settings().to_orchestrator_config()
        with pytest.raises(ValidationError):
            config.fallback_enabled = False


class TestGetSettings:
    """Tests for the settings singleton."""

    def test_cached(self):
        from transcription_gateway.core.config import get_settings

        get_settings.cache_clear()
        assert get_settings() is get_settings()

    def test_cache_clear_picks_up_environment(self):
        from transcription_gateway.core.config import get_settings

        with patch.dict(os.environ, {"TRANSCRIPTION_GATEWAY_SERVICE_NAME": "stt-edge"}):
            get_settings.cache_clear()
            assert get_settings().service_name == "stt-edge"
        get_settings.cache_clear()
