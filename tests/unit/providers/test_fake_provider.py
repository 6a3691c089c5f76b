"""
Tests for FakeProvider and the provider registry.

FakeProvider is a real implementation of the TranscriptionProvider port used
by the orchestrator tests, so its scripting behavior is pinned down here.
"""

import pytest

from transcription_gateway.models.domain import (
    ProviderConfig,
    ProviderIdentity,
    TranscriptionOptions,
    TranscriptionResult,
)


class TestFakeProvider:
    """Tests for FakeProvider behavior."""

    @pytest.mark.asyncio
    async def test_default_result(self) -> None:
        """Without a script the fake returns its configured text."""
        from transcription_gateway.providers.fake import FakeProvider

        provider = FakeProvider(ProviderIdentity.DEEPGRAM, text="  hello world ")
        result = await provider.call(b"audio", TranscriptionOptions(language="es"))

        assert result.text == "hello world"
        assert result.provider == ProviderIdentity.DEEPGRAM
        assert result.language == "es"
        assert result.duration_seconds == 60.0
        assert result.metadata.model == "fake-model"
        assert provider.call_count == 1

    @pytest.mark.asyncio
    async def test_script_then_error_on_call(self) -> None:
        """Scripted outcomes are consumed in order before error_on_call applies."""
        from transcription_gateway.core.exceptions import (
            ProviderAuthenticationError,
            ProviderServerError,
        )
        from transcription_gateway.providers.fake import FakeProvider

        scripted = TranscriptionResult(text="scripted", provider=ProviderIdentity.WHISPER)
        provider = FakeProvider(
            script=[ProviderServerError("whisper"), scripted],
            error_on_call=ProviderAuthenticationError("whisper"),
        )

        with pytest.raises(ProviderServerError):
            await provider.call(b"a", TranscriptionOptions())
        assert (await provider.call(b"a", TranscriptionOptions())).text == "scripted"
        with pytest.raises(ProviderAuthenticationError):
            await provider.call(b"a", TranscriptionOptions())

    @pytest.mark.asyncio
    async def test_enqueue_and_record_calls(self) -> None:
        """enqueue() extends the script; calls are recorded with their options."""
        from transcription_gateway.providers.fake import FakeProvider

        provider = FakeProvider()
        provider.enqueue(TranscriptionResult(text="one", provider=ProviderIdentity.WHISPER))
        options = TranscriptionOptions(prompt="names")

        await provider.call(b"payload", options)

        assert provider.calls == [(b"payload", options)]

    @pytest.mark.asyncio
    async def test_from_config_and_close(self) -> None:
        """from_config keeps the config; aclose() marks the fake closed."""
        from transcription_gateway.providers.fake import FakeProvider

        config = ProviderConfig(identity=ProviderIdentity.DEEPGRAM, model="nova-3")
        provider = FakeProvider.from_config(config)

        assert provider.identity == ProviderIdentity.DEEPGRAM
        assert provider.get_config() is config
        assert provider.get_capabilities().streaming is True

        await provider.aclose()
        assert provider.closed is True

    def test_validate_audio(self) -> None:
        """The base class rejects empty and oversize payloads."""
        from transcription_gateway.core.exceptions import TranscriptionValidationError
        from transcription_gateway.providers.fake import FakeProvider

        provider = FakeProvider()
        provider.validate_audio(b"ok")

        with pytest.raises(TranscriptionValidationError):
            provider.validate_audio(b"")
        with pytest.raises(TranscriptionValidationError, match="exceeds"):
            provider.validate_audio(b"x" * (25 * 1024 * 1024 + 1))


class TestBuildProvider:
    """Tests for the registry factory."""

    def test_builds_whisper(self) -> None:
        from transcription_gateway.providers.registry import build_provider
        from transcription_gateway.providers.whisper import WhisperProvider

        provider = build_provider(ProviderConfig(identity="whisper", api_key="sk-test"))
        assert isinstance(provider, WhisperProvider)

    def test_builds_deepgram(self) -> None:
        from transcription_gateway.providers.deepgram import DeepgramProvider
        from transcription_gateway.providers.registry import build_provider

        provider = build_provider(ProviderConfig(identity="deepgram", api_key="dg-test"))
        assert isinstance(provider, DeepgramProvider)

    def test_missing_key_raises_configuration_error(self) -> None:
        from transcription_gateway.core.exceptions import ConfigurationError
        from transcription_gateway.providers.registry import build_provider

        with pytest.raises(ConfigurationError):
            build_provider(ProviderConfig(identity="deepgram"))
