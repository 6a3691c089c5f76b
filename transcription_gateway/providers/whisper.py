"""
Whisper Provider - OpenAI speech-to-text adapter.

Calls ``audio.transcriptions.create`` through the official ``openai`` SDK with
``response_format="verbose_json"`` so segments, language and duration come
back with the text.

The SDK's own retry loop is disabled (max_retries=0); retries belong to the
orchestrator's RetryStrategy so every attempt is visible to the circuit
breaker and the metrics tracker.

SDK errors are mapped into the gateway taxonomy:
    APITimeoutError          -> ProviderTimeoutError
    APIConnectionError       -> ProviderConnectionError
    RateLimitError (429)     -> ProviderRateLimitError (quota errors -> ProviderQuotaExceededError)
    AuthenticationError      -> ProviderAuthenticationError
    PermissionDeniedError    -> ProviderAuthenticationError
    BadRequestError & co.    -> ProviderBadRequestError
    5xx APIStatusError       -> ProviderServerError
"""

import logging
from typing import Any, Optional

import openai
from openai import AsyncOpenAI

from transcription_gateway.core.exceptions import (
    ConfigurationError,
    ProviderAuthenticationError,
    ProviderBadRequestError,
    ProviderConnectionError,
    ProviderError,
    ProviderQuotaExceededError,
    ProviderRateLimitError,
    ProviderServerError,
    ProviderTimeoutError,
)
from transcription_gateway.models.domain import (
    ProviderCapabilities,
    ProviderConfig,
    ProviderIdentity,
    TranscriptionOptions,
    TranscriptionResult,
    TranscriptionSegment,
)
from transcription_gateway.providers.base import TranscriptionProvider

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

DEFAULT_MODEL = "whisper-1"

SUPPORTED_MODELS = [
    "whisper-1",
    "gpt-4o-transcribe",
    "gpt-4o-mini-transcribe",
]

AUDIO_FORMATS = ["flac", "m4a", "mp3", "mp4", "mpeg", "mpga", "oga", "ogg", "wav", "webm"]

LANGUAGES = [
    "af", "ar", "hy", "az", "be", "bs", "bg", "ca", "zh", "hr", "cs", "da", "nl",
    "en", "et", "fi", "fr", "gl", "de", "el", "he", "hi", "hu", "is", "id", "it",
    "ja", "kn", "kk", "ko", "lv", "lt", "mk", "ms", "mr", "mi", "ne", "no", "fa",
    "pl", "pt", "ro", "ru", "sr", "sk", "sl", "es", "sw", "sv", "tl", "ta", "th",
    "tr", "uk", "ur", "vi", "cy",
]

MAX_FILE_SIZE = 25 * 1024 * 1024


def _retry_after(error: openai.APIStatusError) -> Optional[float]:
    value = error.response.headers.get("retry-after")
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def map_openai_error(error: Exception, provider: str = ProviderIdentity.WHISPER.value) -> ProviderError:
    """
    Translate an ``openai`` SDK exception into the gateway error taxonomy.

    APITimeoutError subclasses APIConnectionError, so it is checked first.
    """
    if isinstance(error, openai.APITimeoutError):
        return ProviderTimeoutError(provider, message=str(error) or None)
    if isinstance(error, openai.APIConnectionError):
        return ProviderConnectionError(provider, message=str(error) or "Network error")
    if isinstance(error, openai.RateLimitError):
        if getattr(error, "code", None) == "insufficient_quota":
            return ProviderQuotaExceededError(provider, message=str(error), status_code=429)
        return ProviderRateLimitError(provider, message=str(error), retry_after=_retry_after(error))
    if isinstance(error, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return ProviderAuthenticationError(
            provider, message=str(error), status_code=error.status_code
        )
    if isinstance(error, openai.APIStatusError):
        if error.status_code >= 500:
            return ProviderServerError(provider, message=str(error), status_code=error.status_code)
        return ProviderBadRequestError(provider, message=str(error), status_code=error.status_code)
    return ProviderError(str(error), provider)


# =============================================================================
# Whisper Provider
# =============================================================================


class WhisperProvider(TranscriptionProvider):
    """
    OpenAI Whisper transcription adapter.

    Args:
        config: Provider configuration; ``api_key`` is required unless a
            preconfigured ``client`` is supplied.
        client: Optional AsyncOpenAI instance (tests inject a mock here).

    Example:
        >>> provider = WhisperProvider(ProviderConfig(identity="whisper", api_key="sk-..."))
        >>> result = await provider.call(audio_bytes, TranscriptionOptions(language="en"))
        >>> result.text
    """

    identity = ProviderIdentity.WHISPER

    def __init__(self, config: ProviderConfig, client: Optional[AsyncOpenAI] = None) -> None:
        self._config = config
        self._model = config.model or DEFAULT_MODEL

        if client is None:
            api_key = config.api_key.get_secret_value()
            if not api_key:
                raise ConfigurationError(
                    "Whisper provider requires an OpenAI API key", field="api_key"
                )
            client_kwargs: dict[str, Any] = {
                "api_key": api_key,
                "max_retries": 0,
                "timeout": config.timeout_seconds,
            }
            if config.base_url:
                client_kwargs["base_url"] = config.base_url
            client = AsyncOpenAI(**client_kwargs)

        self._client = client

    @property
    def model(self) -> str:
        return self._model

    def get_config(self) -> ProviderConfig:
        return self._config

    def get_capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(
            streaming=False,
            realtime=False,
            languages=list(LANGUAGES),
            max_file_size=MAX_FILE_SIZE,
            audio_formats=list(AUDIO_FORMATS),
            features=["timestamps", "language_detection", "prompt", "translation"],
            models=list(SUPPORTED_MODELS),
        )

    def _build_request_kwargs(
        self, audio: bytes, options: TranscriptionOptions, filename: str
    ) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": options.model or self._model,
            "file": (filename, audio),
            "response_format": "verbose_json",
        }
        if options.language:
            kwargs["language"] = options.language
        if options.prompt:
            kwargs["prompt"] = options.prompt
        if options.temperature is not None:
            kwargs["temperature"] = options.temperature
        return kwargs

    async def call(
        self,
        audio: bytes,
        options: TranscriptionOptions,
        filename: str = "audio.wav",
    ) -> TranscriptionResult:
        """Transcribe ``audio`` with the Whisper API."""
        self.validate_audio(audio)
        kwargs = self._build_request_kwargs(audio, options, filename)

        try:
            response = await self._client.audio.transcriptions.create(**kwargs)
        except openai.OpenAIError as e:
            raise map_openai_error(e) from e

        return self._transform_response(response, kwargs["model"])

    def _transform_response(self, response: Any, model: str) -> TranscriptionResult:
        segments = None
        raw_segments = getattr(response, "segments", None)
        if raw_segments:
            segments = [
                TranscriptionSegment(
                    start=float(segment.start),
                    end=float(segment.end),
                    text=segment.text.strip(),
                )
                for segment in raw_segments
            ]

        duration = getattr(response, "duration", None)
        return TranscriptionResult(
            text=response.text,
            provider=self.identity,
            language=getattr(response, "language", None),
            segments=segments,
            duration_seconds=float(duration) if duration is not None else None,
            metadata={"model": model},
        )

    async def aclose(self) -> None:
        await self._client.close()
