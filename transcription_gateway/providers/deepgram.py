"""
Deepgram Provider - pre-recorded transcription over the Deepgram REST API.

POSTs raw audio bytes to ``/v1/listen`` with ``Authorization: Token <key>``.
Options become query parameters; utterances are requested so that
diarized, timed segments can be built from the response.

HTTP Client: httpx.AsyncClient, owned by the provider unless injected (tests
inject one built on httpx.MockTransport).

Status mapping:
    401, 403            -> ProviderAuthenticationError
    402                 -> ProviderQuotaExceededError
    429                 -> ProviderRateLimitError (Retry-After honored)
    400, 413, 415, 422  -> ProviderBadRequestError
    5xx                 -> ProviderServerError
    httpx timeouts      -> ProviderTimeoutError
    other transport     -> ProviderConnectionError
"""

import logging
import mimetypes
from typing import Any, Optional

import httpx

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

DEFAULT_BASE_URL = "https://api.deepgram.com"
LISTEN_PATH = "/v1/listen"
DEFAULT_MODEL = "nova-2"

SUPPORTED_MODELS = ["nova-3", "nova-2", "nova", "enhanced", "base"]

AUDIO_FORMATS = ["aac", "flac", "m4a", "mp3", "mp4", "ogg", "opus", "wav", "webm"]

LANGUAGES = [
    "en", "es", "fr", "de", "pt", "nl", "it", "pl", "ru", "zh", "ja", "ko",
    "ar", "hi", "tr", "sv", "da", "no", "fi", "cs", "hu", "bg",
]

MAX_FILE_SIZE = 2 * 1024 * 1024 * 1024

_BAD_REQUEST_STATUSES = {400, 404, 413, 415, 422}


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        return str(body.get("err_msg") or body.get("message") or body.get("reason") or body)
    return str(body)


def map_status_error(response: httpx.Response, provider: str = ProviderIdentity.DEEPGRAM.value) -> ProviderError:
    """Translate a non-2xx Deepgram response into the gateway error taxonomy."""
    status = response.status_code
    message = _error_message(response)

    if status in (401, 403):
        return ProviderAuthenticationError(provider, message=message, status_code=status)
    if status == 402:
        return ProviderQuotaExceededError(provider, message=message)
    if status == 429:
        retry_after: Optional[float] = None
        header = response.headers.get("retry-after")
        if header is not None:
            try:
                retry_after = float(header)
            except ValueError:
                retry_after = None
        return ProviderRateLimitError(provider, message=message, retry_after=retry_after)
    if status >= 500:
        return ProviderServerError(provider, message=message, status_code=status)
    if status in _BAD_REQUEST_STATUSES:
        return ProviderBadRequestError(provider, message=message, status_code=status)
    return ProviderError(message, provider, status_code=status)


# =============================================================================
# Deepgram Provider
# =============================================================================


class DeepgramProvider(TranscriptionProvider):
    """
    Deepgram transcription adapter.

    Args:
        config: Provider configuration; ``api_key`` is required.
        client: Optional httpx.AsyncClient. When omitted the provider creates
            and owns one, closed by aclose().

    Example:
        >>> provider = DeepgramProvider(ProviderConfig(identity="deepgram", api_key="dg-..."))
        >>> result = await provider.call(audio_bytes, TranscriptionOptions(diarize=True))
        >>> [s.speaker for s in result.segments]
    """

    identity = ProviderIdentity.DEEPGRAM

    def __init__(self, config: ProviderConfig, client: Optional[httpx.AsyncClient] = None) -> None:
        api_key = config.api_key.get_secret_value()
        if not api_key:
            raise ConfigurationError("Deepgram provider requires an API key", field="api_key")

        self._config = config
        self._api_key = api_key
        self._model = config.model or DEFAULT_MODEL
        self._base_url = (config.base_url or DEFAULT_BASE_URL).rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=config.timeout_seconds)

    @property
    def model(self) -> str:
        return self._model

    def get_config(self) -> ProviderConfig:
        return self._config

    def get_capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(
            streaming=True,
            realtime=True,
            languages=list(LANGUAGES),
            max_file_size=MAX_FILE_SIZE,
            audio_formats=list(AUDIO_FORMATS),
            features=["diarization", "punctuation", "smart_format", "utterances", "language_detection"],
            models=list(SUPPORTED_MODELS),
        )

    def build_params(self, options: TranscriptionOptions) -> dict[str, str]:
        """Query parameters for ``/v1/listen``."""
        params = {
            "model": options.model or self._model,
            "punctuate": str(options.punctuate).lower(),
            "smart_format": str(options.smart_format).lower(),
            "diarize": str(options.diarize).lower(),
            "utterances": "true",
        }
        if options.language:
            params["language"] = options.language
        else:
            params["detect_language"] = "true"
        return params

    async def call(
        self,
        audio: bytes,
        options: TranscriptionOptions,
        filename: str = "audio.wav",
    ) -> TranscriptionResult:
        """Transcribe ``audio`` with Deepgram's pre-recorded endpoint."""
        self.validate_audio(audio)
        params = self.build_params(options)
        content_type = mimetypes.guess_type(filename)[0] or "application/octet-stream"

        try:
            response = await self._client.post(
                f"{self._base_url}{LISTEN_PATH}",
                params=params,
                content=audio,
                headers={
                    "Authorization": f"Token {self._api_key}",
                    "Content-Type": content_type,
                },
                timeout=self._config.timeout_seconds,
            )
        except httpx.TimeoutException as e:
            raise ProviderTimeoutError(
                self.identity.value, timeout_seconds=self._config.timeout_seconds
            ) from e
        except httpx.TransportError as e:
            raise ProviderConnectionError(
                self.identity.value, message=f"Failed to reach Deepgram: {e}"
            ) from e

        if response.status_code >= 400:
            error = map_status_error(response)
            logger.warning(f"Deepgram API error {response.status_code}: {error.message}")
            raise error

        try:
            payload = response.json()
        except ValueError as e:
            raise ProviderServerError(
                self.identity.value,
                message="Deepgram returned a non-JSON body",
                status_code=response.status_code,
            ) from e

        return self._transform_response(payload, params["model"], params.get("language"))

    def _transform_response(
        self, payload: dict[str, Any], model: str, language: Optional[str] = None
    ) -> TranscriptionResult:
        try:
            channel = payload["results"]["channels"][0]
            alternative = channel["alternatives"][0]
        except (KeyError, IndexError, TypeError) as e:
            raise ProviderServerError(
                self.identity.value,
                message="Deepgram response is missing results.channels[0].alternatives[0]",
                status_code=200,
            ) from e

        segments = None
        utterances = payload["results"].get("utterances")
        if utterances:
            segments = [
                TranscriptionSegment(
                    start=float(utterance["start"]),
                    end=float(utterance["end"]),
                    text=utterance.get("transcript", "").strip(),
                    speaker=(
                        f"Speaker {utterance['speaker']}"
                        if utterance.get("speaker") is not None
                        else None
                    ),
                    confidence=utterance.get("confidence"),
                )
                for utterance in utterances
            ]

        metadata = payload.get("metadata") or {}
        duration = metadata.get("duration")

        return TranscriptionResult(
            text=alternative.get("transcript", ""),
            provider=self.identity,
            language=channel.get("detected_language") or language,
            segments=segments,
            duration_seconds=float(duration) if duration is not None else None,
            confidence=alternative.get("confidence"),
            metadata={"model": model},
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
