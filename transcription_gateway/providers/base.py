"""
Provider Base Interface

Abstract base class for transcription provider adapters.

Design Pattern:
- Ports and Adapters (Hexagonal Architecture)
- TranscriptionProvider is the "port"
- WhisperProvider, DeepgramProvider and FakeProvider are the "adapters"

Adapters own their wire formats. Whatever a remote API returns, call() maps
it into a TranscriptionResult, and whatever it raises is mapped into the
ProviderError taxonomy so the retry layer can classify it. Adapters never
retry on their own; the orchestrator's RetryStrategy does.
"""

from abc import ABC, abstractmethod

from transcription_gateway.core.exceptions import TranscriptionValidationError
from transcription_gateway.models.domain import (
    ProviderCapabilities,
    ProviderConfig,
    ProviderIdentity,
    TranscriptionOptions,
    TranscriptionResult,
)


class TranscriptionProvider(ABC):
    """
    Abstract base class for transcription provider adapters.

    Methods:
        call: Transcribe one audio payload
        get_capabilities: Static description of what the provider supports
        get_config: The ProviderConfig the adapter was built from
        aclose: Release network resources

    Example:
        >>> class MyProvider(TranscriptionProvider):
        ...     identity = ProviderIdentity.WHISPER
        ...
        ...     async def call(self, audio, options):
        ...         return TranscriptionResult(text="hello", provider=self.identity)
        ...
        ...     def get_capabilities(self):
        ...         return ProviderCapabilities()
        ...
        ...     def get_config(self):
        ...         return self._config
    """

    identity: ProviderIdentity

    @abstractmethod
    async def call(
        self,
        audio: bytes,
        options: TranscriptionOptions,
        filename: str = "audio.wav",
    ) -> TranscriptionResult:
        """
        Transcribe ``audio``.

        Args:
            audio: Raw audio bytes
            options: Provider-neutral transcription options
            filename: Original file name; some APIs infer the format from it

        Returns:
            TranscriptionResult: Normalized transcription

        Raises:
            TranscriptionValidationError: If the audio is unacceptable
            ProviderAuthenticationError: If credentials are rejected
            ProviderRateLimitError: If the provider answered 429
            ProviderServerError: If the provider failed (5xx)
            ProviderTimeoutError: If the provider did not answer in time
            ProviderConnectionError: If the provider could not be reached
        """
        ...

    @abstractmethod
    def get_capabilities(self) -> ProviderCapabilities:
        """Describe formats, languages, size limits and features."""
        ...

    @abstractmethod
    def get_config(self) -> ProviderConfig:
        """Return the configuration this adapter was built from."""
        ...

    async def aclose(self) -> None:
        """Release network resources. The default adapter holds none."""
        return None

    def validate_audio(self, audio: bytes) -> None:
        """
        Reject payloads no provider call could succeed with.

        Raises:
            TranscriptionValidationError: Empty audio or audio larger than
                the provider's max_file_size
        """
        if not audio:
            raise TranscriptionValidationError("Audio payload is empty", field="audio")
        max_size = self.get_capabilities().max_file_size
        if len(audio) > max_size:
            raise TranscriptionValidationError(
                f"Audio payload of {len(audio)} bytes exceeds the "
                f"{self.identity.value} limit of {max_size} bytes",
                field="audio",
            )
