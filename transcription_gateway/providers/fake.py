"""
Fake Transcription Provider - Test Double Implementation

A FakeProvider implements the real TranscriptionProvider interface without
making network calls. This is NOT mocking - it is a proper implementation of
the interface with deterministic behavior, usable for:
- Unit and integration tests of the orchestrator
- Local development without API keys
- Demo/sandbox environments

Behavior is scripted: each call pops the next outcome from ``script``
(a TranscriptionResult to return or an exception to raise). When the script
is empty, ``error_on_call`` is raised if set, otherwise a default result is
returned.
"""

import asyncio
from collections import deque
from typing import Iterable, Optional, Union

from transcription_gateway.models.domain import (
    ProviderCapabilities,
    ProviderConfig,
    ProviderIdentity,
    TranscriptionOptions,
    TranscriptionResult,
)
from transcription_gateway.providers.base import TranscriptionProvider

Outcome = Union[TranscriptionResult, BaseException]


class FakeProvider(TranscriptionProvider):
    """
    Fake transcription provider for testing and local development.

    Attributes:
        identity: Which provider this fake stands in for
        config: The ProviderConfig it was built from
        calls: (audio, options) of every call, for test assertions
        delay: Seconds each call sleeps before resolving
        closed: True once aclose() has run

    Example:
        >>> provider = FakeProvider(ProviderIdentity.WHISPER, text="hello")
        >>> (await provider.call(b"audio", TranscriptionOptions())).text
        'hello'

        # For error testing:
        >>> provider = FakeProvider(
        ...     ProviderIdentity.WHISPER,
        ...     error_on_call=ProviderServerError("whisper"),
        ... )
    """

    def __init__(
        self,
        identity: ProviderIdentity = ProviderIdentity.WHISPER,
        config: Optional[ProviderConfig] = None,
        text: str = "Fake transcription for testing",
        duration_seconds: Optional[float] = 60.0,
        script: Optional[Iterable[Outcome]] = None,
        error_on_call: Optional[BaseException] = None,
        delay: float = 0.0,
    ) -> None:
        self.identity = identity
        self.config = config or ProviderConfig(identity=identity)
        self.text = text
        self.duration_seconds = duration_seconds
        self.script: deque[Outcome] = deque(script or [])
        self.error_on_call = error_on_call
        self.delay = delay

        self.calls: list[tuple[bytes, TranscriptionOptions]] = []
        self.closed = False

    @classmethod
    def from_config(cls, config: ProviderConfig) -> "FakeProvider":
        """Build a fake from a ProviderConfig, matching the registry's factory signature."""
        return cls(identity=config.identity, config=config)

    @property
    def call_count(self) -> int:
        return len(self.calls)

    def enqueue(self, *outcomes: Outcome) -> None:
        """Append outcomes to the script."""
        self.script.extend(outcomes)

    def get_config(self) -> ProviderConfig:
        return self.config

    def get_capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(
            streaming=self.identity == ProviderIdentity.DEEPGRAM,
            languages=["en"],
            audio_formats=["wav"],
            models=["fake-model"],
        )

    async def call(
        self,
        audio: bytes,
        options: TranscriptionOptions,
        filename: str = "audio.wav",
    ) -> TranscriptionResult:
        self.calls.append((audio, options))

        if self.delay:
            await asyncio.sleep(self.delay)

        if self.script:
            outcome = self.script.popleft()
            if isinstance(outcome, BaseException):
                raise outcome
            return outcome

        if self.error_on_call is not None:
            raise self.error_on_call

        return TranscriptionResult(
            text=self.text,
            provider=self.identity,
            language=options.language or "en",
            duration_seconds=self.duration_seconds,
            metadata={"model": options.model or "fake-model"},
        )

    async def aclose(self) -> None:
        self.closed = True
