"""
Providers Package - transcription provider adapters.

Contains the abstract provider interface, the Whisper and Deepgram adapters,
a fake adapter for tests and local development, and provider selection.
The concrete adapters are imported from their modules so their SDKs load
only when used.
"""

from transcription_gateway.providers.base import TranscriptionProvider
from transcription_gateway.providers.fake import FakeProvider
from transcription_gateway.providers.registry import build_provider
from transcription_gateway.providers.selector import ProviderSelector, ab_bucket

__all__ = [
    "TranscriptionProvider",
    "FakeProvider",
    "build_provider",
    "ProviderSelector",
    "ab_bucket",
]
