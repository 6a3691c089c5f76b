"""
Core module for the Transcription Gateway.

Configuration and the error taxonomy.
"""

from transcription_gateway.core.exceptions import (
    ConfigurationError,
    ErrorCode,
    ProviderError,
    TranscriptionGatewayError,
    TranscriptionValidationError,
)
from transcription_gateway.core.config import Settings, get_settings

__all__ = [
    # Config
    "Settings",
    "get_settings",
    # Exceptions
    "ErrorCode",
    "TranscriptionGatewayError",
    "ConfigurationError",
    "TranscriptionValidationError",
    "ProviderError",
]
