"""Transcription Gateway - resilient orchestration over speech-to-text providers.

Import the orchestrator from ``transcription_gateway.services.orchestrator``
or use the re-exports below.
"""

from transcription_gateway.core.exceptions import (
    CircuitOpenError,
    NoProviderAvailableError,
    ProviderError,
    ProviderUnavailableError,
    QueueFullError,
    RateLimitedError,
    RetriesExhaustedError,
    TranscriptionGatewayError,
)
from transcription_gateway.models.domain import (
    OrchestratorConfig,
    ProviderConfig,
    ProviderIdentity,
    SelectionStrategy,
    TranscriptionOptions,
    TranscriptionRequest,
    TranscriptionResult,
)
from transcription_gateway.services.orchestrator import Orchestrator, create_orchestrator

__version__ = "0.1.0"

__all__ = [
    # Orchestrator
    "Orchestrator",
    "create_orchestrator",
    # Models
    "OrchestratorConfig",
    "ProviderConfig",
    "ProviderIdentity",
    "SelectionStrategy",
    "TranscriptionOptions",
    "TranscriptionRequest",
    "TranscriptionResult",
    # Errors
    "TranscriptionGatewayError",
    "ProviderError",
    "RateLimitedError",
    "QueueFullError",
    "ProviderUnavailableError",
    "CircuitOpenError",
    "NoProviderAvailableError",
    "RetriesExhaustedError",
]
