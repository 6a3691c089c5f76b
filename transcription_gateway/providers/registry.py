"""Provider construction from configuration."""

import logging
from typing import Callable

from transcription_gateway.core.exceptions import ConfigurationError
from transcription_gateway.models.domain import ProviderConfig, ProviderIdentity
from transcription_gateway.providers.base import TranscriptionProvider

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[ProviderConfig], TranscriptionProvider]


def build_provider(config: ProviderConfig) -> TranscriptionProvider:
    """
    Instantiate the adapter for ``config.identity``.

    Adapters are imported lazily so a deployment that only enables one
    provider never imports the other's SDK.

    Raises:
        ConfigurationError: Unknown identity or missing credential
    """
    if config.identity == ProviderIdentity.WHISPER:
        from transcription_gateway.providers.whisper import WhisperProvider

        provider: TranscriptionProvider = WhisperProvider(config)
    elif config.identity == ProviderIdentity.DEEPGRAM:
        from transcription_gateway.providers.deepgram import DeepgramProvider

        provider = DeepgramProvider(config)
    else:
        raise ConfigurationError(
            f"No adapter registered for provider '{config.identity}'", field="identity"
        )

    logger.info(f"{config.identity.value} provider built (model={config.model or 'default'})")
    return provider
