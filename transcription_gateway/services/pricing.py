"""
Transcription pricing.

List prices are per minute of audio in USD. Cost estimates feed the
cost_optimized selection strategy and the per-provider cost metrics; they
are estimates only and are never used for billing.
"""

from decimal import Decimal
from typing import Optional

from transcription_gateway.models.domain import ProviderIdentity


# =============================================================================
# Model Pricing Configuration
# Prices per minute of audio
# =============================================================================


DEFAULT_PRICING: dict[str, Decimal] = {
    # OpenAI
    "whisper-1": Decimal("0.006"),
    "gpt-4o-transcribe": Decimal("0.006"),
    "gpt-4o-mini-transcribe": Decimal("0.003"),
    # Deepgram (pre-recorded, pay as you go)
    "nova-3": Decimal("0.0043"),
    "nova-2": Decimal("0.0043"),
    "nova": Decimal("0.0043"),
    "enhanced": Decimal("0.0145"),
    "base": Decimal("0.0125"),
    # Default fallback
    "_default": Decimal("0.01"),
}

# Per-provider list price used when a provider has no cost history yet
PROVIDER_LIST_PRICE: dict[ProviderIdentity, Decimal] = {
    ProviderIdentity.WHISPER: DEFAULT_PRICING["whisper-1"],
    ProviderIdentity.DEEPGRAM: DEFAULT_PRICING["nova-2"],
}


def price_per_minute(
    model: Optional[str],
    pricing: Optional[dict[str, Decimal]] = None,
) -> Decimal:
    """
    Per-minute price for a model.

    Exact match first, then prefix match (``nova-2-general`` matches
    ``nova-2``), then ``_default``.
    """
    pricing = pricing or DEFAULT_PRICING
    if model:
        if model in pricing:
            return pricing[model]
        # Longest prefix wins so "nova-2-meeting" does not resolve to "nova"
        for prefix in sorted(pricing, key=len, reverse=True):
            if prefix != "_default" and model.startswith(prefix):
                return pricing[prefix]
    return pricing.get("_default", Decimal("0.01"))


def estimate_cost(
    model: Optional[str],
    duration_seconds: Optional[float],
    pricing: Optional[dict[str, Decimal]] = None,
) -> Optional[float]:
    """
    Estimated cost of transcribing ``duration_seconds`` of audio.

    Returns:
        Cost in USD rounded to 6 places, or None when the duration is unknown.
    """
    if duration_seconds is None:
        return None
    minutes = Decimal(str(duration_seconds)) / Decimal("60")
    cost = price_per_minute(model, pricing) * minutes
    return float(round(cost, 6))


def default_cost(provider: ProviderIdentity) -> float:
    """List price per minute for a provider's default model."""
    return float(PROVIDER_LIST_PRICE.get(provider, DEFAULT_PRICING["_default"]))
