"""Hybrid price blend.

hybrid = round((raffle_w × raffle_bps + market_w × sentiment_bps) / (raffle_w + market_w))

The oracle contract maintains this value on-chain; the reader only
recomputes it when a record carries both components but no hybrid value.
"""

from __future__ import annotations

from infofi_arb.errors import ValidationError

DEFAULT_RAFFLE_WEIGHT_BPS = 7000
DEFAULT_MARKET_WEIGHT_BPS = 3000


def blend_hybrid_price_bps(
    raffle_probability_bps: int,
    market_sentiment_bps: int,
    raffle_weight_bps: int = DEFAULT_RAFFLE_WEIGHT_BPS,
    market_weight_bps: int = DEFAULT_MARKET_WEIGHT_BPS,
) -> int:
    """Weighted blend, rounded half up, in basis points."""
    if raffle_weight_bps < 0 or market_weight_bps < 0:
        raise ValidationError("weights must be non-negative")
    total = raffle_weight_bps + market_weight_bps
    if total == 0:
        raise ValidationError("weights must not both be zero")
    weighted = (
        raffle_weight_bps * raffle_probability_bps
        + market_weight_bps * market_sentiment_bps
    )
    return (2 * weighted + total) // (2 * total)
