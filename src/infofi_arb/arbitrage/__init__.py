"""Raffle vs InfoFi market arbitrage detection."""

from infofi_arb.arbitrage.detector import (
    ArbitrageDetector,
    compute_opportunity,
    market_unit_price,
    rank_opportunities,
)

__all__ = [
    "ArbitrageDetector",
    "compute_opportunity",
    "market_unit_price",
    "rank_opportunities",
]
