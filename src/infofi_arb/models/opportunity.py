"""ArbitrageOpportunity, Direction and DetectionResult models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from infofi_arb.errors import PartialFailure


class Direction(Enum):
    """어느 쪽을 사야 하는지."""

    BUY_RAFFLE = "buy_raffle"    # raffle 가 더 쌈
    BUY_MARKET = "buy_market"    # 마켓이 더 쌈


@dataclass(frozen=True)
class ArbitrageOpportunity:
    """A threshold-exceeding raffle vs market price gap for one player.

    Prices are in the smallest settlement unit. Recomputed every cycle and
    never persisted.
    """

    market_id: str
    player: str
    season_id: int
    raffle_price: int
    market_price: int
    price_difference: int
    direction: Direction
    profitability_bps: int
    estimated_profit: int
    last_updated: datetime
    raffle_probability_bps: Optional[int] = None
    market_sentiment_bps: Optional[int] = None
    oracle_is_live: bool = True

    @property
    def profitability(self) -> Decimal:
        """Profitability as a percentage (presentation only)."""
        return Decimal(self.profitability_bps) / Decimal(100)


@dataclass
class DetectionResult:
    """Outcome of one detection cycle.

    is_live=False means the result is degraded (a market failed, or some
    input was stale); it is never signalled by an exception.
    """

    season_id: int
    curve_address: str
    opportunities: list[ArbitrageOpportunity] = field(default_factory=list)
    is_live: bool = True
    failed_markets: dict[str, str] = field(default_factory=dict)
    stale_markets: list[str] = field(default_factory=list)
    markets_scanned: int = 0
    detected_at: datetime = field(
        default_factory=lambda: datetime.now(tz=timezone.utc)
    )

    @property
    def is_empty(self) -> bool:
        return not self.opportunities

    def raise_for_partial_failure(self) -> None:
        """실패한 마켓이 있으면 PartialFailure (opt-in)."""
        if self.failed_markets:
            raise PartialFailure(
                {mid: RuntimeError(msg) for mid, msg in self.failed_markets.items()}
            )
