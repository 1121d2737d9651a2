"""Oracle price data models."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from infofi_arb.errors import Stale, ValidationError

BPS = 10_000


def _check_bps(name: str, value: Optional[int]) -> None:
    if value is not None and not 0 <= value <= BPS:
        raise ValidationError(f"{name} out of range [0, {BPS}]: {value}")


@dataclass(frozen=True)
class OraclePrice:
    """Externally computed blended probability for one market.

    last_update is a unix timestamp (seconds) written by the oracle.
    """

    market_id: str
    raffle_probability_bps: Optional[int]
    market_sentiment_bps: Optional[int]
    hybrid_price_bps: Optional[int]
    last_update: int = 0
    active: bool = True

    def __post_init__(self):
        _check_bps("raffle_probability_bps", self.raffle_probability_bps)
        _check_bps("market_sentiment_bps", self.market_sentiment_bps)
        _check_bps("hybrid_price_bps", self.hybrid_price_bps)

    @staticmethod
    def _opt_int(value) -> Optional[int]:
        return None if value is None else int(value)

    @classmethod
    def from_api(cls, market_id: str, raw: dict) -> OraclePrice:
        """Oracle 응답 → OraclePrice. snake/camel 양쪽 키 허용."""

        def pick(*keys):
            for k in keys:
                if raw.get(k) is not None:
                    return raw[k]
            return None

        active = pick("active")
        return cls(
            market_id=str(market_id),
            raffle_probability_bps=cls._opt_int(
                pick("raffleProbabilityBps", "raffle_probability_bps", "raffleBps")
            ),
            market_sentiment_bps=cls._opt_int(
                pick("marketSentimentBps", "market_sentiment_bps", "marketBps")
            ),
            hybrid_price_bps=cls._opt_int(
                pick("hybridPriceBps", "hybrid_price_bps", "hybridBps")
            ),
            last_update=int(pick("lastUpdate", "last_update", "timestamp") or 0),
            active=True if active is None else bool(active),
        )


@dataclass(frozen=True)
class OracleReading:
    """Oracle price plus freshness verdict at read time."""

    price: OraclePrice
    is_live: bool
    age_seconds: float

    def ensure_live(self, horizon_seconds: float) -> OraclePrice:
        """live 가 아니면 Stale 발생."""
        if not self.is_live:
            raise Stale(self.price.market_id, self.age_seconds, horizon_seconds)
        return self.price
