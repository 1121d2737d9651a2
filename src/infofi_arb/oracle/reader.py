"""Hybrid price oracle reader.

Read-only consumer of the externally maintained blended probability per
market. Prices older than the staleness horizon are still returned, flagged
``is_live=False``; consumers degrade instead of failing.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import replace
from typing import Callable, Iterable, Optional

from infofi_arb.errors import Unavailable
from infofi_arb.models.oracle import OraclePrice, OracleReading
from infofi_arb.oracle.hybrid import (
    DEFAULT_MARKET_WEIGHT_BPS,
    DEFAULT_RAFFLE_WEIGHT_BPS,
    blend_hybrid_price_bps,
)
from infofi_arb.sources.base import OracleSource

logger = logging.getLogger(__name__)

DEFAULT_STALE_AFTER_SECS = 60.0


class HybridOracleReader:
    """Poll and cache oracle prices.

    market_id → (OraclePrice, fetched_at) 매핑.

    Args:
        source: OracleSource 구현체.
        stale_after_secs: 이 시간보다 오래된 가격은 non-live.
        clock: 테스트용 시간 함수 (unix seconds).
    """

    def __init__(
        self,
        source: OracleSource,
        stale_after_secs: float = DEFAULT_STALE_AFTER_SECS,
        raffle_weight_bps: int = DEFAULT_RAFFLE_WEIGHT_BPS,
        market_weight_bps: int = DEFAULT_MARKET_WEIGHT_BPS,
        clock: Callable[[], float] = time.time,
    ):
        self._source = source
        self.stale_after_secs = stale_after_secs
        self._raffle_weight_bps = raffle_weight_bps
        self._market_weight_bps = market_weight_bps
        self._clock = clock
        self._prices: dict[str, OraclePrice] = {}
        self._fetched_at: dict[str, float] = {}
        self._hits: int = 0
        self._misses: int = 0

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_hybrid_price(self, market_id: str) -> OracleReading:
        """Fetch from the source, cache, and return a reading.

        On source failure the cached price is returned flagged non-live.

        Raises:
            Unavailable: no price has ever been recorded for this market.
        """
        try:
            fetched = await self._source.fetch_oracle_price(market_id)
        except Unavailable as exc:
            cached = self._prices.get(market_id)
            if cached is None:
                raise
            logger.warning(
                "Oracle fetch failed for %s, serving cached price: %s", market_id, exc,
            )
            return replace(self._reading(cached), is_live=False)

        self.ingest(fetched)
        return self.read_hybrid_price(market_id)

    def read_hybrid_price(self, market_id: str) -> OracleReading:
        """캐시에서만 조회.

        Raises:
            Unavailable: no price recorded yet.
        """
        price = self._prices.get(market_id)
        if price is None:
            self._misses += 1
            raise Unavailable(f"no hybrid price recorded for market {market_id}")
        self._hits += 1
        return self._reading(price)

    def is_stale(self, market_id: str) -> bool:
        """가격이 없거나 horizon 보다 오래되었으면 True."""
        price = self._prices.get(market_id)
        if price is None:
            return True
        return not self._reading(price).is_live

    # ------------------------------------------------------------------
    # Writes (poll / stream)
    # ------------------------------------------------------------------

    def ingest(self, price: OraclePrice) -> bool:
        """Record a price from either ingestion path.

        Returns False when ignored: no hybrid value can be derived, or the
        cached price has a newer last_update.
        """
        price = self._complete(price)
        if price.hybrid_price_bps is None:
            logger.debug("Ignoring oracle record without hybrid price: %s", price.market_id)
            return False
        cached = self._prices.get(price.market_id)
        if cached is not None and price.last_update and cached.last_update > price.last_update:
            return False
        self._prices[price.market_id] = price
        self._fetched_at[price.market_id] = self._clock()
        return True

    async def poll(self, market_ids: Iterable[str]) -> dict[str, str]:
        """Refresh many markets concurrently. 실패한 market_id → 사유."""
        ids = list(dict.fromkeys(market_ids))
        if not ids:
            return {}
        results = await asyncio.gather(
            *(self.get_hybrid_price(mid) for mid in ids), return_exceptions=True,
        )
        failures: dict[str, str] = {}
        for mid, result in zip(ids, results):
            if isinstance(result, Exception):
                logger.warning("Oracle poll failed for %s: %s", mid, result)
                failures[mid] = str(result)
        return failures

    def clear(self) -> None:
        self._prices.clear()
        self._fetched_at.clear()
        self._hits = 0
        self._misses = 0

    @property
    def stats(self) -> dict:
        """Cache statistics."""
        total = self._hits + self._misses
        return {
            "prices_cached": len(self._prices),
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": round(self._hits / total, 3) if total > 0 else 0.0,
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _complete(self, price: OraclePrice) -> OraclePrice:
        if (
            price.hybrid_price_bps is None
            and price.raffle_probability_bps is not None
            and price.market_sentiment_bps is not None
        ):
            return replace(
                price,
                hybrid_price_bps=blend_hybrid_price_bps(
                    price.raffle_probability_bps,
                    price.market_sentiment_bps,
                    self._raffle_weight_bps,
                    self._market_weight_bps,
                ),
            )
        return price

    def _reading(self, price: OraclePrice) -> OracleReading:
        # last_update 가 없으면 (fallback getter) 수신 시각 기준
        stamp: Optional[float] = float(price.last_update) if price.last_update else None
        if stamp is None:
            stamp = self._fetched_at.get(price.market_id, 0.0)
        age = max(0.0, self._clock() - stamp)
        is_live = price.active and age <= self.stale_after_secs
        return OracleReading(price=price, is_live=is_live, age_seconds=age)
