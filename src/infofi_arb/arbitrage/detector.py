"""Cross-market arbitrage detection: raffle curve vs InfoFi market.

Per market (keyed by player), per cycle:
- raffle_price = curve marginal price (current step price_unit)
- market_price = hybrid_price_bps × payout_unit // 10000
- profitability_bps = |raffle − market| × 10000 // max(raffle, market)

Only gaps strictly above the threshold survive. A failed market fetch is
logged and omitted; it never aborts the batch.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Iterable, Optional

from infofi_arb.curve.state import CurveEntry, CurveStateTracker
from infofi_arb.errors import RangeExceeded, Unavailable, ValidationError
from infofi_arb.ledger.holders import HolderLedger, validate_season_key
from infofi_arb.models.market import InfoFiMarket, MarketType
from infofi_arb.models.opportunity import (
    ArbitrageOpportunity,
    DetectionResult,
    Direction,
)
from infofi_arb.models.position import HolderSnapshot
from infofi_arb.oracle.reader import HybridOracleReader
from infofi_arb.sources.base import MarketRegistry

logger = logging.getLogger(__name__)

BPS = 10_000
DEFAULT_MIN_PROFITABILITY_BPS = 200   # 2%
DEFAULT_MAX_RESULTS = 10
DEFAULT_PAYOUT_UNIT = 10**18          # settlement units per winning share
DEFAULT_NOTIONAL_UNITS = 1
DEFAULT_CONCURRENCY = 8


def _require_non_negative_int(name: str, value) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValidationError(f"{name} must be a non-negative integer: {value!r}")
    return value


def market_unit_price(hybrid_price_bps: int, payout_unit: int = DEFAULT_PAYOUT_UNIT) -> int:
    """Hybrid probability (bps) → price of one winning share in settlement units."""
    return (hybrid_price_bps * payout_unit) // BPS


def compute_opportunity(
    market: InfoFiMarket,
    raffle_price: int,
    market_price: int,
    min_profitability_bps: int,
    notional_units: int = DEFAULT_NOTIONAL_UNITS,
    now: Optional[datetime] = None,
    raffle_probability_bps: Optional[int] = None,
    market_sentiment_bps: Optional[int] = None,
    oracle_is_live: bool = True,
) -> Optional[ArbitrageOpportunity]:
    """Price gap → opportunity, or None.

    None if either price is non-positive or profitability does not strictly
    exceed min_profitability_bps.
    """
    if raffle_price <= 0 or market_price <= 0:
        return None

    difference = abs(raffle_price - market_price)
    # 비싼 쪽 기준: 0.05 vs 0.02 → 60%
    reference = max(raffle_price, market_price)
    profitability_bps = (difference * BPS) // reference
    if profitability_bps <= min_profitability_bps:
        return None

    direction = (
        Direction.BUY_RAFFLE if raffle_price < market_price else Direction.BUY_MARKET
    )
    return ArbitrageOpportunity(
        market_id=market.market_id,
        player=market.player,
        season_id=market.season_id,
        raffle_price=raffle_price,
        market_price=market_price,
        price_difference=difference,
        direction=direction,
        profitability_bps=profitability_bps,
        estimated_profit=difference * notional_units,
        last_updated=now or datetime.now(tz=timezone.utc),
        raffle_probability_bps=raffle_probability_bps,
        market_sentiment_bps=market_sentiment_bps,
        oracle_is_live=oracle_is_live,
    )


def rank_opportunities(
    opportunities: Iterable[ArbitrageOpportunity],
    max_results: Optional[int] = None,
) -> list[ArbitrageOpportunity]:
    """수익률 내림차순, 예상 수익 내림차순, market_id 순.

    Returns new list (원본 불변).
    """
    ranked = sorted(
        opportunities,
        key=lambda o: (-o.profitability_bps, -o.estimated_profit, o.market_id),
    )
    if max_results is not None:
        ranked = ranked[:max_results]
    return ranked


class ArbitrageDetector:
    """Scan a season's InfoFi markets against the raffle curve.

    Reads cached curve and ledger snapshots; their own cadences refresh them.
    A snapshot is fetched here only when none exists yet.

    Args:
        registry: 시즌별 마켓 목록 소스.
        curve_tracker: 커브 상태 캐시.
        ledger: 홀더 원장.
        oracle: 하이브리드 가격 리더.
        concurrency: 마켓별 동시 조회 수.
    """

    def __init__(
        self,
        registry: MarketRegistry,
        curve_tracker: CurveStateTracker,
        ledger: HolderLedger,
        oracle: HybridOracleReader,
        min_profitability_bps: int = DEFAULT_MIN_PROFITABILITY_BPS,
        max_results: int = DEFAULT_MAX_RESULTS,
        payout_unit: int = DEFAULT_PAYOUT_UNIT,
        notional_units: int = DEFAULT_NOTIONAL_UNITS,
        concurrency: int = DEFAULT_CONCURRENCY,
    ):
        self._registry = registry
        self._curves = curve_tracker
        self._ledger = ledger
        self._oracle = oracle
        self.min_profitability_bps = _require_non_negative_int(
            "min_profitability_bps", min_profitability_bps,
        )
        self.max_results = self._check_max_results(max_results)
        if payout_unit <= 0:
            raise ValidationError(f"payout_unit must be positive: {payout_unit}")
        self.payout_unit = payout_unit
        self.notional_units = _require_non_negative_int("notional_units", notional_units)
        self._semaphore = asyncio.Semaphore(max(1, concurrency))
        self._inflight: dict[tuple, asyncio.Task] = {}
        self.last_result: Optional[DetectionResult] = None

    @staticmethod
    def _check_max_results(value) -> int:
        if isinstance(value, bool) or not isinstance(value, int) or value < 1:
            raise ValidationError(f"max_results must be an integer >= 1: {value!r}")
        return value

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def get_arbitrage_opportunities(
        self,
        season_id: int,
        curve_address: str,
        min_profitability_bps: Optional[int] = None,
        max_results: Optional[int] = None,
    ) -> DetectionResult:
        """Run (or join) one detection cycle.

        At most one cycle runs per (season, curve). Concurrent callers await
        the same in-flight cycle; each caller's threshold and max_results are
        applied to the shared candidates afterwards.

        Raises:
            ValidationError: bad season id, address, threshold or max_results.
        """
        season_id, address = validate_season_key(season_id, curve_address)
        min_bps = (
            self.min_profitability_bps if min_profitability_bps is None
            else _require_non_negative_int("min_profitability_bps", min_profitability_bps)
        )
        limit = self.max_results if max_results is None else self._check_max_results(max_results)

        key = (season_id, address)
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._detect(season_id, address))
            self._inflight[key] = task
            task.add_done_callback(lambda t, k=key: self._release(k, t))
        else:
            logger.debug("Joining in-flight detection for season=%d curve=%s", season_id, address)
        # 호출자 취소는 진행 중 사이클에 전파되지 않음
        candidates = await asyncio.shield(task)
        return self._select(candidates, min_bps, limit)

    def _release(self, key: tuple, task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]

    def _select(self, candidates: DetectionResult, min_bps: int, limit: int) -> DetectionResult:
        """Per-caller view: threshold filter + rank + truncate."""
        result = replace(
            candidates,
            opportunities=rank_opportunities(
                (o for o in candidates.opportunities if o.profitability_bps > min_bps),
                limit,
            ),
            failed_markets=dict(candidates.failed_markets),
            stale_markets=list(candidates.stale_markets),
        )
        self.last_result = result
        return result

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    async def _curve_entry(self, address: str) -> CurveEntry:
        """Cached curve snapshot; fetched only when nothing is cached yet."""
        entry = self._curves.get(address)
        if entry is None:
            entry = await self._curves.refresh(address)
        return entry

    async def _holder_snapshot(self, season_id: int, address: str) -> HolderSnapshot:
        """Cached holder snapshot; the ledger is scanned only on first use."""
        snapshot = self._ledger.snapshot(season_id, address)
        if snapshot is None:
            snapshot = await self._ledger.get_holders(season_id, address)
        return snapshot

    async def _detect(self, season_id: int, address: str) -> DetectionResult:
        """One cycle: every positive-gap candidate, unranked and unfiltered."""
        result = DetectionResult(season_id=season_id, curve_address=address)

        try:
            entry = await self._curve_entry(address)
        except Unavailable as exc:
            logger.warning("Curve %s unavailable, skipping detection: %s", address, exc)
            result.is_live = False
            return self._finish(result)
        if entry.is_stale:
            result.is_live = False
        try:
            raffle_price = entry.curve.marginal_price()
        except (ValidationError, RangeExceeded) as exc:
            logger.warning("Curve %s state cannot be priced: %s", address, exc)
            result.is_live = False
            return self._finish(result)

        snapshot: Optional[HolderSnapshot]
        try:
            snapshot = await self._holder_snapshot(season_id, address)
        except Unavailable as exc:
            logger.warning("Holder snapshot unavailable for season %d: %s", season_id, exc)
            snapshot = None
        if snapshot is None or snapshot.is_stale:
            result.is_live = False

        try:
            markets = await self._registry.fetch_season_markets(season_id)
        except Unavailable as exc:
            logger.warning("Market registry unavailable for season %d: %s", season_id, exc)
            result.is_live = False
            return self._finish(result)

        markets = [
            m for m in markets
            if m.season_id == season_id and m.market_type is MarketType.WINNER_PREDICTION
        ]
        result.markets_scanned = len(markets)
        now = datetime.now(tz=timezone.utc)

        outcomes = await asyncio.gather(
            *(self._evaluate_market(m, raffle_price, snapshot, now) for m in markets),
            return_exceptions=True,
        )

        opportunities: list[ArbitrageOpportunity] = []
        for market, outcome in zip(markets, outcomes):
            if isinstance(outcome, Exception):
                logger.warning(
                    "Market %s (player %s) skipped: %s",
                    market.market_id, market.player, outcome,
                )
                result.failed_markets[market.market_id] = str(outcome) or type(outcome).__name__
                continue
            is_live, opportunity = outcome
            if not is_live:
                result.stale_markets.append(market.market_id)
            if opportunity is not None:
                opportunities.append(opportunity)

        if result.failed_markets or result.stale_markets:
            result.is_live = False
        result.opportunities = opportunities
        return self._finish(result)

    async def _evaluate_market(
        self,
        market: InfoFiMarket,
        raffle_price: int,
        snapshot: Optional[HolderSnapshot],
        now: datetime,
    ) -> tuple[bool, Optional[ArbitrageOpportunity]]:
        """Semaphore-limited single market evaluation.

        Deactivated markets are skipped without degrading the cycle.
        """
        async with self._semaphore:
            reading = await self._oracle.get_hybrid_price(market.market_id)

        price = reading.price
        if not price.active:
            logger.debug("Market %s inactive, skipped", market.market_id)
            return True, None
        market_price = market_unit_price(price.hybrid_price_bps or 0, self.payout_unit)

        raffle_bps: Optional[int] = None
        if snapshot is not None:
            holder = snapshot.holder(market.player)
            raffle_bps = holder.win_probability_bps if holder else 0

        opportunity = compute_opportunity(
            market,
            raffle_price,
            market_price,
            min_profitability_bps=0,
            notional_units=self.notional_units,
            now=now,
            raffle_probability_bps=raffle_bps,
            market_sentiment_bps=price.market_sentiment_bps,
            oracle_is_live=reading.is_live,
        )
        return reading.is_live, opportunity

    def _finish(self, result: DetectionResult) -> DetectionResult:
        logger.info(
            "Detection season=%d: %d markets, %d candidates, %d failed, %d stale, live=%s",
            result.season_id, result.markets_scanned, len(result.opportunities),
            len(result.failed_markets), len(result.stale_markets), result.is_live,
        )
        return result
