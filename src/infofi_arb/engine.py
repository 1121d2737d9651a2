"""InfoFi engine: component wiring and polling cadences.

Independent cadences (each a plain task, no shared lock):
- oracle:    poll hybrid prices for the season's markets
- curve:     refresh curve state
- ledger:    refresh holder ledger + market list
- detection: run one arbitrage detection cycle

A failed cadence tick is logged and retried on the next tick.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from infofi_arb.arbitrage.detector import ArbitrageDetector
from infofi_arb.config import EngineConfig
from infofi_arb.curve.pricing import BondingCurve, TradeSide, apply_slippage
from infofi_arb.curve.state import CurveStateTracker
from infofi_arb.errors import InfoFiError
from infofi_arb.execution.trade_flow import FlowStore, TradeFlowRunner, TransactionGateway
from infofi_arb.feeds.event_stream import LiveEventStream
from infofi_arb.ledger.holders import HolderLedger, validate_season_key
from infofi_arb.models.curve import BondStep
from infofi_arb.models.market import MarketType
from infofi_arb.models.opportunity import DetectionResult
from infofi_arb.models.oracle import OracleReading
from infofi_arb.models.position import HolderSnapshot
from infofi_arb.oracle.reader import HybridOracleReader
from infofi_arb.sources.state_api import StateApiClient

logger = logging.getLogger(__name__)

ResultCallback = Callable[[DetectionResult], Optional[Awaitable[None]]]


class InfoFiEngine:
    """Single entry point exposing every engine operation.

    Usage:
        async with InfoFiEngine(config) as engine:
            result = await engine.get_arbitrage_opportunities(1, "0x...")

    Args:
        config: EngineConfig.
        client: 모든 source Protocol 을 구현한 클라이언트 (기본: StateApiClient).
        gateway: 거래 실행용 TransactionGateway (없으면 거래 기능 비활성).
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        client=None,
        gateway: Optional[TransactionGateway] = None,
    ):
        self.config = config or EngineConfig()
        self.client = client or StateApiClient(self.config.state_api_url)
        self.curves = CurveStateTracker(self.client)
        self.ledger = HolderLedger(
            self.client,
            lookback_blocks=self.config.lookback_blocks,
            max_block_range=self.config.max_block_range,
        )
        self.oracle = HybridOracleReader(
            self.client, stale_after_secs=self.config.oracle_stale_secs,
        )
        self.detector = ArbitrageDetector(
            self.client,
            self.curves,
            self.ledger,
            self.oracle,
            min_profitability_bps=self.config.min_profitability_bps,
            max_results=self.config.max_results,
            payout_unit=self.config.payout_unit,
            notional_units=self.config.notional_units,
            concurrency=self.config.concurrency,
        )
        self.stream = LiveEventStream(self.ledger, self.oracle, url=self.config.ws_url)
        self.flows = FlowStore(self.config.flow_dir)
        self.runner = TradeFlowRunner(gateway, self.flows) if gateway is not None else None
        self._market_ids: dict[int, list[str]] = {}

    async def open(self) -> None:
        if hasattr(self.client, "open"):
            await self.client.open()

    async def close(self) -> None:
        await self.stream.close()
        if hasattr(self.client, "close"):
            await self.client.close()

    async def __aenter__(self) -> InfoFiEngine:
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Curve pricing
    # ------------------------------------------------------------------

    async def curve(self, curve_address: str, refresh: bool = False) -> BondingCurve:
        """Pricing view at the tracked supply. 캐시가 없으면 조회."""
        entry = None if refresh else self.curves.get(curve_address)
        if entry is None:
            entry = await self.curves.refresh(curve_address)
        return entry.curve

    async def get_current_step(self, curve_address: str, supply: Optional[int] = None) -> BondStep:
        return (await self.curve(curve_address)).get_current_step(supply)

    async def estimate_buy_cost(
        self, curve_address: str, amount: int, supply: Optional[int] = None,
    ) -> int:
        return (await self.curve(curve_address)).estimate_buy_cost(amount, supply)

    async def estimate_sell_proceeds(
        self, curve_address: str, amount: int, supply: Optional[int] = None,
    ) -> int:
        return (await self.curve(curve_address)).estimate_sell_proceeds(amount, supply)

    @staticmethod
    def apply_slippage(estimate: int, tolerance_bps: int, direction: TradeSide) -> int:
        return apply_slippage(estimate, tolerance_bps, direction)

    # ------------------------------------------------------------------
    # Ledger / oracle / detector
    # ------------------------------------------------------------------

    async def get_holders(self, season_id: int, curve_address: str) -> HolderSnapshot:
        return await self.ledger.get_holders(season_id, curve_address)

    async def get_hybrid_price(self, market_id: str, require_live: bool = False) -> OracleReading:
        """require_live=True 이면 stale 가격에 Stale 발생."""
        reading = await self.oracle.get_hybrid_price(market_id)
        if require_live:
            reading.ensure_live(self.oracle.stale_after_secs)
        return reading

    async def get_arbitrage_opportunities(
        self,
        season_id: int,
        curve_address: str,
        min_profitability_bps: Optional[int] = None,
        max_results: Optional[int] = None,
    ) -> DetectionResult:
        return await self.detector.get_arbitrage_opportunities(
            season_id, curve_address, min_profitability_bps, max_results,
        )

    # ------------------------------------------------------------------
    # Cadences
    # ------------------------------------------------------------------

    async def refresh_markets(self, season_id: int) -> list[str]:
        """Market registry → oracle poll 대상 market_id 목록."""
        markets = await self.client.fetch_season_markets(season_id)
        ids = [
            m.market_id for m in markets
            if m.market_type is MarketType.WINNER_PREDICTION
        ]
        self._market_ids[season_id] = ids
        # 미연결 시 구독은 큐에 쌓였다가 연결 후 전송
        await self.stream.subscribe(markets=ids)
        return ids

    async def _poll_oracle(self, season_id: int) -> None:
        ids = self._market_ids.get(season_id)
        if ids is None:
            ids = await self.refresh_markets(season_id)
        failures = await self.oracle.poll(ids)
        if failures:
            logger.warning("Oracle poll: %d/%d markets failed", len(failures), len(ids))

    async def _refresh_ledger(self, season_id: int, curve_address: str) -> None:
        await self.ledger.refresh(season_id, curve_address)
        await self.refresh_markets(season_id)

    async def _cadence(
        self,
        name: str,
        interval: float,
        tick: Callable[[], Awaitable[None]],
        stop_event: asyncio.Event,
    ) -> None:
        while not stop_event.is_set():
            try:
                await tick()
            except InfoFiError as exc:
                logger.warning("[%s] tick failed: %s", name, exc)
            except Exception:
                logger.exception("[%s] unexpected error", name)

            # Wait for next tick or shutdown
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

    async def run(
        self,
        season_id: int,
        curve_address: str,
        stop_event: asyncio.Event,
        on_result: Optional[ResultCallback] = None,
        stream: bool = False,
    ) -> None:
        """Run every cadence until stop_event is set."""
        season_id, curve_address = validate_season_key(season_id, curve_address)
        cfg = self.config

        async def detect() -> None:
            result = await self.get_arbitrage_opportunities(season_id, curve_address)
            if on_result is not None:
                maybe = on_result(result)
                if asyncio.iscoroutine(maybe):
                    await maybe

        tasks = [
            asyncio.create_task(self._cadence(
                "oracle", cfg.oracle_interval,
                lambda: self._poll_oracle(season_id), stop_event,
            )),
            asyncio.create_task(self._cadence(
                "curve", cfg.curve_interval,
                lambda: self.curves.refresh(curve_address), stop_event,
            )),
            asyncio.create_task(self._cadence(
                "ledger", cfg.ledger_interval,
                lambda: self._refresh_ledger(season_id, curve_address), stop_event,
            )),
            asyncio.create_task(self._cadence(
                "detection", cfg.detection_interval, detect, stop_event,
            )),
        ]
        if stream:
            await self.stream.subscribe(curves=[curve_address])
            tasks.append(asyncio.create_task(self.stream.run(stop_event)))

        try:
            await stop_event.wait()
        finally:
            await self.stream.close()
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
