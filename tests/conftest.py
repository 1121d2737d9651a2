"""Shared test fixtures for infofi_arb."""

from __future__ import annotations

import time
from typing import Optional

import pytest

from infofi_arb.errors import BlockRangeTooLarge, Unavailable
from infofi_arb.models.curve import BondStep, CurveState
from infofi_arb.models.market import InfoFiMarket, MarketType, format_market_id
from infofi_arb.models.oracle import OraclePrice
from infofi_arb.models.position import PositionUpdateEvent

WEI = 10**18
CURVE = "0x" + "c" * 40


def addr(n: int) -> str:
    """Deterministic test address."""
    return f"0x{n:040x}"


# ---------------------------------------------------------------------------
# Fake sources
# ---------------------------------------------------------------------------


class FakeEventSource:
    """In-memory PositionEventSource."""

    def __init__(self, events=None, head: int = 1_000, start_block: Optional[int] = None):
        self.events: list[PositionUpdateEvent] = list(events or [])
        self.head = head
        self.start_block = start_block
        self.fail = False
        self.max_range: Optional[int] = None
        self.calls: list[tuple[int, int]] = []

    async def latest_block(self) -> int:
        if self.fail:
            raise Unavailable("rpc down")
        return self.head

    async def season_start_block(self, season_id: int) -> Optional[int]:
        return self.start_block

    async def fetch_position_updates(self, curve_address, season_id, from_block, to_block):
        if self.fail:
            raise Unavailable("rpc down")
        if self.max_range is not None and to_block - from_block + 1 > self.max_range:
            raise BlockRangeTooLarge(f"range {to_block - from_block + 1} too large")
        self.calls.append((from_block, to_block))
        return [
            e for e in self.events
            if from_block <= e.block_number <= to_block and e.season_id == season_id
        ]


class FakeCurveSource:
    def __init__(self, state: CurveState):
        self.state = state
        self.fail = False
        self.calls = 0

    async def fetch_curve_state(self, curve_address: str) -> CurveState:
        self.calls += 1
        if self.fail:
            raise Unavailable("curve read failed")
        return self.state


class FakeOracleSource:
    def __init__(self, prices=None):
        self.prices: dict[str, OraclePrice] = dict(prices or {})
        self.failing: set[str] = set()
        self.calls: list[str] = []

    async def fetch_oracle_price(self, market_id: str) -> OraclePrice:
        self.calls.append(market_id)
        if market_id in self.failing:
            raise Unavailable(f"oracle read failed for {market_id}")
        if market_id not in self.prices:
            raise Unavailable(f"no price for {market_id}")
        return self.prices[market_id]


class FakeRegistry:
    def __init__(self, markets=None):
        self.markets: list[InfoFiMarket] = list(markets or [])
        self.fail = False
        self.calls = 0

    async def fetch_season_markets(self, season_id: int) -> list[InfoFiMarket]:
        self.calls += 1
        if self.fail:
            raise Unavailable("registry down")
        return [m for m in self.markets if m.season_id == season_id]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def make_event():
    """PositionUpdateEvent factory."""

    def _make(player: int, tickets: int, block: int, log_index: int = 0,
              season_id: int = 1, old: int = 0, total: int = 0) -> PositionUpdateEvent:
        return PositionUpdateEvent(
            season_id=season_id,
            player=addr(player),
            old_tickets=old,
            new_tickets=tickets,
            total_tickets_at_event_time=total,
            block_number=block,
            log_index=log_index,
        )

    return _make


@pytest.fixture
def two_steps() -> list[BondStep]:
    """[(1000, 1e18), (2000, 2e18)] schedule."""
    return [BondStep(0, 1_000, WEI), BondStep(1, 2_000, 2 * WEI)]


@pytest.fixture
def curve_state(two_steps) -> CurveState:
    return CurveState(
        supply=0,
        reserves=0,
        current_step=two_steps[0],
        all_steps=tuple(two_steps),
    )


@pytest.fixture
def make_market():
    """WINNER_PREDICTION market factory."""

    def _make(player: int, season_id: int = 1) -> InfoFiMarket:
        return InfoFiMarket(
            market_id=format_market_id(season_id, MarketType.WINNER_PREDICTION, addr(player)),
            season_id=season_id,
            player=addr(player),
        )

    return _make


@pytest.fixture
def make_price():
    """Fresh OraclePrice factory."""

    def _make(market_id: str, hybrid_bps: Optional[int], raffle_bps: Optional[int] = None,
              sentiment_bps: Optional[int] = None, age: float = 0.0,
              active: bool = True) -> OraclePrice:
        return OraclePrice(
            market_id=market_id,
            raffle_probability_bps=raffle_bps,
            market_sentiment_bps=sentiment_bps,
            hybrid_price_bps=hybrid_bps,
            last_update=int(time.time() - age),
            active=active,
        )

    return _make
