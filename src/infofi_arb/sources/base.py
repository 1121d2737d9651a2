"""External collaborator interfaces.

Implementations must raise ``Unavailable`` (or a subclass) for transient
source failures so callers can keep their last good state.
"""

from __future__ import annotations

from typing import Optional, Protocol

from infofi_arb.models.curve import CurveState
from infofi_arb.models.market import InfoFiMarket
from infofi_arb.models.oracle import OraclePrice
from infofi_arb.models.position import PositionUpdateEvent


class PositionEventSource(Protocol):
    """Ordered position-update log per season + curve address."""

    async def latest_block(self) -> int: ...

    async def season_start_block(self, season_id: int) -> Optional[int]: ...

    async def fetch_position_updates(
        self,
        curve_address: str,
        season_id: int,
        from_block: int,
        to_block: int,
    ) -> list[PositionUpdateEvent]: ...


class CurveStateSource(Protocol):
    async def fetch_curve_state(self, curve_address: str) -> CurveState: ...


class OracleSource(Protocol):
    async def fetch_oracle_price(self, market_id: str) -> OraclePrice: ...


class MarketRegistry(Protocol):
    async def fetch_season_markets(self, season_id: int) -> list[InfoFiMarket]: ...
