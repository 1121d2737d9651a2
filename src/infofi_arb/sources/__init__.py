"""Remote state sources (event log, curve state, oracle, market registry)."""

from infofi_arb.sources.base import (
    CurveStateSource,
    MarketRegistry,
    OracleSource,
    PositionEventSource,
)
from infofi_arb.sources.state_api import StateApiClient

__all__ = [
    "CurveStateSource",
    "MarketRegistry",
    "OracleSource",
    "PositionEventSource",
    "StateApiClient",
]
