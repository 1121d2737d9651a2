"""Data models for infofi_arb."""

from infofi_arb.models.curve import BondStep, CurveState
from infofi_arb.models.market import InfoFiMarket, MarketType
from infofi_arb.models.opportunity import (
    ArbitrageOpportunity,
    DetectionResult,
    Direction,
)
from infofi_arb.models.oracle import OraclePrice, OracleReading
from infofi_arb.models.position import (
    HolderPosition,
    HolderSnapshot,
    PositionUpdateEvent,
)

__all__ = [
    "BondStep",
    "CurveState",
    "InfoFiMarket",
    "MarketType",
    "ArbitrageOpportunity",
    "DetectionResult",
    "Direction",
    "OraclePrice",
    "OracleReading",
    "HolderPosition",
    "HolderSnapshot",
    "PositionUpdateEvent",
]
