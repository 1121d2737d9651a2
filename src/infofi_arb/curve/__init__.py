"""Bonding curve pricing and curve state tracking."""

from infofi_arb.curve.pricing import (
    BondingCurve,
    TradeSide,
    amount_after_fee,
    amount_with_fee,
    apply_slippage,
    get_current_step,
)
from infofi_arb.curve.state import CurveEntry, CurveStateTracker

__all__ = [
    "BondingCurve",
    "TradeSide",
    "amount_after_fee",
    "amount_with_fee",
    "apply_slippage",
    "get_current_step",
    "CurveEntry",
    "CurveStateTracker",
]
