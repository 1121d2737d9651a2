"""Hybrid price oracle reader."""

from infofi_arb.oracle.hybrid import blend_hybrid_price_bps
from infofi_arb.oracle.reader import HybridOracleReader

__all__ = ["blend_hybrid_price_bps", "HybridOracleReader"]
