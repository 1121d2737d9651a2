"""Position ledger: event fold, holder snapshots, chunked log queries."""

from infofi_arb.ledger.block_range import query_logs_in_chunks
from infofi_arb.ledger.fold import (
    build_holder_positions,
    fold_events,
    win_probability_bps,
)
from infofi_arb.ledger.holders import HolderLedger

__all__ = [
    "query_logs_in_chunks",
    "build_holder_positions",
    "fold_events",
    "win_probability_bps",
    "HolderLedger",
]
