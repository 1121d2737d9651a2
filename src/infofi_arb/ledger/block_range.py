"""Chunked log queries for RPC block-range limits.

Gateways typically cap log queries at 5k-10k blocks. Windows wider than
max_block_range are split; a "block range too large" rejection halves the
chunk size for the remainder, down to MIN_BLOCK_RANGE.
"""

from __future__ import annotations

import logging

from infofi_arb.errors import BlockRangeTooLarge, ValidationError
from infofi_arb.models.position import PositionUpdateEvent
from infofi_arb.sources.base import PositionEventSource

logger = logging.getLogger(__name__)

DEFAULT_MAX_BLOCK_RANGE = 10_000
MIN_BLOCK_RANGE = 1_000


async def query_logs_in_chunks(
    source: PositionEventSource,
    curve_address: str,
    season_id: int,
    from_block: int,
    to_block: int,
    max_block_range: int = DEFAULT_MAX_BLOCK_RANGE,
) -> list[PositionUpdateEvent]:
    """Collect position updates over [from_block, to_block] in chunks.

    Raises:
        BlockRangeTooLarge: chunk would have to shrink below MIN_BLOCK_RANGE.
        Unavailable: any other source failure (propagated as-is).
    """
    if from_block < 0 or to_block < from_block:
        raise ValidationError(f"invalid block window [{from_block}, {to_block}]")
    if max_block_range < 1:
        raise ValidationError(f"max_block_range must be positive: {max_block_range}")

    events: list[PositionUpdateEvent] = []
    current = from_block
    chunk = max_block_range
    while current <= to_block:
        chunk_end = min(current + chunk - 1, to_block)
        try:
            batch = await source.fetch_position_updates(
                curve_address, season_id, current, chunk_end,
            )
        except BlockRangeTooLarge:
            smaller = chunk // 2
            if smaller < MIN_BLOCK_RANGE:
                raise
            logger.warning(
                "Block range limit at %d-%d, retrying with %d-block chunks",
                current, chunk_end, smaller,
            )
            chunk = smaller
            continue
        events.extend(batch)
        current = chunk_end + 1
    return events
