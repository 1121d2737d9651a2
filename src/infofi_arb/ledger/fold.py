"""Canonical position-log reducer.

Every ingestion path (poll or live stream) goes through ``fold_events`` so
polled and streamed state cannot diverge.

1. per player keep the event with the highest (block_number, log_index)
   (last write wins, because each event carries an absolute balance)
2. drop zero-balance players
3. denominator = live sum of current balances (never an event's embedded
   total, which is stale once anyone else trades)
4. win_probability_bps = ticket_count × 10000 // denominator
5. rank by ticket count desc, earliest block first on ties
"""

from __future__ import annotations

from typing import Iterable, Mapping, Optional

from infofi_arb.models.position import HolderPosition, PositionUpdateEvent

BPS = 10_000


def fold_events(
    latest: Mapping[str, PositionUpdateEvent],
    events: Iterable[PositionUpdateEvent],
    season_id: Optional[int] = None,
) -> dict[str, PositionUpdateEvent]:
    """Fold events into a player → latest-event map. 입력 map 은 변경하지 않음.

    An event older than (or equal to) the entry already held for its player
    never replaces it, so the fold is idempotent and order-independent.
    Events for other seasons are ignored when season_id is given.
    """
    folded = dict(latest)
    for event in events:
        if season_id is not None and event.season_id != season_id:
            continue
        current = folded.get(event.player)
        if current is None or event.order_key > current.order_key:
            folded[event.player] = event
    return folded


def win_probability_bps(ticket_count: int, total_tickets: int) -> int:
    """floor(ticket_count × 10000 / total). total 이 0 이면 0."""
    if total_tickets <= 0:
        return 0
    return (ticket_count * BPS) // total_tickets


def build_holder_positions(
    latest: Mapping[str, PositionUpdateEvent],
) -> tuple[list[HolderPosition], int]:
    """Folded map → ranked holders + live total tickets."""
    active = [e for e in latest.values() if e.new_tickets > 0]
    active.sort(
        key=lambda e: (-e.new_tickets, e.block_number, e.log_index, e.player)
    )
    total = sum(e.new_tickets for e in active)
    holders = [
        HolderPosition(
            player=e.player,
            ticket_count=e.new_tickets,
            win_probability_bps=win_probability_bps(e.new_tickets, total),
            rank=rank,
            block_number=e.block_number,
            log_index=e.log_index,
        )
        for rank, e in enumerate(active, start=1)
    ]
    return holders, total
