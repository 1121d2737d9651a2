"""Position-update events and derived holder state."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from infofi_arb.errors import ValidationError

ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


def normalize_address(address: str) -> str:
    """0x 주소 검증 + 소문자 정규화."""
    if not isinstance(address, str) or not ADDRESS_RE.match(address):
        raise ValidationError(f"invalid address: {address!r}")
    return address.lower()


@dataclass(frozen=True)
class PositionUpdateEvent:
    """A player's absolute ticket balance after one curve trade.

    Ordered by (block_number, log_index). new_tickets is the full balance,
    not a delta. total_tickets_at_event_time is stale as soon as anyone
    else trades.
    """

    season_id: int
    player: str
    old_tickets: int
    new_tickets: int
    total_tickets_at_event_time: int
    block_number: int
    log_index: int
    probability_bps: Optional[int] = None

    def __post_init__(self):
        object.__setattr__(self, "player", normalize_address(self.player))
        for name in ("old_tickets", "new_tickets", "total_tickets_at_event_time"):
            if getattr(self, name) < 0:
                raise ValidationError(f"{name} must be non-negative")
        if self.block_number < 0 or self.log_index < 0:
            raise ValidationError("block_number/log_index must be non-negative")

    @property
    def order_key(self) -> tuple[int, int]:
        """Causal ordering key."""
        return (self.block_number, self.log_index)

    @classmethod
    def from_api(cls, raw: dict) -> PositionUpdateEvent:
        """Event dict (REST 또는 WebSocket) → PositionUpdateEvent."""
        args = raw.get("args", raw)
        prob = args.get("probabilityBps")
        return cls(
            season_id=int(args["seasonId"]),
            player=str(args["player"]),
            old_tickets=int(args.get("oldTickets", 0)),
            new_tickets=int(args["newTickets"]),
            total_tickets_at_event_time=int(args.get("totalTickets", 0)),
            block_number=int(raw["blockNumber"]),
            log_index=int(raw["logIndex"]),
            probability_bps=int(prob) if prob is not None else None,
        )


@dataclass(frozen=True)
class HolderPosition:
    """Derived holder row, rebuilt from the folded log."""

    player: str
    ticket_count: int
    win_probability_bps: int
    rank: int
    block_number: int
    log_index: int


@dataclass
class HolderSnapshot:
    """Published ledger view for one season + curve."""

    season_id: int
    curve_address: str
    holders: list[HolderPosition] = field(default_factory=list)
    total_tickets: int = 0
    as_of_block: int = 0
    refreshed_at: Optional[datetime] = None
    is_stale: bool = False
    last_error: str = ""

    @property
    def total_holders(self) -> int:
        return len(self.holders)

    def holder(self, player: str) -> Optional[HolderPosition]:
        """플레이어 주소로 조회. 없으면 None."""
        key = player.lower()
        for h in self.holders:
            if h.player == key:
                return h
        return None
