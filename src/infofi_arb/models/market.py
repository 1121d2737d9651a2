"""InfoFi market registry entries and canonical market ids.

Canonical id format: ``{season_id}:{MARKET_TYPE}:{subject}``
- season_id: 정수 문자열
- MARKET_TYPE: 허용 목록의 UPPER_SNAKE_CASE
- subject: 소문자 0x 주소 또는 전역 마켓이면 '-'
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from infofi_arb.errors import ValidationError
from infofi_arb.models.position import ADDRESS_RE, normalize_address


class MarketType(Enum):
    """InfoFi 마켓 유형."""

    WINNER_PREDICTION = "WINNER_PREDICTION"
    POSITION_SIZE = "POSITION_SIZE"
    BEHAVIORAL = "BEHAVIORAL"
    TOTAL_TICKETS = "TOTAL_TICKETS"


GLOBAL_SUBJECT = "-"
_SEASON_RE = re.compile(r"^\d+$")


def format_market_id(season_id: int | str, market_type: MarketType | str, subject: str) -> str:
    """Build a canonical market id from its parts."""
    if season_id is None or season_id == "":
        raise ValidationError("season_id required")
    mtype = market_type.value if isinstance(market_type, MarketType) else str(market_type or "").upper()
    subj = GLOBAL_SUBJECT if subject == GLOBAL_SUBJECT else str(subject or "").lower()
    return f"{season_id}:{mtype}:{subj}"


def parse_market_id(market_id: str) -> tuple[str, str, str]:
    """Canonical id → (season_id, market_type, subject). 형식 오류 시 ValidationError."""
    if not market_id or not isinstance(market_id, str):
        raise ValidationError("market_id must be a non-empty string")
    parts = market_id.split(":")
    if len(parts) != 3:
        raise ValidationError(f"invalid market_id format: {market_id!r}")
    season_id, market_type, subject = parts
    subject = GLOBAL_SUBJECT if subject == GLOBAL_SUBJECT else subject.lower()
    return season_id, market_type, subject


def is_valid_market_id(market_id: str) -> bool:
    """Validate a canonical market id string."""
    try:
        season_id, market_type, subject = parse_market_id(market_id)
    except ValidationError:
        return False
    if not _SEASON_RE.match(season_id):
        return False
    if market_type.upper() not in MarketType.__members__:
        return False
    if subject != GLOBAL_SUBJECT and not ADDRESS_RE.match(subject):
        return False
    return True


@dataclass(frozen=True)
class InfoFiMarket:
    """An active prediction market tied to one raffle player."""

    market_id: str
    season_id: int
    player: str
    market_type: MarketType = MarketType.WINNER_PREDICTION
    contract_address: Optional[str] = None

    def __post_init__(self):
        if not self.market_id:
            raise ValidationError("market_id required")
        object.__setattr__(self, "player", normalize_address(self.player))

    @classmethod
    def from_api(cls, raw: dict, season_id: int) -> InfoFiMarket:
        """GET /seasons/{id}/markets 항목 → InfoFiMarket."""
        player = str(raw["player"])
        mtype = MarketType(str(raw.get("marketType", "WINNER_PREDICTION")).upper())
        market_id = raw.get("marketId") or raw.get("id")
        if market_id is None:
            market_id = format_market_id(season_id, mtype, player)
        contract = raw.get("contractAddress") or raw.get("fpmmAddress")
        return cls(
            market_id=str(market_id),
            season_id=int(raw.get("seasonId", season_id)),
            player=player,
            market_type=mtype,
            contract_address=str(contract) if contract else None,
        )
