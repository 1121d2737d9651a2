"""Curve state tracker: last good CurveState per curve address.

Source 장애 시 마지막 정상 스냅샷을 유지하고 stale 로 표시.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Optional

from infofi_arb.curve.pricing import BondingCurve
from infofi_arb.errors import Unavailable
from infofi_arb.models.curve import CurveState
from infofi_arb.models.position import normalize_address
from infofi_arb.sources.base import CurveStateSource

logger = logging.getLogger(__name__)


@dataclass
class CurveEntry:
    """Cached curve snapshot."""

    state: CurveState
    fetched_at: float
    is_stale: bool = False
    last_error: str = ""

    @property
    def curve(self) -> BondingCurve:
        return BondingCurve.from_state(self.state)


class CurveStateTracker:
    """Poll curve state and retain the last good snapshot.

    Args:
        source: CurveStateSource 구현체.
    """

    def __init__(self, source: CurveStateSource):
        self._source = source
        self._entries: dict[str, CurveEntry] = {}

    async def refresh(self, curve_address: str) -> CurveEntry:
        """Fetch fresh state. On failure keep the previous snapshot as stale.

        Raises:
            Unavailable: no snapshot has ever been loaded for this curve.
        """
        key = normalize_address(curve_address)
        try:
            state = await self._source.fetch_curve_state(key)
        except Unavailable as exc:
            entry = self._entries.get(key)
            if entry is None:
                raise
            entry.is_stale = True
            entry.last_error = str(exc)
            logger.warning(
                "Curve state refresh failed for %s, serving stale snapshot: %s",
                key, exc,
            )
            return entry

        entry = CurveEntry(state=state, fetched_at=time.time())
        self._entries[key] = entry
        logger.debug(
            "Curve %s supply=%d steps=%d", key, state.supply, len(state.all_steps),
        )
        return entry

    def get(self, curve_address: str) -> Optional[CurveEntry]:
        """캐시 조회 (I/O 없음). 없으면 None."""
        return self._entries.get(normalize_address(curve_address))

    def clear(self) -> None:
        self._entries.clear()
