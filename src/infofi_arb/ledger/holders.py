"""Holder ledger: single writer of holder state.

Poll path (``refresh``) and live-stream path (``ingest``) both route through
``fold_events``. On a transient source failure the last good snapshot is
kept and marked stale; positions are never zeroed out.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Iterable, Optional

from infofi_arb.errors import Unavailable, ValidationError
from infofi_arb.ledger.block_range import DEFAULT_MAX_BLOCK_RANGE, query_logs_in_chunks
from infofi_arb.ledger.fold import build_holder_positions, fold_events
from infofi_arb.models.position import (
    HolderSnapshot,
    PositionUpdateEvent,
    normalize_address,
)
from infofi_arb.sources.base import PositionEventSource

logger = logging.getLogger(__name__)

# Base (2s block time): 500k blocks ≈ 11.5 days
DEFAULT_LOOKBACK_BLOCKS = 500_000


@dataclass
class _LedgerState:
    latest: dict[str, PositionUpdateEvent] = field(default_factory=dict)
    scanned_to: Optional[int] = None
    snapshot: Optional[HolderSnapshot] = None
    is_stale: bool = False
    last_error: str = ""


def validate_season_key(season_id: int, curve_address: str) -> tuple[int, str]:
    if isinstance(season_id, bool) or not isinstance(season_id, int) or season_id < 0:
        raise ValidationError(f"season_id must be a non-negative integer: {season_id!r}")
    return season_id, normalize_address(curve_address)


class HolderLedger:
    """Reconstruct per-player ticket balances and win probabilities.

    Args:
        source: 이벤트 로그 소스.
        lookback_blocks: 시즌 시작 블록을 모를 때 조회할 최대 블록 수.
        max_block_range: 로그 조회 1회당 최대 블록 수.
    """

    def __init__(
        self,
        source: PositionEventSource,
        lookback_blocks: int = DEFAULT_LOOKBACK_BLOCKS,
        max_block_range: int = DEFAULT_MAX_BLOCK_RANGE,
    ):
        self._source = source
        self.lookback_blocks = lookback_blocks
        self.max_block_range = max_block_range
        self._states: dict[tuple[int, str], _LedgerState] = {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def get_holders(self, season_id: int, curve_address: str) -> HolderSnapshot:
        """Refresh from the source and return the current holder snapshot.

        Raises:
            ValidationError: malformed season id or curve address.
            Unavailable: source failed and no snapshot exists yet.
        """
        return await self.refresh(season_id, curve_address)

    async def refresh(self, season_id: int, curve_address: str) -> HolderSnapshot:
        """Poll path: collect new log entries and fold them in."""
        key = validate_season_key(season_id, curve_address)
        state = self._states.setdefault(key, _LedgerState())

        try:
            head = await self._source.latest_block()
            if state.scanned_to is None:
                from_block = await self._window_start(key[0], head)
            else:
                # 마지막 블록부터 다시 (중복은 fold 가 무시)
                from_block = state.scanned_to
            events: list[PositionUpdateEvent] = []
            if from_block <= head:
                events = await query_logs_in_chunks(
                    self._source, key[1], key[0], from_block, head,
                    max_block_range=self.max_block_range,
                )
        except Unavailable as exc:
            return self._mark_stale(key, state, exc)

        state.latest = fold_events(state.latest, events, season_id=key[0])
        state.scanned_to = max(head, state.scanned_to or 0)
        state.is_stale = False
        state.last_error = ""
        snapshot = self._publish(key, state)
        logger.info(
            "Ledger season=%d curve=%s: %d events folded, %d holders, %d tickets",
            key[0], key[1], len(events), snapshot.total_holders, snapshot.total_tickets,
        )
        return snapshot

    def ingest(
        self, curve_address: str, events: Iterable[PositionUpdateEvent],
    ) -> list[HolderSnapshot]:
        """Live-stream path: fold pushed events through the same reducer.

        Returns the snapshots that changed.
        """
        address = normalize_address(curve_address)
        by_season: dict[int, list[PositionUpdateEvent]] = {}
        for event in events:
            by_season.setdefault(event.season_id, []).append(event)

        updated: list[HolderSnapshot] = []
        for season_id, batch in by_season.items():
            key = (season_id, address)
            state = self._states.setdefault(key, _LedgerState())
            # scanned_to 는 폴링 전용. 스트림 이벤트가 건너뛴 구간은 다음 폴링이 채움
            state.latest = fold_events(state.latest, batch, season_id=season_id)
            updated.append(self._publish(key, state))
        return updated

    def snapshot(self, season_id: int, curve_address: str) -> Optional[HolderSnapshot]:
        """캐시된 스냅샷 (I/O 없음). 없으면 None."""
        state = self._states.get(validate_season_key(season_id, curve_address))
        return state.snapshot if state else None

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _window_start(self, season_id: int, head: int) -> int:
        """Lookback window anchored to season start."""
        floor = max(0, head - self.lookback_blocks)
        try:
            start = await self._source.season_start_block(season_id)
        except Unavailable as exc:
            logger.warning("Season %d start block unknown: %s", season_id, exc)
            start = None
        if start is None:
            return floor
        return max(start, floor)

    def _publish(self, key: tuple[int, str], state: _LedgerState) -> HolderSnapshot:
        holders, total = build_holder_positions(state.latest)
        as_of = max((e.block_number for e in state.latest.values()), default=0)
        snapshot = HolderSnapshot(
            season_id=key[0],
            curve_address=key[1],
            holders=holders,
            total_tickets=total,
            as_of_block=max(as_of, state.scanned_to or 0),
            refreshed_at=datetime.now(tz=timezone.utc),
            is_stale=state.is_stale,
            last_error=state.last_error,
        )
        state.snapshot = snapshot
        return snapshot

    def _mark_stale(
        self, key: tuple[int, str], state: _LedgerState, exc: Exception,
    ) -> HolderSnapshot:
        state.is_stale = True
        state.last_error = str(exc)
        if state.snapshot is None:
            logger.warning(
                "Ledger season=%d curve=%s unavailable, no snapshot yet: %s",
                key[0], key[1], exc,
            )
            raise Unavailable(
                f"holders for season {key[0]} at {key[1]} unavailable: {exc}"
            ) from exc
        logger.warning(
            "Ledger season=%d curve=%s refresh failed, keeping stale snapshot: %s",
            key[0], key[1], exc,
        )
        state.snapshot = replace(state.snapshot, is_stale=True, last_error=str(exc))
        return state.snapshot
