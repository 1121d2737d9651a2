"""Tests for HolderLedger (poll + stream paths) and chunked log queries."""

from __future__ import annotations

import pytest

from conftest import CURVE, FakeEventSource, addr
from infofi_arb.errors import BlockRangeTooLarge, Unavailable, ValidationError
from infofi_arb.ledger.block_range import MIN_BLOCK_RANGE, query_logs_in_chunks
from infofi_arb.ledger.holders import HolderLedger


class TestGetHolders:
    async def test_three_holders(self, make_event):
        source = FakeEventSource([make_event(i, 100, block=10 + i) for i in (1, 2, 3)])
        ledger = HolderLedger(source)
        snap = await ledger.get_holders(1, CURVE)
        assert snap.total_holders == 3
        assert snap.total_tickets == 300
        assert all(h.win_probability_bps == 3333 for h in snap.holders)
        assert snap.is_stale is False

    async def test_holder_lookup(self, make_event):
        ledger = HolderLedger(FakeEventSource([make_event(1, 500, block=5)]))
        snap = await ledger.get_holders(1, CURVE)
        assert snap.holder(addr(1).upper().replace("0X", "0x")).win_probability_bps == 10_000
        assert snap.holder(addr(9)) is None

    async def test_invalid_season_raises(self):
        ledger = HolderLedger(FakeEventSource())
        with pytest.raises(ValidationError):
            await ledger.get_holders(-1, CURVE)

    async def test_invalid_address_raises(self):
        ledger = HolderLedger(FakeEventSource())
        with pytest.raises(ValidationError):
            await ledger.get_holders(1, "0xnothex")

    async def test_only_requested_season_folds(self, make_event):
        source = FakeEventSource([
            make_event(1, 100, block=1, season_id=1),
            make_event(2, 100, block=2, season_id=2),
        ])
        snap = await HolderLedger(source).get_holders(1, CURVE)
        assert [h.player for h in snap.holders] == [addr(1)]


class TestRefreshWindow:
    async def test_window_anchored_to_season_start(self, make_event):
        source = FakeEventSource(head=1_000, start_block=400)
        await HolderLedger(source, lookback_blocks=900).refresh(1, CURVE)
        assert source.calls[0][0] == 400

    async def test_lookback_bounds_window(self):
        source = FakeEventSource(head=1_000, start_block=10)
        await HolderLedger(source, lookback_blocks=300).refresh(1, CURVE)
        assert source.calls[0][0] == 700

    async def test_unknown_start_floors_at_zero(self):
        source = FakeEventSource(head=100)
        await HolderLedger(source, lookback_blocks=500).refresh(1, CURVE)
        assert source.calls[0] == (0, 100)

    async def test_incremental_rescans_from_last_block(self, make_event):
        source = FakeEventSource([make_event(1, 10, block=100)], head=100)
        ledger = HolderLedger(source)
        await ledger.refresh(1, CURVE)
        source.head = 150
        source.events.append(make_event(2, 30, block=150))
        snap = await ledger.refresh(1, CURVE)
        assert source.calls[-1] == (100, 150)
        # 중복 재스캔은 fold 가 무시
        assert snap.total_tickets == 40
        assert snap.as_of_block == 150


class TestStaleness:
    async def test_failure_keeps_last_snapshot(self, make_event):
        source = FakeEventSource([make_event(1, 100, block=1), make_event(2, 100, block=2)])
        ledger = HolderLedger(source)
        await ledger.get_holders(1, CURVE)

        source.fail = True
        snap = await ledger.get_holders(1, CURVE)
        assert snap.is_stale is True
        assert snap.total_holders == 2  # positions never zeroed
        assert "rpc down" in snap.last_error

    async def test_recovers_after_failure(self, make_event):
        source = FakeEventSource([make_event(1, 100, block=1)])
        ledger = HolderLedger(source)
        await ledger.get_holders(1, CURVE)
        source.fail = True
        await ledger.get_holders(1, CURVE)
        source.fail = False
        snap = await ledger.get_holders(1, CURVE)
        assert snap.is_stale is False

    async def test_failure_without_snapshot_raises(self):
        source = FakeEventSource()
        source.fail = True
        with pytest.raises(Unavailable):
            await HolderLedger(source).get_holders(1, CURVE)

    async def test_snapshot_without_io(self, make_event):
        source = FakeEventSource([make_event(1, 5, block=1)])
        ledger = HolderLedger(source)
        assert ledger.snapshot(1, CURVE) is None
        await ledger.refresh(1, CURVE)
        calls = len(source.calls)
        assert ledger.snapshot(1, CURVE).total_tickets == 5
        assert len(source.calls) == calls


class TestIngest:
    async def test_stream_and_poll_agree(self, make_event):
        """스트림 경로와 폴링 경로가 같은 결과."""
        events = [make_event(1, 100, block=1), make_event(2, 50, block=2), make_event(1, 20, block=3)]
        polled = await HolderLedger(FakeEventSource(events)).refresh(1, CURVE)

        streamed_ledger = HolderLedger(FakeEventSource())
        streamed = streamed_ledger.ingest(CURVE, events)[0]
        assert streamed.holders == polled.holders

    async def test_out_of_order_stream_event_ignored(self, make_event):
        ledger = HolderLedger(FakeEventSource())
        ledger.ingest(CURVE, [make_event(1, 40, block=20)])
        snap = ledger.ingest(CURVE, [make_event(1, 100, block=10)])[0]
        assert snap.holders[0].ticket_count == 40

    async def test_ingest_then_poll(self, make_event):
        source = FakeEventSource([make_event(1, 10, block=5)], head=50)
        ledger = HolderLedger(source)
        ledger.ingest(CURVE, [make_event(2, 30, block=60)])
        snap = await ledger.refresh(1, CURVE)
        assert snap.total_tickets == 40


class TestChunkedQuery:
    async def test_splits_window(self):
        source = FakeEventSource()
        await query_logs_in_chunks(source, CURVE, 1, 0, 25_000, max_block_range=10_000)
        assert source.calls == [(0, 9_999), (10_000, 19_999), (20_000, 25_000)]

    async def test_halves_on_range_error(self):
        source = FakeEventSource()
        source.max_range = 4_000
        await query_logs_in_chunks(source, CURVE, 1, 0, 9_999, max_block_range=10_000)
        # 10000 → 5000 → 2500
        assert source.calls[0] == (0, 2_499)
        assert source.calls[-1][1] == 9_999

    async def test_gives_up_below_floor(self):
        source = FakeEventSource()
        source.max_range = MIN_BLOCK_RANGE - 1
        with pytest.raises(BlockRangeTooLarge):
            await query_logs_in_chunks(source, CURVE, 1, 0, 5_000, max_block_range=2_000)

    async def test_collects_events(self, make_event):
        source = FakeEventSource([make_event(1, 1, block=5), make_event(2, 1, block=15_000)])
        events = await query_logs_in_chunks(source, CURVE, 1, 0, 20_000)
        assert len(events) == 2

    async def test_invalid_window(self):
        with pytest.raises(ValidationError):
            await query_logs_in_chunks(FakeEventSource(), CURVE, 1, 10, 5)
