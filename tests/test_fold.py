"""Tests for the canonical position-log fold."""

from __future__ import annotations

import random

from conftest import addr
from infofi_arb.ledger.fold import build_holder_positions, fold_events, win_probability_bps


class TestFoldEvents:
    def test_last_write_wins(self, make_event):
        events = [make_event(1, 100, block=10), make_event(1, 40, block=12)]
        latest = fold_events({}, events)
        assert latest[addr(1)].new_tickets == 40

    def test_older_event_never_overwrites_newer(self, make_event):
        newer = make_event(1, 40, block=12)
        older = make_event(1, 100, block=10)
        latest = fold_events({}, [newer])
        latest = fold_events(latest, [older])
        assert latest[addr(1)].new_tickets == 40

    def test_log_index_breaks_same_block_ties(self, make_event):
        events = [make_event(1, 5, block=10, log_index=3), make_event(1, 7, block=10, log_index=1)]
        assert fold_events({}, events)[addr(1)].new_tickets == 5

    def test_input_map_not_mutated(self, make_event):
        base = fold_events({}, [make_event(1, 10, block=1)])
        fold_events(base, [make_event(1, 20, block=2)])
        assert base[addr(1)].new_tickets == 10

    def test_season_filter(self, make_event):
        events = [make_event(1, 10, block=1, season_id=1), make_event(2, 10, block=1, season_id=2)]
        assert list(fold_events({}, events, season_id=1)) == [addr(1)]

    def test_idempotent(self, make_event):
        """같은 로그를 두 번 fold 해도 결과 동일."""
        events = [make_event(i % 4, i * 3, block=i) for i in range(1, 20)]
        once = fold_events({}, events)
        twice = fold_events(once, events)
        assert build_holder_positions(once) == build_holder_positions(twice)

    def test_order_independent(self, make_event):
        events = [make_event(i % 5, (i * 7) % 11, block=i, log_index=i % 3) for i in range(1, 40)]
        shuffled = list(events)
        random.Random(7).shuffle(shuffled)
        assert fold_events({}, events) == fold_events({}, shuffled)


class TestHolderPositions:
    def test_three_equal_holders(self, make_event):
        latest = fold_events({}, [make_event(i, 100, block=i) for i in (1, 2, 3)])
        holders, total = build_holder_positions(latest)
        assert total == 300
        assert [h.win_probability_bps for h in holders] == [3333, 3333, 3333]

    def test_single_holder_full_probability(self, make_event):
        holders, total = build_holder_positions(fold_events({}, [make_event(1, 500, block=1, total=500)]))
        assert total == 500
        assert holders[0].win_probability_bps == 10_000

    def test_zero_balance_dropped(self, make_event):
        events = [make_event(1, 50, block=1), make_event(2, 50, block=2), make_event(2, 0, block=3)]
        holders, total = build_holder_positions(fold_events({}, events))
        assert [h.player for h in holders] == [addr(1)]
        assert total == 50
        assert holders[0].win_probability_bps == 10_000

    def test_live_total_not_embedded_total(self, make_event):
        """이벤트에 기록된 total 이 아니라 현재 잔고 합계를 분모로 사용."""
        events = [make_event(1, 100, block=1, total=100), make_event(2, 300, block=2, total=400)]
        holders, _ = build_holder_positions(fold_events({}, events))
        by_player = {h.player: h.win_probability_bps for h in holders}
        assert by_player[addr(1)] == 2500  # 100/400, not 100/100

    def test_rank_by_tickets_then_earliest_block(self, make_event):
        events = [
            make_event(1, 50, block=5),
            make_event(2, 80, block=9),
            make_event(3, 50, block=2),
        ]
        holders, _ = build_holder_positions(fold_events({}, events))
        assert [(h.player, h.rank) for h in holders] == [
            (addr(2), 1), (addr(3), 2), (addr(1), 3),
        ]

    def test_probability_sum_within_rounding(self, make_event):
        rng = random.Random(42)
        for _ in range(50):
            n = rng.randint(1, 6)
            events = [make_event(i, rng.randint(1, 10_000), block=i) for i in range(1, n + 1)]
            holders, _ = build_holder_positions(fold_events({}, events))
            total_bps = sum(h.win_probability_bps for h in holders)
            assert 10_000 - (n - 1) <= total_bps <= 10_000

    def test_empty(self):
        assert build_holder_positions({}) == ([], 0)

    def test_win_probability_zero_denominator(self):
        assert win_probability_bps(10, 0) == 0
