"""Tests for HybridOracleReader and the hybrid blend."""

from __future__ import annotations

import pytest

from conftest import FakeOracleSource
from infofi_arb.errors import Stale, Unavailable, ValidationError
from infofi_arb.models.oracle import OraclePrice
from infofi_arb.oracle.hybrid import blend_hybrid_price_bps
from infofi_arb.oracle.reader import HybridOracleReader


class TestBlend:
    def test_default_weights(self):
        # 0.7 × 5000 + 0.3 × 2000 = 4100
        assert blend_hybrid_price_bps(5000, 2000) == 4100

    def test_rounds_half_up(self):
        assert blend_hybrid_price_bps(1, 2, 1, 1) == 2

    def test_zero_weights_rejected(self):
        with pytest.raises(ValidationError):
            blend_hybrid_price_bps(100, 100, 0, 0)

    def test_negative_weight_rejected(self):
        with pytest.raises(ValidationError):
            blend_hybrid_price_bps(100, 100, -1, 5)


class TestOraclePriceModel:
    def test_from_api_camel_case(self):
        price = OraclePrice.from_api("m1", {
            "raffleProbabilityBps": 4000, "marketSentimentBps": "3000",
            "hybridPriceBps": 3700, "lastUpdate": 1_700_000_000, "active": True,
        })
        assert price.hybrid_price_bps == 3700
        assert price.market_sentiment_bps == 3000
        assert price.last_update == 1_700_000_000

    def test_from_api_inactive(self):
        assert OraclePrice.from_api("m1", {"hybridBps": 10, "active": False}).active is False

    def test_bps_out_of_range(self):
        with pytest.raises(ValidationError):
            OraclePrice("m1", None, None, 10_001)


class TestGetHybridPrice:
    async def test_fresh_price_is_live(self, make_price):
        source = FakeOracleSource({"m1": make_price("m1", 2500)})
        reading = await HybridOracleReader(source).get_hybrid_price("m1")
        assert reading.price.hybrid_price_bps == 2500
        assert reading.is_live is True

    async def test_old_price_flagged_not_live(self, make_price):
        source = FakeOracleSource({"m1": make_price("m1", 2500, age=120)})
        reading = await HybridOracleReader(source, stale_after_secs=60).get_hybrid_price("m1")
        assert reading.is_live is False
        assert reading.age_seconds >= 120

    async def test_stale_never_fatal_but_ensure_live_raises(self, make_price):
        source = FakeOracleSource({"m1": make_price("m1", 2500, age=120)})
        reading = await HybridOracleReader(source).get_hybrid_price("m1")
        with pytest.raises(Stale):
            reading.ensure_live(60)

    async def test_never_recorded_raises(self):
        with pytest.raises(Unavailable):
            await HybridOracleReader(FakeOracleSource()).get_hybrid_price("missing")

    async def test_source_failure_serves_cache_not_live(self, make_price):
        source = FakeOracleSource({"m1": make_price("m1", 2500)})
        reader = HybridOracleReader(source)
        await reader.get_hybrid_price("m1")
        source.failing.add("m1")
        reading = await reader.get_hybrid_price("m1")
        assert reading.price.hybrid_price_bps == 2500
        assert reading.is_live is False

    async def test_blends_when_hybrid_missing(self, make_price):
        source = FakeOracleSource({"m1": make_price("m1", None, raffle_bps=5000, sentiment_bps=2000)})
        reading = await HybridOracleReader(source).get_hybrid_price("m1")
        assert reading.price.hybrid_price_bps == 4100

    async def test_inactive_without_hybrid_raises(self, make_price):
        source = FakeOracleSource({"m1": make_price("m1", None, raffle_bps=5000, active=False)})
        with pytest.raises(Unavailable):
            await HybridOracleReader(source).get_hybrid_price("m1")

    async def test_inactive_price_not_live(self, make_price):
        source = FakeOracleSource({"m1": make_price("m1", 3000, active=False)})
        reading = await HybridOracleReader(source).get_hybrid_price("m1")
        assert reading.is_live is False

    async def test_missing_timestamp_uses_fetch_time(self):
        source = FakeOracleSource({"m1": OraclePrice("m1", None, None, 1500)})
        reading = await HybridOracleReader(source).get_hybrid_price("m1")
        assert reading.is_live is True


class TestCacheAndIngest:
    def test_read_without_price_raises(self):
        with pytest.raises(Unavailable):
            HybridOracleReader(FakeOracleSource()).read_hybrid_price("m1")

    def test_ingest_then_read(self, make_price):
        reader = HybridOracleReader(FakeOracleSource())
        assert reader.ingest(make_price("m1", 1200)) is True
        assert reader.read_hybrid_price("m1").price.hybrid_price_bps == 1200
        assert reader.is_stale("m1") is False

    def test_older_update_ignored(self, make_price):
        reader = HybridOracleReader(FakeOracleSource())
        reader.ingest(make_price("m1", 1200, age=0))
        assert reader.ingest(make_price("m1", 9000, age=30)) is False
        assert reader.read_hybrid_price("m1").price.hybrid_price_bps == 1200

    def test_is_stale_unknown_market(self):
        assert HybridOracleReader(FakeOracleSource()).is_stale("nope") is True

    def test_stats(self, make_price):
        reader = HybridOracleReader(FakeOracleSource())
        reader.ingest(make_price("m1", 1200))
        reader.read_hybrid_price("m1")
        with pytest.raises(Unavailable):
            reader.read_hybrid_price("m2")
        assert reader.stats["hits"] == 1
        assert reader.stats["misses"] == 1


class TestPoll:
    async def test_poll_isolates_failures(self, make_price):
        source = FakeOracleSource({
            "a": make_price("a", 100),
            "b": make_price("b", 200),
            "c": make_price("c", 300),
        })
        source.failing.add("b")
        reader = HybridOracleReader(source)
        failures = await reader.poll(["a", "b", "c"])
        assert set(failures) == {"b"}
        assert reader.read_hybrid_price("a").price.hybrid_price_bps == 100
        assert reader.read_hybrid_price("c").price.hybrid_price_bps == 300

    async def test_poll_empty(self):
        assert await HybridOracleReader(FakeOracleSource()).poll([]) == {}
