"""Tests for StateApiClient (aiohttp, mocked with aioresponses)."""

from __future__ import annotations

import re

import aiohttp
import pytest
from aioresponses import aioresponses

from conftest import CURVE, WEI, addr
from infofi_arb.errors import BlockRangeTooLarge, Unavailable
from infofi_arb.sources.state_api import StateApiClient

API = "http://state.test"
UPDATES_PATTERN = re.compile(r"^http://state\.test/curves/0x[0-9a-f]+/position-updates\b")


def _client() -> StateApiClient:
    return StateApiClient(API, backoff_base=0, rate_limit_backoff=0)


class TestContextManager:
    async def test_async_context_manager(self):
        async with _client() as client:
            assert client._session is not None
        assert client._session is None or client._session.closed

    async def test_manual_close(self):
        client = _client()
        await client.open()
        await client.close()
        assert client._session is None


class TestBlocksAndSeasons:
    async def test_latest_block(self):
        with aioresponses() as m:
            m.get(f"{API}/blocks/latest", payload={"number": "12345"})
            async with _client() as client:
                assert await client.latest_block() == 12345

    async def test_season_start_block(self):
        with aioresponses() as m:
            m.get(f"{API}/seasons/3", payload={"startBlock": 777})
            async with _client() as client:
                assert await client.season_start_block(3) == 777

    async def test_season_not_found_returns_none(self):
        with aioresponses() as m:
            m.get(f"{API}/seasons/3", status=404)
            async with _client() as client:
                assert await client.season_start_block(3) is None


class TestPositionUpdates:
    async def test_parses_events(self):
        payload = [{
            "blockNumber": 10,
            "logIndex": 2,
            "args": {
                "seasonId": "1",
                "player": addr(1),
                "oldTickets": "0",
                "newTickets": "150",
                "totalTickets": "150",
                "probabilityBps": "10000",
            },
        }]
        with aioresponses() as m:
            m.get(UPDATES_PATTERN, payload=payload)
            async with _client() as client:
                events = await client.fetch_position_updates(CURVE, 1, 0, 100)
        assert len(events) == 1
        assert events[0].new_tickets == 150
        assert events[0].order_key == (10, 2)
        assert events[0].probability_bps == 10_000

    async def test_413_is_block_range_error(self):
        with aioresponses() as m:
            m.get(UPDATES_PATTERN, status=413)
            async with _client() as client:
                with pytest.raises(BlockRangeTooLarge):
                    await client.fetch_position_updates(CURVE, 1, 0, 100_000)

    async def test_400_with_range_hint(self):
        with aioresponses() as m:
            m.get(UPDATES_PATTERN, status=400, body="query returned more than 10000 results")
            async with _client() as client:
                with pytest.raises(BlockRangeTooLarge):
                    await client.fetch_position_updates(CURVE, 1, 0, 100_000)

    async def test_malformed_payload_unavailable(self):
        with aioresponses() as m:
            m.get(UPDATES_PATTERN, payload=[{"blockNumber": 1}])
            async with _client() as client:
                with pytest.raises(Unavailable):
                    await client.fetch_position_updates(CURVE, 1, 0, 10)


class TestCurveOracleMarkets:
    async def test_curve_state(self):
        payload = {
            "supply": "1500",
            "reserves": str(2_000 * WEI),
            "steps": [
                {"rangeTo": "1000", "price": str(WEI)},
                {"rangeTo": "2000", "price": str(2 * WEI)},
            ],
        }
        with aioresponses() as m:
            m.get(f"{API}/curves/{CURVE}/state", payload=payload)
            async with _client() as client:
                state = await client.fetch_curve_state(CURVE)
        assert state.supply == 1_500
        assert state.all_steps[1].price_unit == 2 * WEI

    async def test_oracle_price(self):
        with aioresponses() as m:
            m.get(f"{API}/oracle/prices/m1", payload={"hybridPriceBps": 4200, "lastUpdate": 1})
            async with _client() as client:
                price = await client.fetch_oracle_price("m1")
        assert price.hybrid_price_bps == 4200

    async def test_oracle_404_unavailable(self):
        with aioresponses() as m:
            m.get(f"{API}/oracle/prices/m1", status=404)
            async with _client() as client:
                with pytest.raises(Unavailable):
                    await client.fetch_oracle_price("m1")

    async def test_markets_skip_malformed(self):
        payload = [
            {"player": addr(1), "marketType": "WINNER_PREDICTION"},
            {"player": "bogus"},
            {"marketType": "WINNER_PREDICTION"},
        ]
        with aioresponses() as m:
            m.get(f"{API}/seasons/1/markets", payload=payload)
            async with _client() as client:
                markets = await client.fetch_season_markets(1)
        assert len(markets) == 1
        assert markets[0].market_id == f"1:WINNER_PREDICTION:{addr(1)}"


class TestRetry:
    async def test_server_error_exhausts_retries(self):
        with aioresponses() as m:
            for _ in range(3):
                m.get(f"{API}/blocks/latest", status=500)
            async with _client() as client:
                with pytest.raises(Unavailable):
                    await client.latest_block()

    async def test_recovers_after_transient_error(self):
        with aioresponses() as m:
            m.get(f"{API}/blocks/latest", status=502)
            m.get(f"{API}/blocks/latest", payload={"number": 9})
            async with _client() as client:
                assert await client.latest_block() == 9

    async def test_connection_error(self):
        with aioresponses() as m:
            for _ in range(3):
                m.get(f"{API}/blocks/latest", exception=aiohttp.ClientConnectionError("refused"))
            async with _client() as client:
                with pytest.raises(Unavailable):
                    await client.latest_block()

    async def test_timeout(self):
        with aioresponses() as m:
            for _ in range(3):
                m.get(f"{API}/blocks/latest", exception=TimeoutError())
            async with _client() as client:
                with pytest.raises(Unavailable):
                    await client.latest_block()

    async def test_rate_limit_then_success(self):
        with aioresponses() as m:
            m.get(f"{API}/blocks/latest", status=429)
            m.get(f"{API}/blocks/latest", payload={"number": 5})
            async with _client() as client:
                assert await client.latest_block() == 5

    async def test_rate_limit_exhausted(self):
        with aioresponses() as m:
            for _ in range(3):
                m.get(f"{API}/blocks/latest", status=429)
            async with _client() as client:
                with pytest.raises(Unavailable, match="rate limited"):
                    await client.latest_block()
