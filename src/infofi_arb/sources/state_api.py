"""State API client with retry and error handling.

Implements every source Protocol against a JSON gateway that indexes the
raffle curve, position tracker, oracle and market factory contracts.
Big integers travel as decimal strings.

Endpoints:
    GET /blocks/latest
    GET /seasons/{season_id}
    GET /seasons/{season_id}/markets
    GET /curves/{address}/state
    GET /curves/{address}/position-updates?seasonId=&fromBlock=&toBlock=
    GET /oracle/prices/{market_id}
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

import aiohttp

from infofi_arb.errors import BlockRangeTooLarge, Unavailable
from infofi_arb.models.curve import CurveState
from infofi_arb.models.market import InfoFiMarket
from infofi_arb.models.oracle import OraclePrice
from infofi_arb.models.position import PositionUpdateEvent

logger = logging.getLogger(__name__)

DEFAULT_STATE_API_URL = "http://localhost:8787"
DEFAULT_TIMEOUT = 15  # seconds
DEFAULT_MAX_RETRIES = 3

_RANGE_ERROR_HINTS = ("block range", "exceed", "returned more than")


class NotFound(Unavailable):
    """404: 아직 기록된 데이터 없음."""


class StateApiClient:
    """Async client for the raffle / InfoFi state API.

    Usage:
        async with StateApiClient(base_url) as client:
            state = await client.fetch_curve_state("0x...")
    """

    def __init__(
        self,
        base_url: str = DEFAULT_STATE_API_URL,
        timeout: int = DEFAULT_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
        backoff_base: float = 0.1,
        rate_limit_backoff: float = 1.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.rate_limit_backoff = rate_limit_backoff
        self._session: Optional[aiohttp.ClientSession] = None

    async def open(self) -> None:
        """Open aiohttp session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)

    async def close(self) -> None:
        """Close aiohttp session."""
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> StateApiClient:
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # PositionEventSource
    # ------------------------------------------------------------------

    async def latest_block(self) -> int:
        """GET /blocks/latest → 현재 블록 번호."""
        data = await self._get_json(f"{self.base_url}/blocks/latest", {})
        return self._parse(lambda: int(data["number"]), "latest block")

    async def season_start_block(self, season_id: int) -> Optional[int]:
        """GET /seasons/{id} → startBlock. 시즌 정보가 없으면 None."""
        try:
            data = await self._get_json(f"{self.base_url}/seasons/{season_id}", {})
        except NotFound:
            return None
        if not isinstance(data, dict) or data.get("startBlock") is None:
            return None
        return self._parse(lambda: int(data["startBlock"]), "season start block")

    async def fetch_position_updates(
        self,
        curve_address: str,
        season_id: int,
        from_block: int,
        to_block: int,
    ) -> list[PositionUpdateEvent]:
        """GET position-update logs for a block window.

        Raises:
            BlockRangeTooLarge: gateway rejected the window size.
            Unavailable: source unreachable after retries.
        """
        url = f"{self.base_url}/curves/{curve_address}/position-updates"
        params = {
            "seasonId": str(season_id),
            "fromBlock": str(from_block),
            "toBlock": str(to_block),
        }
        data = await self._get_json(url, params)
        if not isinstance(data, list):
            raise Unavailable(f"position-updates returned non-list: {type(data).__name__}")
        return self._parse(
            lambda: [PositionUpdateEvent.from_api(raw) for raw in data],
            "position updates",
        )

    # ------------------------------------------------------------------
    # CurveStateSource / OracleSource / MarketRegistry
    # ------------------------------------------------------------------

    async def fetch_curve_state(self, curve_address: str) -> CurveState:
        data = await self._get_json(f"{self.base_url}/curves/{curve_address}/state", {})
        return self._parse(lambda: CurveState.from_api(data), "curve state")

    async def fetch_oracle_price(self, market_id: str) -> OraclePrice:
        """GET /oracle/prices/{id}. 404 → Unavailable (아직 가격 없음)."""
        try:
            data = await self._get_json(f"{self.base_url}/oracle/prices/{market_id}", {})
        except NotFound as exc:
            raise Unavailable(f"no oracle price recorded for {market_id}") from exc
        return self._parse(lambda: OraclePrice.from_api(market_id, data), "oracle price")

    async def fetch_season_markets(self, season_id: int) -> list[InfoFiMarket]:
        data = await self._get_json(f"{self.base_url}/seasons/{season_id}/markets", {})
        if not isinstance(data, list):
            raise Unavailable("markets endpoint returned non-list")
        markets: list[InfoFiMarket] = []
        for raw in data:
            try:
                markets.append(InfoFiMarket.from_api(raw, season_id))
            except (KeyError, ValueError, TypeError) as exc:
                logger.warning("Skipping malformed market entry %r: %s", raw, exc)
        return markets

    # ------------------------------------------------------------------
    # HTTP helpers with retry
    # ------------------------------------------------------------------

    @staticmethod
    def _parse(fn, what: str):
        try:
            return fn()
        except (KeyError, ValueError, TypeError) as exc:
            raise Unavailable(f"malformed {what} payload: {exc}") from exc

    async def _get_json(self, url: str, params: dict) -> Any:
        """GET → JSON. 429시 지수 백오프. 재시도 소진 시 Unavailable."""
        await self.open()
        last_error = "no attempt made"
        for attempt in range(1, self.max_retries + 1):
            try:
                async with self._session.get(url, params=params) as resp:
                    if resp.status == 200:
                        return await resp.json()
                    if resp.status == 404:
                        raise NotFound(f"{url} not found")
                    if resp.status == 413:
                        raise BlockRangeTooLarge(f"{url} block range too large")
                    if resp.status == 400:
                        body = (await resp.text()).lower()
                        if any(h in body for h in _RANGE_ERROR_HINTS):
                            raise BlockRangeTooLarge(f"{url}: {body[:200]}")
                    if resp.status == 429:
                        wait = self.rate_limit_backoff * (2 ** (attempt - 1))
                        logger.warning(
                            "API 429 rate limit %s (attempt %d/%d), backing off %.1fs",
                            url, attempt, self.max_retries, wait,
                        )
                        last_error = "rate limited"
                        await asyncio.sleep(wait)
                        continue
                    last_error = f"HTTP {resp.status}"
                    logger.warning(
                        "State API %s returned %d (attempt %d/%d)",
                        url, resp.status, attempt, self.max_retries,
                    )
            except Unavailable:
                raise
            except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
                last_error = str(exc) or type(exc).__name__
                logger.warning(
                    "State API %s error (attempt %d/%d): %s",
                    url, attempt, self.max_retries, exc,
                )

            if attempt < self.max_retries:
                await asyncio.sleep(self.backoff_base * (2 ** (attempt - 1)))

        raise Unavailable(f"{url} unavailable after {self.max_retries} attempts: {last_error}")
