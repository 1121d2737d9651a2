"""WebSocket live feed for position updates and oracle price updates.

State service 이벤트 스트림에 연결하여 실시간 반영.
- PositionUpdate → HolderLedger.ingest (폴링과 같은 reducer)
- PriceUpdated → HybridOracleReader.ingest

Gaps while disconnected are filled by the next poll.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Iterable, Optional

import websockets

from infofi_arb.errors import InfoFiError
from infofi_arb.ledger.holders import HolderLedger
from infofi_arb.models.oracle import OraclePrice
from infofi_arb.models.position import PositionUpdateEvent, normalize_address
from infofi_arb.oracle.reader import HybridOracleReader

logger = logging.getLogger(__name__)

DEFAULT_WS_URL = "ws://localhost:8787/stream"
MAX_RECONNECT = 5


class LiveEventStream:
    """Async WebSocket client routing pushed events into the ledger and oracle.

    Args:
        ledger: 포지션 이벤트를 받을 HolderLedger.
        oracle: 가격 업데이트를 받을 HybridOracleReader.
        url: WebSocket 엔드포인트 URL.
    """

    def __init__(
        self,
        ledger: HolderLedger,
        oracle: HybridOracleReader,
        url: str = DEFAULT_WS_URL,
        max_reconnect: int = MAX_RECONNECT,
    ):
        self._ledger = ledger
        self._oracle = oracle
        self._url = url
        self._ws = None
        self._connected = False
        self._max_reconnect = max_reconnect
        self._curves: list[str] = []
        self._markets: list[str] = []
        self._messages_received: int = 0
        self._events_routed: int = 0

    async def connect(self) -> bool:
        """WebSocket 연결. 실패 시 False."""
        try:
            self._ws = await websockets.connect(self._url)
        except (OSError, asyncio.TimeoutError, websockets.WebSocketException) as exc:
            logger.error("WebSocket connect failed: %s", exc)
            self._connected = False
            return False
        self._connected = True
        logger.info("Connected to %s", self._url)
        return True

    async def subscribe(
        self, curves: Iterable[str] = (), markets: Iterable[str] = (),
    ) -> None:
        """커브 주소 / 마켓 id 구독. 재연결 시 자동 재구독."""
        self._curves = sorted(set(self._curves) | {normalize_address(c) for c in curves})
        self._markets = sorted(set(self._markets) | set(markets))
        if not self._connected or self._ws is None:
            logger.debug("Subscription queued until connected")
            return
        await self._send_subscription()

    async def _send_subscription(self) -> None:
        msg = json.dumps({
            "type": "subscribe",
            "curves": self._curves,
            "markets": self._markets,
        })
        await self._ws.send(msg)
        logger.info(
            "Subscribed to %d curves, %d markets", len(self._curves), len(self._markets),
        )

    async def listen(self) -> None:
        """메인 수신 루프.

        CancelledError 는 전파, 연결 종료 시 루프 종료.
        """
        while self._connected and self._ws:
            try:
                raw = await self._ws.recv()
            except asyncio.CancelledError:
                raise
            except websockets.ConnectionClosed as exc:
                logger.warning("Stream closed: %s", exc)
                self._connected = False
                break
            self._process_message(raw)

    async def run(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """Connect, listen, reconnect with exponential backoff.

        Gives up after max_reconnect consecutive failed connects.
        """
        failures = 0
        while stop_event is None or not stop_event.is_set():
            if await self.connect():
                failures = 0
                if self._curves or self._markets:
                    await self._send_subscription()
                await self.listen()
                await self.close()
            else:
                failures += 1
                if failures >= self._max_reconnect:
                    logger.error(
                        "Giving up on %s after %d attempts", self._url, failures,
                    )
                    return
            delay = 2 ** failures
            logger.info("Reconnecting in %ds", delay)
            if stop_event is None:
                await asyncio.sleep(delay)
            else:
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=delay)
                except asyncio.TimeoutError:
                    pass

    async def close(self) -> None:
        """WebSocket 닫기."""
        self._connected = False
        if self._ws is not None:
            try:
                await self._ws.close()
            except (OSError, websockets.WebSocketException) as exc:
                logger.debug("Close error ignored: %s", exc)
            self._ws = None

    # ------------------------------------------------------------------
    # Message routing
    # ------------------------------------------------------------------

    def _process_message(self, raw) -> None:
        """수신 메시지 파싱 → ledger / oracle 라우팅."""
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            logger.debug("Malformed message: %s", str(raw)[:100])
            return

        self._messages_received += 1
        messages = data if isinstance(data, list) else [data]

        positions: dict[str, list[PositionUpdateEvent]] = {}
        for msg in messages:
            if not isinstance(msg, dict):
                continue
            event_type = msg.get("type") or msg.get("event")
            try:
                if event_type == "PositionUpdate":
                    curve = normalize_address(str(msg.get("curveAddress", "")))
                    positions.setdefault(curve, []).append(PositionUpdateEvent.from_api(msg))
                elif event_type == "PriceUpdated":
                    market_id = msg.get("marketId") or msg.get("market_id")
                    if not market_id:
                        continue
                    if self._oracle.ingest(OraclePrice.from_api(str(market_id), msg)):
                        self._events_routed += 1
            except (KeyError, ValueError, TypeError, InfoFiError) as exc:
                logger.warning("Dropping malformed %s message: %s", event_type, exc)

        for curve, events in positions.items():
            self._ledger.ingest(curve, events)
            self._events_routed += len(events)

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def messages_received(self) -> int:
        """Total messages received since start."""
        return self._messages_received

    @property
    def events_routed(self) -> int:
        return self._events_routed
