"""Persisted approve → buy/sell trade flow state machine.

State Machine:
    PENDING → APPROVAL_SUBMITTED → APPROVED → TRADE_SUBMITTED → CONFIRMED
            → APPROVED (allowance already covers the cap, or a sell)
    any non-terminal → FAILED (terminal)

Every transition is persisted before the next step starts. A recorded tx
hash is never resubmitted, only re-awaited, so ``run`` can be called again
on a flow loaded after a crash.
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional, Protocol

from infofi_arb.curve.pricing import BondingCurve, TradeSide, apply_slippage
from infofi_arb.errors import CapacityExceeded, ValidationError

logger = logging.getLogger(__name__)


class TradeFlowState(Enum):
    """Trade flow states."""

    PENDING = "pending"
    APPROVAL_SUBMITTED = "approval_submitted"
    APPROVED = "approved"
    TRADE_SUBMITTED = "trade_submitted"
    CONFIRMED = "confirmed"    # terminal
    FAILED = "failed"          # terminal


TERMINAL_STATES = frozenset({TradeFlowState.CONFIRMED, TradeFlowState.FAILED})


@dataclass
class TradeFlow:
    """One buy or sell against a curve, with its slippage bound.

    limit is the maximum spend for a buy, minimum receive for a sell.
    """

    curve_address: str
    side: TradeSide
    amount: int
    estimate: int
    limit: int
    slippage_bps: int = 0
    flow_id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])
    state: TradeFlowState = TradeFlowState.PENDING
    approval_tx: Optional[str] = None
    trade_tx: Optional[str] = None
    error: str = ""
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def to_dict(self) -> dict:
        """Serialize to dict (JSON-safe; big ints as strings)."""
        return {
            "flow_id": self.flow_id,
            "curve_address": self.curve_address,
            "side": self.side.value,
            "amount": str(self.amount),
            "estimate": str(self.estimate),
            "limit": str(self.limit),
            "slippage_bps": self.slippage_bps,
            "state": self.state.value,
            "approval_tx": self.approval_tx,
            "trade_tx": self.trade_tx,
            "error": self.error,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, d: dict) -> TradeFlow:
        """Deserialize from dict."""
        return cls(
            flow_id=d["flow_id"],
            curve_address=d["curve_address"],
            side=TradeSide(d["side"]),
            amount=int(d["amount"]),
            estimate=int(d["estimate"]),
            limit=int(d["limit"]),
            slippage_bps=int(d.get("slippage_bps", 0)),
            state=TradeFlowState(d["state"]),
            approval_tx=d.get("approval_tx"),
            trade_tx=d.get("trade_tx"),
            error=d.get("error", ""),
            created_at=float(d.get("created_at", 0.0)),
            updated_at=float(d.get("updated_at", 0.0)),
        )


def prepare_buy(
    curve: BondingCurve, curve_address: str, amount: int, slippage_bps: int,
) -> TradeFlow:
    """Buy flow with max spend = estimate × (1 + slippage)."""
    if amount <= 0:
        raise ValidationError(f"trade amount must be positive: {amount}")
    estimate = curve.estimate_buy_cost(amount)
    return TradeFlow(
        curve_address=curve_address,
        side=TradeSide.BUY,
        amount=amount,
        estimate=estimate,
        limit=apply_slippage(estimate, slippage_bps, TradeSide.BUY),
        slippage_bps=slippage_bps,
    )


def prepare_sell(
    curve: BondingCurve, curve_address: str, amount: int, slippage_bps: int,
) -> TradeFlow:
    """Sell flow with min receive = estimate × (1 − slippage)."""
    if amount <= 0:
        raise ValidationError(f"trade amount must be positive: {amount}")
    estimate = curve.estimate_sell_proceeds(amount)
    return TradeFlow(
        curve_address=curve_address,
        side=TradeSide.SELL,
        amount=amount,
        estimate=estimate,
        limit=apply_slippage(estimate, slippage_bps, TradeSide.SELL),
        slippage_bps=slippage_bps,
    )


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


class FlowStore:
    """One JSON file per flow under a directory."""

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    def _path(self, flow_id: str) -> Path:
        return self.directory / f"flow_{flow_id}.json"

    def save(self, flow: TradeFlow) -> None:
        """Atomic write via temp + rename."""
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self._path(flow.flow_id)
        tmp_path = path.with_suffix(".tmp")
        tmp_path.write_text(json.dumps(flow.to_dict(), indent=2))
        tmp_path.replace(path)  # Atomic on POSIX

    def load(self, flow_id: str) -> Optional[TradeFlow]:
        path = self._path(flow_id)
        if not path.exists():
            return None
        return TradeFlow.from_dict(json.loads(path.read_text()))

    def load_all(self) -> list[TradeFlow]:
        """All persisted flows, oldest first. 손상된 파일은 건너뜀."""
        if not self.directory.exists():
            return []
        flows: list[TradeFlow] = []
        for path in sorted(self.directory.glob("flow_*.json")):
            try:
                flows.append(TradeFlow.from_dict(json.loads(path.read_text())))
            except (json.JSONDecodeError, KeyError, ValueError) as exc:
                logger.warning("Skipping unreadable flow file %s: %s", path, exc)
        flows.sort(key=lambda f: f.created_at)
        return flows

    def load_unfinished(self) -> list[TradeFlow]:
        return [f for f in self.load_all() if not f.is_terminal]


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------


class TransactionGateway(Protocol):
    """Wallet / chain access used by the runner."""

    async def get_allowance(self, spender: str) -> int: ...

    async def submit_approval(self, spender: str, amount: int) -> str: ...

    async def submit_buy(self, curve_address: str, amount: int, max_spend: int) -> str: ...

    async def submit_sell(self, curve_address: str, amount: int, min_receive: int) -> str: ...

    async def wait_for_receipt(self, tx_hash: str) -> bool: ...

    async def get_reserves(self, curve_address: str) -> int: ...


class TradeFlowRunner:
    """Drive flows step by step, persisting each transition.

    Gateway errors propagate and leave the flow in its last persisted
    state; calling ``run`` again resumes from there.
    """

    def __init__(self, gateway: TransactionGateway, store: FlowStore):
        self._gateway = gateway
        self._store = store

    async def run(self, flow: TradeFlow) -> TradeFlow:
        """Run until CONFIRMED or FAILED.

        Raises:
            CapacityExceeded: sell proceeds exceed curve reserves (flow FAILED).
        """
        while not flow.is_terminal:
            await self._step(flow)
        return flow

    async def resume_all(self) -> list[TradeFlow]:
        """Resume every unfinished flow in the store, one at a time."""
        finished: list[TradeFlow] = []
        for flow in self._store.load_unfinished():
            logger.info("[TRADE-FLOW] id=%s resuming from %s", flow.flow_id, flow.state.name)
            finished.append(await self.run(flow))
        return finished

    async def _step(self, flow: TradeFlow) -> None:
        state = flow.state
        if state is TradeFlowState.PENDING:
            await self._start(flow)
        elif state is TradeFlowState.APPROVAL_SUBMITTED:
            ok = await self._gateway.wait_for_receipt(flow.approval_tx)
            if ok:
                self._transition(flow, TradeFlowState.APPROVED)
            else:
                self._fail(flow, f"approval {flow.approval_tx} reverted")
        elif state is TradeFlowState.APPROVED:
            if flow.trade_tx is None:
                flow.trade_tx = await self._submit_trade(flow)
            self._transition(flow, TradeFlowState.TRADE_SUBMITTED)
        elif state is TradeFlowState.TRADE_SUBMITTED:
            ok = await self._gateway.wait_for_receipt(flow.trade_tx)
            if ok:
                self._transition(flow, TradeFlowState.CONFIRMED)
            else:
                self._fail(flow, f"trade {flow.trade_tx} reverted")

    async def _start(self, flow: TradeFlow) -> None:
        if flow.side is TradeSide.SELL:
            reserves = await self._gateway.get_reserves(flow.curve_address)
            if reserves < flow.estimate:
                self._fail(flow, f"reserves {reserves} below proceeds {flow.estimate}")
                raise CapacityExceeded(flow.estimate, reserves, "curve reserves")
            # 매도는 승인 불필요
            self._transition(flow, TradeFlowState.APPROVED)
            return

        if flow.approval_tx is None:
            allowance = await self._gateway.get_allowance(flow.curve_address)
            if allowance >= flow.limit:
                logger.info(
                    "[TRADE-FLOW] id=%s allowance %d covers cap %d, skipping approval",
                    flow.flow_id, allowance, flow.limit,
                )
                self._transition(flow, TradeFlowState.APPROVED)
                return
            flow.approval_tx = await self._gateway.submit_approval(
                flow.curve_address, flow.limit,
            )
        self._transition(flow, TradeFlowState.APPROVAL_SUBMITTED)

    async def _submit_trade(self, flow: TradeFlow) -> str:
        if flow.side is TradeSide.BUY:
            return await self._gateway.submit_buy(flow.curve_address, flow.amount, flow.limit)
        return await self._gateway.submit_sell(flow.curve_address, flow.amount, flow.limit)

    def _transition(self, flow: TradeFlow, new_state: TradeFlowState) -> None:
        old = flow.state
        flow.state = new_state
        flow.updated_at = time.time()
        self._store.save(flow)
        logger.info(
            "[TRADE-FLOW] id=%s %s %s → %s",
            flow.flow_id, flow.side.value, old.name, new_state.name,
        )

    def _fail(self, flow: TradeFlow, reason: str) -> None:
        flow.error = reason
        logger.warning("[TRADE-FLOW] id=%s failed: %s", flow.flow_id, reason)
        self._transition(flow, TradeFlowState.FAILED)
