"""Bonding curve pricing model.

Step-function curve: tickets in (steps[i-1].range_to, steps[i].range_to]
cost steps[i].price_unit each. A purchase that crosses step boundaries is
priced step by step:

    cost = Σ_i (tokens bought inside step i) × price_i

All arithmetic is integer (smallest settlement unit, basis points).

Fees (curve contract defaults):
- buy:  cost + cost × buy_fee_bps // 10000   (10 bps)
- sell: base − base × sell_fee_bps // 10000  (70 bps, taken from proceeds)

Examples:
    >>> steps = [BondStep(0, 1000, 10**18), BondStep(1, 2000, 2 * 10**18)]
    >>> curve = BondingCurve(steps, buy_fee_bps=0)
    >>> curve.estimate_buy_cost(1500) == 1000 * 10**18 + 500 * 2 * 10**18
    True
"""

from __future__ import annotations

from bisect import bisect_left
from enum import Enum
from typing import Optional, Sequence

from infofi_arb.errors import CapacityExceeded, RangeExceeded, ValidationError
from infofi_arb.models.curve import BondStep, CurveState, validate_steps

BPS = 10_000
DEFAULT_BUY_FEE_BPS = 10    # 0.10%
DEFAULT_SELL_FEE_BPS = 70   # 0.70%


class TradeSide(Enum):
    """슬리피지 방향."""

    BUY = "buy"
    SELL = "sell"


def _require_int(name: str, value) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{name} must be an integer: {value!r}")
    if value < 0:
        raise ValidationError(f"{name} must be non-negative: {value}")
    return value


def _clamp_bps(bps: int) -> int:
    return max(0, min(BPS, int(bps)))


# ---------------------------------------------------------------------------
# Step lookup / integration
# ---------------------------------------------------------------------------


def get_current_step(steps: Sequence[BondStep], supply: int) -> BondStep:
    """Return the step with the smallest range_to >= supply.

    Raises:
        ValidationError: negative supply or empty schedule.
        RangeExceeded: supply beyond the final step.
    """
    _require_int("supply", supply)
    if not steps:
        raise ValidationError("bond step schedule is empty")
    ranges = [s.range_to for s in steps]
    idx = bisect_left(ranges, supply)
    if idx >= len(steps):
        raise RangeExceeded(supply, ranges[-1])
    return steps[idx]


def simulate_buy(steps: Sequence[BondStep], supply: int, amount: int) -> int:
    """Base cost (no fee) of buying `amount` tickets starting at `supply`."""
    target = supply + amount
    total = 0
    prev_range_to = 0
    for step in steps:
        if supply >= step.range_to:
            prev_range_to = step.range_to
            continue  # 이미 지난 스텝
        if target <= prev_range_to:
            break  # 이 스텝까지 도달하지 않음
        start = max(supply, prev_range_to)
        end = min(target, step.range_to)
        if end > start:
            total += (end - start) * step.price_unit
        prev_range_to = step.range_to
    return total


def simulate_sell(steps: Sequence[BondStep], supply: int, amount: int) -> int:
    """Base proceeds (no fee) of selling `amount` tickets down from `supply`."""
    target = supply - amount
    total = 0
    for i in range(len(steps) - 1, -1, -1):
        prev_range_to = steps[i - 1].range_to if i > 0 else 0
        step_end = steps[i].range_to
        if target >= step_end:
            continue
        if supply <= prev_range_to:
            # 공급량이 이 스텝 아래, 더 낮은 스텝으로
            continue
        start = max(target, prev_range_to)
        end = min(supply, step_end)
        if end > start:
            total += (end - start) * steps[i].price_unit
        if target >= prev_range_to:
            break
    return total


# ---------------------------------------------------------------------------
# Fees / slippage
# ---------------------------------------------------------------------------


def amount_with_fee(base_amount: int, fee_bps: int) -> int:
    """Total including fee: base + base × fee // 10000."""
    if not base_amount:
        return 0
    return base_amount + (base_amount * _clamp_bps(fee_bps)) // BPS


def amount_after_fee(base_amount: int, fee_bps: int) -> int:
    """Net after fee deduction, floored at zero."""
    if not base_amount:
        return 0
    fee = (base_amount * _clamp_bps(fee_bps)) // BPS
    return max(0, base_amount - fee)


def apply_slippage(estimate: int, tolerance_bps: int, direction: TradeSide) -> int:
    """Slippage bound for an estimate.

    - BUY: maximum spend = estimate × (1 + tolerance)
    - SELL: minimum receive = estimate × (1 − tolerance)

    tolerance_bps is clamped to [0, 10000]; the result is never negative.
    """
    _require_int("estimate", estimate)
    tol = _clamp_bps(tolerance_bps)
    adjustment = (estimate * tol) // BPS
    if direction is TradeSide.BUY:
        return estimate + adjustment
    if direction is TradeSide.SELL:
        return max(0, estimate - adjustment)
    raise ValidationError(f"unknown slippage direction: {direction!r}")


# ---------------------------------------------------------------------------
# BondingCurve
# ---------------------------------------------------------------------------


class BondingCurve:
    """Pricing view over one curve's step schedule at a given supply.

    Args:
        steps: 오름차순 스텝 스케줄 (가격 비감소).
        supply: 현재 발행량.
        buy_fee_bps: 매수 수수료.
        sell_fee_bps: 매도 수수료 (proceeds 에서 차감).
    """

    def __init__(
        self,
        steps: Sequence[BondStep],
        supply: int = 0,
        buy_fee_bps: int = DEFAULT_BUY_FEE_BPS,
        sell_fee_bps: int = DEFAULT_SELL_FEE_BPS,
    ):
        self.steps = validate_steps(steps)
        if not self.steps:
            raise ValidationError("bond step schedule is empty")
        self.supply = _require_int("supply", supply)
        if self.supply > self.max_supply:
            raise RangeExceeded(self.supply, self.max_supply)
        self.buy_fee_bps = _clamp_bps(buy_fee_bps)
        self.sell_fee_bps = _clamp_bps(sell_fee_bps)

    @classmethod
    def from_state(cls, state: CurveState) -> BondingCurve:
        """CurveState 스냅샷에서 생성."""
        return cls(
            state.all_steps,
            supply=state.supply,
            buy_fee_bps=state.buy_fee_bps,
            sell_fee_bps=state.sell_fee_bps,
        )

    @property
    def max_supply(self) -> int:
        return self.steps[-1].range_to

    def _supply(self, supply: Optional[int]) -> int:
        return self.supply if supply is None else _require_int("supply", supply)

    def remaining_capacity(self, supply: Optional[int] = None) -> int:
        """Tickets still purchasable before the final step is exhausted."""
        return max(0, self.max_supply - self._supply(supply))

    def get_current_step(self, supply: Optional[int] = None) -> BondStep:
        return get_current_step(self.steps, self._supply(supply))

    def marginal_price(self, supply: Optional[int] = None) -> int:
        """현재 스텝의 단가 (settlement unit / ticket)."""
        return self.get_current_step(supply).price_unit

    def estimate_buy_cost(
        self,
        amount: int,
        supply: Optional[int] = None,
        include_fee: bool = True,
    ) -> int:
        """Cost of buying `amount` tickets, summed step by step.

        Raises:
            ValidationError: negative / non-integer amount.
            CapacityExceeded: amount beyond remaining capacity.
        """
        _require_int("amount", amount)
        start = self._supply(supply)
        if amount == 0:
            return 0
        available = self.remaining_capacity(start)
        if amount > available:
            raise CapacityExceeded(amount, available, "curve capacity")
        base = simulate_buy(self.steps, start, amount)
        return amount_with_fee(base, self.buy_fee_bps) if include_fee else base

    def estimate_sell_proceeds(
        self,
        amount: int,
        supply: Optional[int] = None,
        include_fee: bool = True,
    ) -> int:
        """Proceeds of selling `amount` tickets, net of the sell fee.

        Raises:
            ValidationError: negative / non-integer amount.
            CapacityExceeded: amount larger than current supply.
        """
        _require_int("amount", amount)
        start = self._supply(supply)
        if amount == 0:
            return 0
        if start > self.max_supply:
            raise RangeExceeded(start, self.max_supply)
        if amount > start:
            raise CapacityExceeded(amount, start, "current supply")
        base = simulate_sell(self.steps, start, amount)
        return amount_after_fee(base, self.sell_fee_bps) if include_fee else base

    apply_slippage = staticmethod(apply_slippage)
