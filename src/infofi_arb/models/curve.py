"""BondStep and CurveState data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Sequence

from infofi_arb.errors import ValidationError


@dataclass(frozen=True)
class BondStep:
    """One step of the bonding curve schedule.

    Tickets in (previous range_to, range_to] cost price_unit each
    (smallest settlement unit).
    """

    step_index: int
    range_to: int
    price_unit: int

    def __post_init__(self):
        if self.range_to <= 0:
            raise ValidationError(f"range_to must be positive: {self.range_to}")
        if self.price_unit < 0:
            raise ValidationError(f"price_unit must be non-negative: {self.price_unit}")

    @classmethod
    def from_api(cls, raw: dict, index: int) -> BondStep:
        """API dict → BondStep. rangeTo/price 는 10진 문자열일 수 있음."""
        return cls(
            step_index=int(raw.get("step", raw.get("stepIndex", index))),
            range_to=int(raw["rangeTo"]),
            price_unit=int(raw["price"]),
        )


def validate_steps(steps: Sequence[BondStep]) -> tuple[BondStep, ...]:
    """스텝 스케줄 검증: range_to 오름차순, 가격 비감소."""
    ordered = tuple(steps)
    for prev, cur in zip(ordered, ordered[1:]):
        if cur.range_to <= prev.range_to:
            raise ValidationError(
                f"step {cur.step_index} range_to {cur.range_to} "
                f"not above previous {prev.range_to}"
            )
        if cur.price_unit < prev.price_unit:
            raise ValidationError(
                f"step {cur.step_index} price {cur.price_unit} "
                f"below previous {prev.price_unit}"
            )
    return ordered


@dataclass(frozen=True)
class CurveState:
    """Snapshot of one season's bonding curve contract."""

    supply: int
    reserves: int
    current_step: Optional[BondStep]
    all_steps: tuple[BondStep, ...] = field(default_factory=tuple)
    accumulated_fees: int = 0
    buy_fee_bps: int = 10
    sell_fee_bps: int = 70
    trading_locked: bool = False

    def __post_init__(self):
        if self.supply < 0:
            raise ValidationError(f"supply must be non-negative: {self.supply}")
        if self.reserves < 0:
            raise ValidationError(f"reserves must be non-negative: {self.reserves}")
        object.__setattr__(self, "all_steps", validate_steps(self.all_steps))

    @property
    def max_supply(self) -> int:
        """마지막 스텝의 range_to. 스텝이 없으면 0."""
        return self.all_steps[-1].range_to if self.all_steps else 0

    @classmethod
    def from_api(cls, raw: dict) -> CurveState:
        """GET /curves/{address}/state 응답 → CurveState."""
        steps = tuple(
            BondStep.from_api(s, i) for i, s in enumerate(raw.get("steps") or [])
        )
        current_raw = raw.get("currentStep")
        current = None
        if current_raw:
            current = BondStep.from_api(current_raw, int(current_raw.get("step", 0)))
        return cls(
            supply=int(raw.get("supply", 0)),
            reserves=int(raw.get("reserves", 0)),
            current_step=current,
            all_steps=steps,
            accumulated_fees=int(raw.get("accumulatedFees", 0) or 0),
            buy_fee_bps=int(raw.get("buyFeeBps", 10)),
            sell_fee_bps=int(raw.get("sellFeeBps", 70)),
            trading_locked=bool(raw.get("tradingLocked", False)),
        )
