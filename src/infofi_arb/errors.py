"""Error taxonomy for infofi_arb.

ValidationError / RangeExceeded / CapacityExceeded always propagate to the
caller. Unavailable / Stale / PartialFailure are recovered per item (market or
holder); the offending item is dropped and only a liveness flag surfaces.
"""

from __future__ import annotations


class InfoFiError(Exception):
    """Base class for all engine errors."""


class ValidationError(InfoFiError, ValueError):
    """잘못된 입력값 (음수 수량, 잘못된 주소, 순서가 어긋난 스텝 등)."""


class RangeExceeded(InfoFiError):
    """Supply lies beyond the final bond step."""

    def __init__(self, supply: int, max_supply: int):
        self.supply = supply
        self.max_supply = max_supply
        super().__init__(
            f"supply {supply} exceeds final step range {max_supply}"
        )


class CapacityExceeded(InfoFiError):
    """Requested amount does not fit in the remaining curve capacity."""

    def __init__(self, requested: int, available: int, reason: str = ""):
        self.requested = requested
        self.available = available
        msg = f"requested {requested} exceeds available {available}"
        if reason:
            msg = f"{msg} ({reason})"
        super().__init__(msg)


class Unavailable(InfoFiError):
    """Remote source unreachable or has no data recorded yet."""


class BlockRangeTooLarge(Unavailable):
    """Log query rejected because the block range is too wide."""


class Stale(InfoFiError):
    """Data is older than its freshness horizon."""

    def __init__(self, key: str, age_seconds: float, horizon_seconds: float):
        self.key = key
        self.age_seconds = age_seconds
        self.horizon_seconds = horizon_seconds
        super().__init__(
            f"{key} is {age_seconds:.1f}s old (horizon {horizon_seconds:.1f}s)"
        )


class PartialFailure(InfoFiError):
    """One or more items in a batch failed; siblings succeeded."""

    def __init__(self, failures: dict[str, BaseException]):
        self.failures = dict(failures)
        keys = ", ".join(sorted(self.failures))
        super().__init__(f"{len(self.failures)} item(s) failed: {keys}")
