"""Engine configuration: env-based config with safe defaults."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from infofi_arb.arbitrage.detector import (
    DEFAULT_CONCURRENCY,
    DEFAULT_MAX_RESULTS,
    DEFAULT_MIN_PROFITABILITY_BPS,
    DEFAULT_NOTIONAL_UNITS,
    DEFAULT_PAYOUT_UNIT,
)
from infofi_arb.feeds.event_stream import DEFAULT_WS_URL
from infofi_arb.ledger.block_range import DEFAULT_MAX_BLOCK_RANGE
from infofi_arb.ledger.holders import DEFAULT_LOOKBACK_BLOCKS
from infofi_arb.oracle.reader import DEFAULT_STALE_AFTER_SECS
from infofi_arb.sources.state_api import DEFAULT_STATE_API_URL

ENV_PREFIX = "INFOFI_"

# 최소 폴링 간격 (초)
MIN_ORACLE_INTERVAL = 5
MIN_POLL_INTERVAL = 10


def _env(name: str, default: str) -> str:
    return os.environ.get(ENV_PREFIX + name, default)


# ---------------------------------------------------------------------------
# EngineConfig: 환경변수 기반 설정
# ---------------------------------------------------------------------------


@dataclass
class EngineConfig:
    """엔진 전체 설정. 환경변수 또는 기본값."""

    state_api_url: str = DEFAULT_STATE_API_URL
    ws_url: str = DEFAULT_WS_URL
    oracle_interval: int = 10       # seconds
    curve_interval: int = 15
    ledger_interval: int = 45
    detection_interval: int = 15
    lookback_blocks: int = DEFAULT_LOOKBACK_BLOCKS
    max_block_range: int = DEFAULT_MAX_BLOCK_RANGE
    oracle_stale_secs: float = DEFAULT_STALE_AFTER_SECS
    min_profitability_bps: int = DEFAULT_MIN_PROFITABILITY_BPS
    max_results: int = DEFAULT_MAX_RESULTS
    notional_units: int = DEFAULT_NOTIONAL_UNITS
    payout_unit: int = DEFAULT_PAYOUT_UNIT
    concurrency: int = DEFAULT_CONCURRENCY
    flow_dir: Path = Path("data/flows")

    def __post_init__(self):
        # 최소 간격 강제
        if self.oracle_interval < MIN_ORACLE_INTERVAL:
            self.oracle_interval = MIN_ORACLE_INTERVAL
        for name in ("curve_interval", "ledger_interval", "detection_interval"):
            if getattr(self, name) < MIN_POLL_INTERVAL:
                setattr(self, name, MIN_POLL_INTERVAL)
        if self.max_results < 1:
            self.max_results = 1
        if self.concurrency < 1:
            self.concurrency = 1
        self.flow_dir = Path(self.flow_dir)

    @classmethod
    def from_env(cls) -> EngineConfig:
        """환경변수에서 설정 로드. 없으면 안전한 기본값."""
        return cls(
            state_api_url=_env("STATE_API_URL", DEFAULT_STATE_API_URL),
            ws_url=_env("WS_URL", DEFAULT_WS_URL),
            oracle_interval=int(_env("ORACLE_INTERVAL", "10")),
            curve_interval=int(_env("CURVE_INTERVAL", "15")),
            ledger_interval=int(_env("LEDGER_INTERVAL", "45")),
            detection_interval=int(_env("DETECTION_INTERVAL", "15")),
            lookback_blocks=int(_env("LOOKBACK_BLOCKS", str(DEFAULT_LOOKBACK_BLOCKS))),
            max_block_range=int(_env("MAX_BLOCK_RANGE", str(DEFAULT_MAX_BLOCK_RANGE))),
            oracle_stale_secs=float(_env("ORACLE_STALE_SECS", str(DEFAULT_STALE_AFTER_SECS))),
            min_profitability_bps=int(
                _env("MIN_PROFITABILITY_BPS", str(DEFAULT_MIN_PROFITABILITY_BPS))
            ),
            max_results=int(_env("MAX_RESULTS", str(DEFAULT_MAX_RESULTS))),
            notional_units=int(_env("NOTIONAL_UNITS", str(DEFAULT_NOTIONAL_UNITS))),
            payout_unit=int(_env("PAYOUT_UNIT", str(DEFAULT_PAYOUT_UNIT))),
            concurrency=int(_env("CONCURRENCY", str(DEFAULT_CONCURRENCY))),
            flow_dir=Path(_env("FLOW_DIR", "data/flows")),
        )
