"""Detection main loop: poll → detect → log.

Usage:
    python -m infofi_arb --season 1 --curve 0x...
    python -m infofi_arb --season 1 --curve 0x... --once
    python -m infofi_arb --season 1 --curve 0x... --stream --min-bps 300
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
from decimal import Decimal

from dotenv import load_dotenv

from infofi_arb.config import MIN_POLL_INTERVAL, EngineConfig
from infofi_arb.engine import InfoFiEngine
from infofi_arb.errors import PartialFailure
from infofi_arb.models.opportunity import ArbitrageOpportunity, DetectionResult

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Banner
# ---------------------------------------------------------------------------

BANNER = r"""
╔══════════════════════════════════════════════╗
║   infofi-arb: Raffle × InfoFi Arbitrage      ║
║   Bonding Curve vs Hybrid Oracle Scanner     ║
╚══════════════════════════════════════════════╝
"""

TOKEN_DECIMALS = 18

# ---------------------------------------------------------------------------
# Presentation
# ---------------------------------------------------------------------------


def format_units(amount: int, decimals: int = TOKEN_DECIMALS) -> str:
    """Smallest unit → token decimal string (표시 전용)."""
    value = Decimal(amount).scaleb(-decimals)
    return f"{value.normalize():f}"


def format_bps(bps: int | None) -> str:
    if bps is None:
        return "n/a"
    return f"{Decimal(bps) / Decimal(100):.2f}%"


def format_opportunity_line(opp: ArbitrageOpportunity) -> str:
    """단일 기회를 한 줄 문자열로 포맷."""
    stale = "" if opp.oracle_is_live else " [stale oracle]"
    return (
        f"  [{opp.direction.value}] {opp.player} "
        f"| profit: {opp.profitability:6.2f}% "
        f"| raffle: {format_units(opp.raffle_price)} "
        f"| market: {format_units(opp.market_price)} "
        f"| p(raffle): {format_bps(opp.raffle_probability_bps)}"
        f"{stale}"
    )


def log_results(result: DetectionResult) -> None:
    """결과를 콘솔에 출력."""
    mode = "[LIVE]" if result.is_live else "[DEGRADED]"

    if result.is_empty:
        print(
            f"\n{mode} No opportunities found this cycle "
            f"({result.markets_scanned} markets scanned)."
        )
    else:
        count = len(result.opportunities)
        noun = "opportunity" if count == 1 else "opportunities"
        print(f"\n{mode} Found {count} {noun} in season {result.season_id}:")
        for opp in result.opportunities:
            print(format_opportunity_line(opp))

    if result.failed_markets:
        print(f"  skipped {len(result.failed_markets)} market(s): "
              f"{', '.join(sorted(result.failed_markets))}")
    if result.stale_markets:
        print(f"  stale oracle prices: {len(result.stale_markets)}")
    print()


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """커맨드라인 인자 파싱."""
    parser = argparse.ArgumentParser(
        prog="infofi-arb",
        description="Raffle bonding curve vs InfoFi market arbitrage scanner",
    )
    parser.add_argument("--season", type=int, required=True, help="Season id")
    parser.add_argument("--curve", type=str, required=True, help="Curve contract address")
    parser.add_argument(
        "--interval", type=int, default=None,
        help=f"Detection interval in seconds (default: config, min: {MIN_POLL_INTERVAL})",
    )
    parser.add_argument(
        "--min-bps", type=int, default=None,
        help="Minimum profitability in basis points (default: 200)",
    )
    parser.add_argument(
        "--max-results", type=int, default=None,
        help="Maximum opportunities per cycle (default: 10)",
    )
    parser.add_argument(
        "--once", action="store_true", default=False,
        help="Run a single detection cycle and exit",
    )
    parser.add_argument(
        "--stream", action="store_true", default=False,
        help="Also consume the live WebSocket event feed",
    )
    return parser.parse_args(argv)


def apply_args(config: EngineConfig, args: argparse.Namespace) -> EngineConfig:
    """CLI 인자로 설정 덮어쓰기."""
    if args.interval is not None:
        config.detection_interval = max(args.interval, MIN_POLL_INTERVAL)
    if args.min_bps is not None:
        config.min_profitability_bps = args.min_bps
    if args.max_results is not None:
        config.max_results = args.max_results
    return config


# ---------------------------------------------------------------------------
# Main loop
# ---------------------------------------------------------------------------


async def run_once(config: EngineConfig, season_id: int, curve_address: str) -> DetectionResult:
    """단일 감지 사이클."""
    async with InfoFiEngine(config) as engine:
        result = await engine.get_arbitrage_opportunities(season_id, curve_address)
    log_results(result)
    return result


async def main_loop(
    config: EngineConfig, season_id: int, curve_address: str, stream: bool = False,
) -> None:
    """메인 루프: 주기적 폴링 → 감지 → 출력."""
    print(BANNER)
    print(f"Season: {season_id}  Curve: {curve_address}")
    print(f"State API: {config.state_api_url}")
    print(f"Detection interval: {config.detection_interval}s")
    print(f"Min profitability: {format_bps(config.min_profitability_bps)}")
    print(f"Live stream: {'ON' if stream else 'OFF'}")
    print("-" * 60)

    # Graceful shutdown
    stop_event = asyncio.Event()

    def _handle_signal():
        print("\nShutting down gracefully...")
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _handle_signal)
        except NotImplementedError:
            pass  # Windows

    async with InfoFiEngine(config) as engine:
        await engine.run(
            season_id, curve_address, stop_event, on_result=log_results, stream=stream,
        )

    print("Goodbye!")


def cli_main(argv: list[str] | None = None) -> None:
    """CLI entry point.

    --once exits with status 1 when any market failed in the cycle.
    """
    load_dotenv()
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    args = parse_args(argv)
    config = apply_args(EngineConfig.from_env(), args)

    if args.once:
        result = asyncio.run(run_once(config, args.season, args.curve))
        try:
            result.raise_for_partial_failure()
        except PartialFailure as exc:
            logger.error("Detection incomplete: %s", exc)
            raise SystemExit(1) from exc
        return

    asyncio.run(main_loop(config, args.season, args.curve, stream=args.stream))


if __name__ == "__main__":
    cli_main()
