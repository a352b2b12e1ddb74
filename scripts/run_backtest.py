#!/usr/bin/env python3
"""
Run Momentum-Lag Backtest

Replays 15-minute up/down market windows (historical price paths where the
CLOB has them, synthetic otherwise) through the momentum-lag strategy and
prints a performance report.

Usage:
    # Last 7 days, all assets
    python scripts/run_backtest.py

    # Specific period and assets
    python scripts/run_backtest.py --start 2026-01-01 --end 2026-01-08 --assets BTC ETH

    # Reproducible synthetic run, no network
    python scripts/run_backtest.py --days 3 --synthetic --seed 42

    # Export trades and JSON summary
    python scripts/run_backtest.py --output backtest_trades.csv --json results.json

Exit code is 0 when the win rate is at least 50%, 1 otherwise.
"""

import argparse
import json
import logging
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from src.backtest import BacktestConfig, BacktestMetrics, MomentumBacktestEngine
from src.config import INITIAL_BALANCE, LOG_LEVEL, LOGS_DIR, SUPPORTED_ASSETS
from src.strategy.models import StrategyConfig


def setup_logging(verbose: bool = False) -> None:
    """Configure logging for the backtest."""
    level = logging.DEBUG if verbose else getattr(logging, LOG_LEVEL, logging.INFO)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s", datefmt="%H:%M:%S"))

    log_file = LOGS_DIR / f"backtest_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"
    file_handler = logging.FileHandler(log_file)
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.addHandler(console_handler)
    root_logger.addHandler(file_handler)

    # Reduce noise from external libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("requests").setLevel(logging.WARNING)


def parse_date(value: str) -> datetime:
    """YYYY-MM-DD as UTC midnight."""
    try:
        return datetime.strptime(value, "%Y-%m-%d").replace(tzinfo=timezone.utc)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid date '{value}', expected YYYY-MM-DD")


def main():
    parser = argparse.ArgumentParser(
        description="Backtest the momentum-lag strategy on 15-minute crypto markets",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--start", type=parse_date, help="Start date (YYYY-MM-DD, UTC)")
    parser.add_argument("--end", type=parse_date, help="End date (YYYY-MM-DD, UTC, default: now)")
    parser.add_argument("--days", type=int, default=7, help="Days to backtest when --start is omitted (default: 7)")
    parser.add_argument(
        "--assets",
        nargs="+",
        default=SUPPORTED_ASSETS,
        type=str.upper,
        choices=SUPPORTED_ASSETS,
        help="Assets to simulate (default: all)",
    )
    parser.add_argument("--balance", type=float, default=INITIAL_BALANCE, help=f"Initial balance (default: {INITIAL_BALANCE:.0f})")
    parser.add_argument("--synthetic", action="store_true", help="Skip the price-history endpoint")
    parser.add_argument("--seed", type=int, help="Random seed for synthetic paths")
    parser.add_argument("--workers", type=int, default=4, help="Threads for fetching price history (default: 4)")
    parser.add_argument("--gap-threshold", type=float, help="Override GAP_THRESHOLD")
    parser.add_argument("--move-threshold", type=float, help="Override MOVE_THRESHOLD")
    parser.add_argument("--output", "-o", type=str, help="Write trades to this CSV file")
    parser.add_argument("--json", type=str, help="Write the summary to this JSON file")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")

    args = parser.parse_args()
    setup_logging(verbose=args.verbose)

    end = args.end or datetime.now(timezone.utc)
    start = args.start or end - timedelta(days=args.days)
    if start >= end:
        parser.error("--start must be before --end")

    strategy_config = StrategyConfig.from_env()
    if args.gap_threshold is not None:
        strategy_config.gap_threshold = args.gap_threshold
    if args.move_threshold is not None:
        strategy_config.move_threshold = args.move_threshold

    config = BacktestConfig(
        initial_balance=args.balance,
        assets=args.assets,
        use_historical=not args.synthetic,
        workers=args.workers,
        seed=args.seed,
    )

    try:
        engine = MomentumBacktestEngine(config, strategy_config)
        result = engine.run(int(start.timestamp() * 1000), int(end.timestamp() * 1000))
    except ValueError as e:
        print(f"\nInvalid configuration: {e}")
        sys.exit(2)

    print()
    print(f"Period: {start.isoformat()} to {end.isoformat()}")
    print(BacktestMetrics.format_report(result))

    if args.output:
        engine.export_trades(args.output)
        print(f"\nTrades written to {args.output}")

    if args.json:
        with open(args.json, "w") as f:
            json.dump(result.to_dict(), f, indent=2)
        print(f"Summary written to {args.json}")

    sys.exit(0 if result.win_rate >= 0.5 else 1)


if __name__ == "__main__":
    main()
