#!/usr/bin/env python3
"""
Run Momentum-Lag Paper Bot

Streams Binance spot trades and the Polymarket market channel, tracks the
active 15-minute up/down markets and paper-trades momentum-lag signals.
No orders are sent to the exchange.

Usage:
    # Paper trade all assets until Ctrl+C
    python scripts/run_momentum_bot.py

    # One hour on BTC and ETH only
    python scripts/run_momentum_bot.py --duration 60 --assets BTC ETH

    # Show configuration and currently active markets
    python scripts/run_momentum_bot.py --status

Environment Variables:
    GAP_THRESHOLD, MOVE_THRESHOLD, POSITION_SIZE_PCT, MAX_POSITIONS,
    MIN_LIQUIDITY, MAX_HOLD_MINUTES, MAX_DRAWDOWN, STOP_LOSS_PCT
    TRADE_HISTORY_PATH - CSV file receiving closed trades
    LOG_LEVEL - console log level (default INFO)
"""

import argparse
import json
import logging
import sys
from datetime import datetime
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from src.api.market_finder import MarketFinder
from src.config import (
    BINANCE_SYMBOLS,
    INITIAL_BALANCE,
    LOG_LEVEL,
    LOGS_DIR,
    SUPPORTED_ASSETS,
    TRADE_HISTORY_PATH,
)
from src.feeds.binance_feed import BinanceFeed
from src.feeds.dispatcher import FeedDispatcher
from src.feeds.polymarket_feed import PolymarketFeed
from src.reporting.trade_history import TradeHistoryWriter
from src.strategy.models import StrategyConfig
from src.strategy.session import TradingSession


def setup_logging(verbose: bool = False) -> None:
    """Configure logging for the bot."""
    level = logging.DEBUG if verbose else getattr(logging, LOG_LEVEL, logging.INFO)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s", datefmt="%H:%M:%S"))

    log_file = LOGS_DIR / f"momentum_bot_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"
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
    logging.getLogger("websocket").setLevel(logging.WARNING)

    print(f"Logs will be written to: {log_file}")


def show_status(assets) -> None:
    """Print configuration and the markets discovery would track."""
    config = StrategyConfig.from_env()
    print("\n" + "=" * 70)
    print("Momentum-Lag Bot Status")
    print("=" * 70)
    print("\nStrategy:")
    print(f"  Gap Threshold:      {config.gap_threshold:.3f}")
    print(f"  Move Threshold:     {config.move_threshold:.2%}")
    print(f"  Position Size:      {config.position_size_pct:.1%} of balance")
    print(f"  Max Positions:      {config.max_positions}")
    print(f"  Min Liquidity:      ${config.min_liquidity:,.0f}")
    print(f"  Max Hold:           {config.max_hold_minutes:.0f} min")
    print(f"  Trade History:      {TRADE_HISTORY_PATH}")

    print("\nMarket Discovery:")
    markets = MarketFinder(assets).find_active_markets()
    print(f"  Active 15-minute markets: {len(markets)}")
    for market in markets:
        print(f"    - {market.slug}")
        print(f"      UP: {market.up_price:.3f} | DOWN: {market.down_price:.3f}")
        print(f"      Time left: {market.seconds_to_resolution}s")
    print("\n" + "=" * 70)


def main():
    parser = argparse.ArgumentParser(
        description="Paper-trade momentum-lag signals on Polymarket 15-minute crypto markets",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--status", action="store_true", help="Show configuration and active markets, then exit")
    parser.add_argument("--duration", type=float, default=0, metavar="MINUTES", help="Run time in minutes (0 = until Ctrl+C)")
    parser.add_argument(
        "--assets",
        nargs="+",
        default=SUPPORTED_ASSETS,
        type=str.upper,
        choices=SUPPORTED_ASSETS,
        help="Assets to trade (default: all)",
    )
    parser.add_argument("--balance", type=float, default=INITIAL_BALANCE, help="Paper balance in USD")
    parser.add_argument("--refresh", type=float, default=60, metavar="SECONDS", help="Market discovery interval (default: 60)")
    parser.add_argument("--no-csv", action="store_true", help="Do not write trades to TRADE_HISTORY_PATH")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")

    args = parser.parse_args()

    if args.status:
        show_status(args.assets)
        return

    setup_logging(verbose=args.verbose)

    symbols = [s for s in BINANCE_SYMBOLS if any(s.upper().startswith(a) for a in args.assets)]
    dispatcher = FeedDispatcher()
    session = TradingSession(
        config=StrategyConfig.from_env(),
        initial_balance=args.balance,
        dispatcher=dispatcher,
        crypto_feed=BinanceFeed(on_tick=dispatcher.put, on_event=dispatcher.put, symbols=symbols),
        market_feed=PolymarketFeed(on_update=dispatcher.put, on_event=dispatcher.put),
        market_finder=MarketFinder(args.assets),
        trade_writer=None if args.no_csv else TradeHistoryWriter(TRADE_HISTORY_PATH),
    )

    print("\n" + "=" * 70)
    print(f"Starting Momentum-Lag Bot (PAPER) on {', '.join(args.assets)}")
    print("=" * 70)
    print("\nPress Ctrl+C to stop\n")

    try:
        session.run(
            duration_seconds=args.duration * 60 if args.duration > 0 else None,
            refresh_interval=args.refresh,
        )
    except Exception as e:
        print(f"\nFatal error: {e}")
        if args.verbose:
            import traceback
            traceback.print_exc()
        sys.exit(1)

    print("\nFinal status:")
    print(json.dumps(session.status(), indent=2))
    if session.fatal_error:
        sys.exit(1)


if __name__ == "__main__":
    main()
