"""
Momentum-Lag Backtest Engine.

Replays simulated 15-minute windows through the same StrategyRunner the live
session uses and aggregates the resulting trades.
"""

import logging
import time
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Deque, Dict, List, Optional

from .metrics import BacktestMetrics
from .models import BacktestConfig, BacktestResult, HistoricalDataPoint, SimulatedMarket
from .simulator import MarketSimulator
from ..feeds.models import PriceTick
from ..reporting.trade_history import TradeHistoryWriter
from ..strategy.models import StrategyConfig, TradeRecord
from ..strategy.runner import PositionLedger, StrategyRunner

logger = logging.getLogger(__name__)


class MomentumBacktestEngine:
    """
    Backtest engine for the momentum-lag strategy.

    For each window:
    1. Build the price path (historical if available, else synthetic)
    2. Scan it tick by tick keeping the trailing 5 minutes of crypto prices
    3. Open on the first qualifying signal, then check exits every tick
    4. Settle anything still open at the fixed 0.95 / 0.05 prices

    Windows are processed in chronological order because position sizing
    depends on the running balance. Only history fetching is parallel.
    """

    def __init__(
        self,
        config: Optional[BacktestConfig] = None,
        strategy_config: Optional[StrategyConfig] = None,
        simulator: Optional[MarketSimulator] = None,
    ):
        """
        Initialize the backtest engine.

        Args:
            config: Backtest configuration. Uses defaults if not provided.
            strategy_config: Strategy parameters. Uses environment defaults if not provided.
            simulator: Market simulator (built from config if omitted)
        """
        self.config = config or BacktestConfig()
        self.config.validate()
        self.strategy_config = strategy_config or StrategyConfig.from_env()
        self.strategy_config.validate()
        self.simulator = simulator or MarketSimulator(
            host=self.config.host,
            seed=self.config.seed,
            use_historical=self.config.use_historical,
            timeout=self.config.request_timeout,
        )
        self.ledger = PositionLedger(self.config.initial_balance)
        self.runner = StrategyRunner(self.strategy_config, self.ledger)

    def run(self, start_ms: int, end_ms: int, assets: Optional[List[str]] = None) -> BacktestResult:
        """
        Run the backtest over [start_ms, end_ms).

        Args:
            start_ms: Start of the first window (ms)
            end_ms: End of the period (ms)
            assets: Assets to simulate (defaults to config.assets)

        Returns:
            BacktestResult with all trades and metrics
        """
        assets = assets or self.config.assets
        self.ledger = PositionLedger(self.config.initial_balance)
        self.runner = StrategyRunner(self.strategy_config, self.ledger)

        markets = self.simulator.generate_markets(start_ms, end_ms, assets)
        logger.info(f"Starting backtest on {len(markets)} windows for {', '.join(assets)}")
        logger.info(
            f"Config: balance=${self.config.initial_balance:,.0f}, "
            f"gap_threshold={self.strategy_config.gap_threshold}, "
            f"move_threshold={self.strategy_config.move_threshold}, "
            f"position_size_pct={self.strategy_config.position_size_pct:.1%}"
        )

        histories = self._fetch_histories(markets)
        started = time.time()
        simulated = 0
        skipped = 0

        for i, market in enumerate(markets):
            try:
                data = self.simulator.get_historical_data(
                    market, histories.get(market.condition_id), fetch=False
                )
                if len(data) < self.config.min_data_points:
                    skipped += 1
                    continue
                self.simulate_market(market, data)
                simulated += 1
            except Exception as e:
                logger.error(f"Error processing window {market.condition_id}: {e}")
                skipped += 1

            if (i + 1) % 500 == 0:
                logger.info(f"Processed {i + 1}/{len(markets)} windows")

        result = BacktestMetrics.calculate(
            self.ledger.trades,
            self.config.initial_balance,
            start_time=start_ms,
            end_time=end_ms,
            final_balance=self.ledger.balance,
        )
        result.windows_simulated = simulated
        result.windows_skipped = skipped

        logger.info(
            f"Backtest finished in {time.time() - started:.1f}s: {result.total_trades} trades, "
            f"win rate {result.win_rate:.1%}, pnl ${result.total_pnl:.2f}"
        )
        return result

    def _fetch_histories(self, markets: List[SimulatedMarket]) -> Dict[str, Any]:
        """Fetch raw price histories, in parallel when workers > 1."""
        if not self.config.use_historical or not markets:
            return {}

        if self.config.workers == 1:
            fetched = [self.simulator.fetch_price_history(m) for m in markets]
        else:
            with ThreadPoolExecutor(max_workers=self.config.workers) as pool:
                fetched = list(pool.map(self.simulator.fetch_price_history, markets))

        histories = {m.condition_id: h for m, h in zip(markets, fetched) if h}
        logger.info(f"Fetched price history for {len(histories)}/{len(markets)} windows")
        return histories

    def simulate_market(self, market: SimulatedMarket,
                        data: List[HistoricalDataPoint]) -> Optional[TradeRecord]:
        """
        Run the strategy over one window's path.

        Args:
            market: Window being simulated (outcome must be set)
            data: Price path, oldest first

        Returns:
            The window's TradeRecord, or None if no signal fired
        """
        history: Deque[PriceTick] = deque()

        for point in data:
            history.append(PriceTick(market.asset, point.crypto_price, point.timestamp))
            cutoff = point.timestamp - self.config.history_window_ms
            while history and history[0].timestamp < cutoff:
                history.popleft()

            trade = self.runner.on_tick(
                market.condition_id,
                market.asset,
                list(history),
                point.up_price,
                point.down_price,
                point.timestamp,
                market.end_time,
                up_token_id=market.up_token_id,
                down_token_id=market.down_token_id,
            )
            if trade is not None:
                return trade

        if self.ledger.has_position(market.condition_id):
            if market.outcome is None:
                raise ValueError(f"Window {market.condition_id} has no outcome to settle on")
            return self.runner.settle(market.condition_id, market.outcome, data[-1].timestamp)
        return None

    def export_trades(self, path: str) -> None:
        """Write all trades of the last run to CSV."""
        writer = TradeHistoryWriter(path)
        writer.write_all(self.ledger.trades)
        logger.info(f"Trades exported to {path}")
