"""
Performance Metrics for the Momentum-Lag Backtester.

Reduces trade records into summary statistics:
- win/loss counts and win rate
- total and average P&L, return on the initial balance
- max drawdown of the running balance
- Sharpe ratio annualized for 15-minute periods
"""

import math
from collections import Counter
from typing import List, Optional

from .models import BacktestResult
from ..strategy.models import TradeRecord

# Trades needed before a Sharpe ratio is reported
MIN_TRADES_FOR_SHARPE = 10

# 96 fifteen-minute windows per day, 252 trading days
PERIODS_PER_YEAR = 252 * 96


class BacktestMetrics:
    """
    Calculate performance metrics for momentum-lag backtests.
    """

    @staticmethod
    def calculate(
        trades: List[TradeRecord],
        initial_balance: float,
        start_time: int = 0,
        end_time: int = 0,
        final_balance: Optional[float] = None,
    ) -> BacktestResult:
        """
        Build a BacktestResult from closed trades in execution order.

        Args:
            trades: Trade records, oldest first
            initial_balance: Balance before the first trade
            start_time: Backtest start (ms)
            end_time: Backtest end (ms)
            final_balance: Ending balance; defaults to initial + sum of pnl

        Returns:
            BacktestResult with every statistic filled in
        """
        if final_balance is None:
            final_balance = initial_balance + sum(t.pnl for t in trades)

        result = BacktestResult(
            start_time=start_time,
            end_time=end_time,
            initial_balance=initial_balance,
            final_balance=final_balance,
            trades=list(trades),
        )
        if not trades:
            return result

        count = len(trades)
        winners = [t for t in trades if t.pnl > 0]
        drawdown, drawdown_usd = BacktestMetrics.max_drawdown(trades, initial_balance)

        result.total_trades = count
        result.winning_trades = len(winners)
        result.losing_trades = count - len(winners)
        result.win_rate = len(winners) / count
        result.total_pnl = final_balance - initial_balance
        result.average_pnl = result.total_pnl / count
        result.max_drawdown = drawdown
        result.max_drawdown_usd = drawdown_usd
        result.sharpe_ratio = BacktestMetrics.sharpe_ratio(trades)
        result.average_hold_time = sum(t.hold_time_minutes for t in trades) / count
        # A trade only profits when the signal's direction was right
        result.signal_accuracy = len(winners) / count
        result.exit_reasons = dict(Counter(t.exit_reason.value for t in trades))
        return result

    @staticmethod
    def max_drawdown(trades: List[TradeRecord], initial_balance: float):
        """
        Largest fall of the running balance below its high-water mark.

        Returns:
            (fractional drawdown, drawdown in USD)
        """
        balance = initial_balance
        high_water = initial_balance
        max_dd = 0.0
        max_dd_usd = 0.0
        for trade in trades:
            balance += trade.pnl
            if balance > high_water:
                high_water = balance
            if high_water > 0:
                max_dd = max(max_dd, (high_water - balance) / high_water)
            max_dd_usd = max(max_dd_usd, high_water - balance)
        return max_dd, max_dd_usd

    @staticmethod
    def sharpe_ratio(trades: List[TradeRecord]) -> float:
        """Annualized Sharpe of per-trade returns; 0 with fewer than 10 trades or no variance."""
        if len(trades) < MIN_TRADES_FOR_SHARPE:
            return 0.0
        returns = [t.pnl_percent for t in trades]
        mean = sum(returns) / len(returns)
        variance = sum((r - mean) ** 2 for r in returns) / len(returns)
        std_dev = math.sqrt(variance)
        if std_dev == 0:
            return 0.0
        return mean * math.sqrt(PERIODS_PER_YEAR) / std_dev

    @staticmethod
    def format_report(result: BacktestResult) -> str:
        """
        Format a result as a human-readable report.

        Args:
            result: Computed backtest result

        Returns:
            Formatted string report
        """
        lines = [
            "=" * 60,
            "MOMENTUM-LAG BACKTEST REPORT",
            "=" * 60,
            "",
            "SUMMARY",
            "-" * 40,
            f"Windows Simulated:    {result.windows_simulated}",
            f"Windows Skipped:      {result.windows_skipped}",
            f"Total Trades:         {result.total_trades}",
            f"Winning Trades:       {result.winning_trades}",
            f"Losing Trades:        {result.losing_trades}",
            f"Win Rate:             {result.win_rate:.1%}",
            f"Signal Accuracy:      {result.signal_accuracy:.1%}",
            "",
            "P&L",
            "-" * 40,
            f"Total P&L:            ${result.total_pnl:.2f}",
            f"Avg P&L per Trade:    ${result.average_pnl:.4f}",
            f"Initial Balance:      ${result.initial_balance:,.2f}",
            f"Final Balance:        ${result.final_balance:,.2f}",
            f"Return:               {result.return_pct:.2%}",
            "",
            "RISK",
            "-" * 40,
            f"Max Drawdown:         {result.max_drawdown:.2%} (${result.max_drawdown_usd:.2f})",
            f"Sharpe Ratio:         {result.sharpe_ratio:.3f}",
            f"Avg Hold Time:        {result.average_hold_time:.1f} min",
        ]

        if result.exit_reasons:
            lines.extend(["", "EXIT REASONS", "-" * 40])
            for reason, count in sorted(result.exit_reasons.items()):
                lines.append(f"{reason + ':':<22}{count}")

        lines.extend(["", "=" * 60])
        return "\n".join(lines)
