"""
Momentum-Lag Backtester for 15-minute crypto up/down markets.

Simulates market windows (historical or synthetic price paths with lagging
implied probabilities), replays them through the shared StrategyRunner and
reduces the trades into summary statistics.
"""

from .models import (
    BacktestConfig,
    BacktestResult,
    HardMove,
    HistoricalDataPoint,
    SimulatedMarket,
)
from .simulator import MarketSimulator
from .engine import MomentumBacktestEngine
from .metrics import BacktestMetrics

__all__ = [
    "BacktestConfig",
    "BacktestResult",
    "HardMove",
    "HistoricalDataPoint",
    "SimulatedMarket",
    "MarketSimulator",
    "MomentumBacktestEngine",
    "BacktestMetrics",
]
