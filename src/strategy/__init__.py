"""
Momentum-lag strategy: detection, entry/exit rules and position ledger.

The live TradingSession lives in src.strategy.session and is imported from
there directly.
"""

from .models import (
    ExitReason,
    Position,
    PriceMove,
    Side,
    Signal,
    StrategyConfig,
    TradeRecord,
    VolatilityMetrics,
)
from .detector import MomentumLagDetector, calculate_confidence, calculate_gap
from .runner import PositionLedger, PositionLimitError, StrategyRunner

__all__ = [
    "ExitReason",
    "Position",
    "PriceMove",
    "Side",
    "Signal",
    "StrategyConfig",
    "TradeRecord",
    "VolatilityMetrics",
    "MomentumLagDetector",
    "calculate_confidence",
    "calculate_gap",
    "PositionLedger",
    "PositionLimitError",
    "StrategyRunner",
]
