"""
Data models for the Momentum-Lag Backtester.

Defines configuration, simulated market windows, price paths and results.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..config import CLOB_HOST, INITIAL_BALANCE, SUPPORTED_ASSETS
from ..strategy.models import Side, TradeRecord

WINDOW_MS = 15 * 60 * 1000


@dataclass
class BacktestConfig:
    """
    Configuration for a backtest run.

    Attributes:
        initial_balance: Starting balance in USD
        assets: Assets to simulate windows for
        use_historical: Try the price-history endpoint before synthesizing
        host: CLOB host serving /prices-history
        request_timeout: Seconds before a history request is abandoned
        workers: Threads used to fetch price histories
        seed: Random seed for synthetic paths (None = nondeterministic)
        min_data_points: Windows with fewer points are skipped
        history_window_ms: Trailing history kept while scanning a window
    """
    initial_balance: float = INITIAL_BALANCE
    assets: List[str] = field(default_factory=lambda: list(SUPPORTED_ASSETS))
    use_historical: bool = True
    host: str = CLOB_HOST
    request_timeout: float = 30.0
    workers: int = 4
    seed: Optional[int] = None
    min_data_points: int = 60
    history_window_ms: int = 5 * 60 * 1000

    def validate(self) -> bool:
        """Validate configuration parameters."""
        if self.initial_balance <= 0:
            raise ValueError("initial_balance must be positive")
        if not self.assets:
            raise ValueError("assets must not be empty")
        unknown = [a for a in self.assets if a not in SUPPORTED_ASSETS]
        if unknown:
            raise ValueError(f"unsupported assets: {unknown}")
        if self.workers < 1:
            raise ValueError("workers must be at least 1")
        if self.request_timeout <= 0:
            raise ValueError("request_timeout must be positive")
        return True


@dataclass
class SimulatedMarket:
    """
    One 15-minute up/down market window.

    Attributes:
        asset: Underlying asset
        condition_id: sim-{asset}-{start_time}
        up_token_id: sim-{asset}-up-{start_time}
        down_token_id: sim-{asset}-down-{start_time}
        start_time: Window start (ms)
        end_time: Window end (ms)
        outcome: Resolution, set once the window's price path is built
    """
    asset: str
    condition_id: str
    up_token_id: str
    down_token_id: str
    start_time: int
    end_time: int
    outcome: Optional[Side] = None

    @classmethod
    def for_window(cls, asset: str, start_time: int) -> "SimulatedMarket":
        return cls(
            asset=asset,
            condition_id=f"sim-{asset}-{start_time}",
            up_token_id=f"sim-{asset}-up-{start_time}",
            down_token_id=f"sim-{asset}-down-{start_time}",
            start_time=start_time,
            end_time=start_time + WINDOW_MS,
        )


@dataclass
class HistoricalDataPoint:
    """Crypto price and implied UP/DOWN prices at one instant."""
    timestamp: int
    crypto_price: float
    up_price: float
    down_price: float


@dataclass
class HardMove:
    """
    A directional move injected into a synthetic window.

    Attributes:
        start_offset_ms: Start relative to the window start
        duration_seconds: Length of the move
        magnitude: Total fractional move, e.g. 0.05
        direction: +1 or -1
        squeeze: Damp volatility until 30s before the move
    """
    start_offset_ms: int
    duration_seconds: int
    magnitude: float
    direction: int
    squeeze: bool = False


@dataclass
class BacktestResult:
    """
    Aggregated outcome of a backtest.

    Attributes:
        max_drawdown: Largest fractional fall from the running peak balance
        sharpe_ratio: Annualized for 15-minute periods, 0 below 10 trades
        signal_accuracy: Fraction of trades with positive pnl
        average_hold_time: Mean minutes held
    """
    start_time: int
    end_time: int
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    win_rate: float = 0.0
    total_pnl: float = 0.0
    average_pnl: float = 0.0
    max_drawdown: float = 0.0
    max_drawdown_usd: float = 0.0
    sharpe_ratio: float = 0.0
    average_hold_time: float = 0.0
    signal_accuracy: float = 0.0
    initial_balance: float = INITIAL_BALANCE
    final_balance: float = INITIAL_BALANCE
    windows_simulated: int = 0
    windows_skipped: int = 0
    exit_reasons: Dict[str, int] = field(default_factory=dict)
    trades: List[TradeRecord] = field(default_factory=list)

    @property
    def return_pct(self) -> float:
        if self.initial_balance <= 0:
            return 0.0
        return (self.final_balance - self.initial_balance) / self.initial_balance

    def to_dict(self) -> Dict[str, Any]:
        return {
            "start_time": self.start_time,
            "end_time": self.end_time,
            "total_trades": self.total_trades,
            "winning_trades": self.winning_trades,
            "losing_trades": self.losing_trades,
            "win_rate": round(self.win_rate, 4),
            "total_pnl": round(self.total_pnl, 4),
            "average_pnl": round(self.average_pnl, 4),
            "max_drawdown": round(self.max_drawdown, 4),
            "max_drawdown_usd": round(self.max_drawdown_usd, 4),
            "sharpe_ratio": round(self.sharpe_ratio, 4),
            "average_hold_time": round(self.average_hold_time, 2),
            "signal_accuracy": round(self.signal_accuracy, 4),
            "initial_balance": self.initial_balance,
            "final_balance": round(self.final_balance, 4),
            "return_pct": round(self.return_pct, 4),
            "windows_simulated": self.windows_simulated,
            "windows_skipped": self.windows_skipped,
            "exit_reasons": dict(self.exit_reasons),
        }
