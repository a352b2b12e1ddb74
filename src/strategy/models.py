"""
Data models for the momentum-lag strategy.

Defines configuration, signals, positions and trade records shared by the
live session and the backtester.
"""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, Optional

from .. import config


class Side(Enum):
    """Outcome token side of a 15-minute up/down market."""
    UP = "UP"
    DOWN = "DOWN"

    @property
    def opposite(self) -> "Side":
        return Side.DOWN if self is Side.UP else Side.UP


class ExitReason(Enum):
    """Why a position was closed."""
    GAP_CLOSED = "gap_closed"
    MAX_HOLD_TIME = "max_hold_time"
    MARKET_RESOLVED = "market_resolved"
    STOP_LOSS = "stop_loss"
    MANUAL = "manual"


@dataclass
class StrategyConfig:
    """
    Strategy parameters.

    Attributes:
        position_size_pct: Fraction of balance committed per position
        gap_threshold: Minimum gap from fair value (0.50) to enter
        move_threshold: Minimum crypto move fraction for a hard move
        exit_gap_threshold: Exit once the gap falls below this
        max_hold_minutes: Maximum holding time before a forced exit
        max_positions: Maximum concurrent open positions (live only)
        min_liquidity: Minimum order book liquidity to enter (live only)
        max_drawdown: Pause new entries beyond this drawdown (live only)
        stop_loss_pct: Exit when unrealized loss exceeds this, 0 disables (live only)
        lookback_samples: Ticks examined for a hard move
        max_duration_seconds: Longest span a hard move may cover
        min_samples: Ticks required before evaluating
        bb_period: Bollinger band period for squeeze detection
        bb_std_dev: Bollinger band width in standard deviations
        squeeze_threshold: Band width below which volatility is squeezing
    """
    position_size_pct: float = config.POSITION_SIZE_PCT
    gap_threshold: float = config.GAP_THRESHOLD
    move_threshold: float = config.MOVE_THRESHOLD
    exit_gap_threshold: float = config.EXIT_GAP_THRESHOLD
    max_hold_minutes: float = config.MAX_HOLD_MINUTES
    max_positions: int = config.MAX_POSITIONS
    min_liquidity: float = config.MIN_LIQUIDITY
    max_drawdown: float = config.MAX_DRAWDOWN
    stop_loss_pct: float = config.STOP_LOSS_PCT
    lookback_samples: int = 60
    max_duration_seconds: float = 60.0
    min_samples: int = 30
    bb_period: int = config.BB_PERIOD
    bb_std_dev: float = config.BB_STD_DEV
    squeeze_threshold: float = config.VOLATILITY_SQUEEZE_THRESHOLD

    def validate(self) -> bool:
        """Validate configuration parameters."""
        if not 0 < self.position_size_pct <= 1:
            raise ValueError("position_size_pct must be between 0 and 1")
        if not 0 <= self.gap_threshold < 0.5:
            raise ValueError("gap_threshold must be between 0 and 0.5")
        if self.move_threshold <= 0:
            raise ValueError("move_threshold must be positive")
        if self.exit_gap_threshold < 0:
            raise ValueError("exit_gap_threshold must be non-negative")
        if self.max_hold_minutes <= 0:
            raise ValueError("max_hold_minutes must be positive")
        if self.max_positions < 1:
            raise ValueError("max_positions must be at least 1")
        if self.min_samples < 2 or self.lookback_samples < 2:
            raise ValueError("min_samples and lookback_samples must be at least 2")
        if self.bb_period < 2:
            raise ValueError("bb_period must be at least 2")
        if not 0 <= self.stop_loss_pct < 1:
            raise ValueError("stop_loss_pct must be between 0 and 1")
        return True

    @classmethod
    def from_env(cls) -> "StrategyConfig":
        """Build a validated config from the environment-backed constants."""
        strategy_config = cls()
        strategy_config.validate()
        return strategy_config


@dataclass
class VolatilityMetrics:
    """Bollinger band state of the price just before a move."""
    standard_deviation: float
    bandwidth: float
    upper: float
    middle: float
    lower: float
    is_squeezing: bool


@dataclass
class PriceMove:
    """
    A crypto price move over the recent history.

    Attributes:
        asset: Asset symbol
        move_percent: (end - start) / start, signed
        duration_seconds: Time between first and last tick of the move
        start_price: Price at the start of the move
        end_price: Price at the end of the move
        timestamp: Timestamp of the last tick (ms)
        volatility_before: Band state before the move, if enough history
    """
    asset: str
    move_percent: float
    duration_seconds: float
    start_price: float
    end_price: float
    timestamp: int
    volatility_before: Optional[VolatilityMetrics] = None

    @property
    def direction(self) -> Optional[Side]:
        if self.move_percent > 0:
            return Side.UP
        if self.move_percent < 0:
            return Side.DOWN
        return None

    @property
    def had_squeeze(self) -> bool:
        return bool(self.volatility_before and self.volatility_before.is_squeezing)


@dataclass
class Signal:
    """
    A detected momentum-lag opportunity.

    Attributes:
        asset: Asset symbol
        suggested_side: Token side to buy
        gap_percent: Distance of the lagging token from fair value
        confidence: Heuristic ranking in [0.5, 0.99]
        entry_price: Current price of the suggested token
        timestamp: Detection time (ms)
        move: The hard move that triggered the signal
        market_id: Condition id of the market, when known
        token_id: Token id of the suggested side, when known
        liquidity: Order book liquidity at detection time
        reason: Human readable summary
    """
    asset: str
    suggested_side: Side
    gap_percent: float
    confidence: float
    entry_price: float
    timestamp: int
    move: Optional[PriceMove] = None
    market_id: str = ""
    token_id: str = ""
    liquidity: float = 0.0
    reason: str = ""


@dataclass
class Position:
    """An open position in one market window."""
    id: str
    market_id: str
    asset: str
    side: Side
    token_id: str
    entry_price: float
    entry_timestamp: int
    size: float
    cost_basis: float
    signal_gap: float
    signal_confidence: float

    def current_value(self, price: float) -> float:
        return self.size * price

    def unrealized_pnl_pct(self, price: float) -> float:
        if self.cost_basis <= 0:
            return 0.0
        return (self.current_value(price) - self.cost_basis) / self.cost_basis

    def hold_minutes(self, now_ms: int) -> float:
        return (now_ms - self.entry_timestamp) / 60000


@dataclass(frozen=True)
class TradeRecord:
    """
    A closed trade. Immutable once created.

    Attributes:
        timestamp: Exit time (ms)
        pnl: proceeds - cost_basis
        pnl_percent: pnl / cost_basis
        hold_time_minutes: Minutes between entry and exit
        is_orphaned, order_latency_ms, slippage, expected_price,
        market_spread_at_entry: Execution diagnostics (live only)
    """
    timestamp: int
    asset: str
    market: str
    side: Side
    entry_price: float
    exit_price: float
    size: float
    cost_basis: float
    proceeds: float
    pnl: float
    pnl_percent: float
    hold_time_minutes: float
    exit_reason: ExitReason
    signal_gap: float
    signal_confidence: float
    is_orphaned: bool = False
    order_latency_ms: Optional[float] = None
    slippage: Optional[float] = None
    expected_price: Optional[float] = None
    market_spread_at_entry: Optional[float] = None

    @classmethod
    def close(cls, position: Position, exit_price: float, exit_timestamp: int,
              exit_reason: ExitReason, **diagnostics) -> "TradeRecord":
        """Build the record for closing `position` at `exit_price`."""
        proceeds = position.size * exit_price
        pnl = proceeds - position.cost_basis
        return cls(
            timestamp=exit_timestamp,
            asset=position.asset,
            market=position.market_id,
            side=position.side,
            entry_price=position.entry_price,
            exit_price=exit_price,
            size=position.size,
            cost_basis=position.cost_basis,
            proceeds=proceeds,
            pnl=pnl,
            pnl_percent=pnl / position.cost_basis if position.cost_basis else 0.0,
            hold_time_minutes=position.hold_minutes(exit_timestamp),
            exit_reason=exit_reason,
            signal_gap=position.signal_gap,
            signal_confidence=position.signal_confidence,
            **diagnostics,
        )

    @property
    def is_win(self) -> bool:
        return self.pnl > 0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["side"] = self.side.value
        data["exit_reason"] = self.exit_reason.value
        return data
