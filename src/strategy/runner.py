"""
Strategy Runner and Position Ledger.

Shared by the live session and the backtester. The runner applies entry and
exit rules tick by tick; the ledger owns the balance, open positions (at
most one per market window) and closed trade records.

Exit precedence when several conditions hold on the same tick:
    gap closed -> max hold time -> stop loss (live only) -> market resolving
"""
import logging
import uuid
from typing import Dict, List, Optional, Sequence, Set

from ..feeds.models import PriceTick
from .detector import MomentumLagDetector
from .models import ExitReason, Position, Side, Signal, StrategyConfig, TradeRecord
from ..config import INITIAL_BALANCE

logger = logging.getLogger(__name__)

# Forced exit once a window is this close to its end
RESOLUTION_BUFFER_MS = 60 * 1000

# Fixed settlement prices for positions still open when the data ends
WIN_SETTLEMENT_PRICE = 0.95
LOSS_SETTLEMENT_PRICE = 0.05


class PositionLimitError(Exception):
    """Raised when a position cannot be opened in a market."""
    pass


class PositionLedger:
    """
    Balance, open positions and closed trades.

    Position sizing uses the balance at entry time. The balance only changes
    when a position closes (by its pnl).
    A market window is traded at most once: after its position closes it
    cannot be reopened until `forget()` is called for it.
    """

    def __init__(self, initial_balance: float = INITIAL_BALANCE,
                 max_positions: Optional[int] = None):
        if initial_balance <= 0:
            raise ValueError("initial_balance must be positive")
        self.initial_balance = initial_balance
        self.balance = initial_balance
        self.peak_balance = initial_balance
        self.max_drawdown = 0.0
        self.max_positions = max_positions
        self.positions: Dict[str, Position] = {}
        self.trades: List[TradeRecord] = []
        self.closed_markets: Set[str] = set()

    @property
    def open_count(self) -> int:
        return len(self.positions)

    @property
    def drawdown(self) -> float:
        """Current fractional drawdown from the peak balance."""
        if self.peak_balance <= 0:
            return 0.0
        return (self.peak_balance - self.balance) / self.peak_balance

    def has_position(self, market_id: str) -> bool:
        return market_id in self.positions

    def get(self, market_id: str) -> Optional[Position]:
        return self.positions.get(market_id)

    def can_open(self, market_id: str) -> bool:
        if market_id in self.positions or market_id in self.closed_markets:
            return False
        if self.max_positions is not None and len(self.positions) >= self.max_positions:
            return False
        return True

    def open(self, signal: Signal, market_id: str, position_size_pct: float,
             timestamp: int) -> Position:
        """
        Open a position from a signal.

        Raises:
            PositionLimitError: Market already has a position, was already
                traded, or the cap is reached
            ValueError: Entry price outside (0, 1)
        """
        if market_id in self.positions:
            raise PositionLimitError(f"Market {market_id} already has an open position")
        if market_id in self.closed_markets:
            raise PositionLimitError(f"Market {market_id} was already traded this window")
        if self.max_positions is not None and len(self.positions) >= self.max_positions:
            raise PositionLimitError(f"Max positions ({self.max_positions}) reached")
        if not 0 < signal.entry_price < 1:
            raise ValueError(f"entry_price must be in (0, 1), got {signal.entry_price}")

        cost_basis = self.balance * position_size_pct
        position = Position(
            id=uuid.uuid4().hex[:12],
            market_id=market_id,
            asset=signal.asset,
            side=signal.suggested_side,
            token_id=signal.token_id,
            entry_price=signal.entry_price,
            entry_timestamp=timestamp,
            size=cost_basis / signal.entry_price,
            cost_basis=cost_basis,
            signal_gap=signal.gap_percent,
            signal_confidence=signal.confidence,
        )
        self.positions[market_id] = position
        logger.info(
            f"Opened {position.side.value} {position.asset} @ {position.entry_price:.3f} "
            f"size={position.size:.2f} cost=${cost_basis:.2f} [{market_id}]"
        )
        return position

    def close(self, market_id: str, exit_price: float, timestamp: int,
              reason: ExitReason, **diagnostics) -> TradeRecord:
        """Close the market's position and book its pnl."""
        position = self.positions.pop(market_id, None)
        if position is None:
            raise KeyError(f"No open position in market {market_id}")

        trade = TradeRecord.close(position, exit_price, timestamp, reason, **diagnostics)
        self.closed_markets.add(market_id)
        self.balance += trade.pnl
        if self.balance > self.peak_balance:
            self.peak_balance = self.balance
        self.max_drawdown = max(self.max_drawdown, self.drawdown)
        self.trades.append(trade)

        logger.info(
            f"Closed {trade.side.value} {trade.asset} @ {exit_price:.3f} "
            f"pnl=${trade.pnl:+.2f} ({trade.pnl_percent:+.1%}) reason={reason.value}"
        )
        return trade

    def forget(self, market_id: str) -> None:
        """Drop a finished window so its id no longer blocks entries."""
        self.closed_markets.discard(market_id)


class StrategyRunner:
    """
    Applies the momentum-lag entry and exit rules for market windows.

    Example:
        ledger = PositionLedger(10000)
        runner = StrategyRunner(StrategyConfig(), ledger)
        trade = runner.on_tick("cond-1", "BTC", history, up, down, now_ms, window_end_ms)
    """

    def __init__(
        self,
        config: Optional[StrategyConfig] = None,
        ledger: Optional[PositionLedger] = None,
        detector: Optional[MomentumLagDetector] = None,
        risk_checks: bool = False,
    ):
        """
        Args:
            config: Strategy parameters
            ledger: Position ledger (a fresh one if omitted)
            detector: Signal detector (built from config if omitted)
            risk_checks: Enforce live-only rules (liquidity floor, drawdown
                pause, stop loss)
        """
        self.config = config or StrategyConfig()
        self.config.validate()
        self.ledger = ledger or PositionLedger()
        self.detector = detector or MomentumLagDetector(self.config)
        self.risk_checks = risk_checks
        self.signals_seen = 0
        self.signals_rejected = 0

    @property
    def is_paused(self) -> bool:
        return self.risk_checks and self.ledger.drawdown >= self.config.max_drawdown

    # -------------------------------------------------------------------------
    # Entry
    # -------------------------------------------------------------------------

    def evaluate_entry(
        self,
        market_id: str,
        asset: str,
        history: Sequence[PriceTick],
        up_price: float,
        down_price: float,
        timestamp: int,
        liquidity: float = 0.0,
        up_token_id: str = "",
        down_token_id: str = "",
    ) -> Optional[Position]:
        """Open a position if the detector fires and the ledger allows it."""
        if len(history) < self.config.min_samples or not self.ledger.can_open(market_id):
            return None

        signal = self.detector.evaluate(
            history, asset, up_price, down_price,
            liquidity=liquidity,
            market_id=market_id,
            up_token_id=up_token_id,
            down_token_id=down_token_id,
        )
        if signal is None:
            return None
        self.signals_seen += 1

        rejection = self._reject_reason(signal)
        if rejection:
            self.signals_rejected += 1
            logger.info(f"Signal rejected for {asset} [{market_id}]: {rejection}")
            return None

        try:
            return self.ledger.open(signal, market_id, self.config.position_size_pct, timestamp)
        except (PositionLimitError, ValueError) as e:
            self.signals_rejected += 1
            logger.warning(f"Could not open position in {market_id}: {e}")
            return None

    def _reject_reason(self, signal: Signal) -> Optional[str]:
        if not self.risk_checks:
            return None
        if self.is_paused:
            return f"paused, drawdown {self.ledger.drawdown:.1%}"
        if signal.liquidity < self.config.min_liquidity:
            return f"liquidity ${signal.liquidity:.0f} below ${self.config.min_liquidity:.0f}"
        return None

    # -------------------------------------------------------------------------
    # Exit
    # -------------------------------------------------------------------------

    def check_exit(
        self,
        position: Position,
        history: Sequence[PriceTick],
        up_price: float,
        down_price: float,
        timestamp: int,
        window_end: int,
    ) -> Optional[ExitReason]:
        """First exit condition that holds, in precedence order, or None."""
        gap = self.detector.current_gap(history, position.asset, up_price, down_price)
        if gap < self.config.exit_gap_threshold:
            return ExitReason.GAP_CLOSED

        if position.hold_minutes(timestamp) >= self.config.max_hold_minutes:
            return ExitReason.MAX_HOLD_TIME

        if self.risk_checks and self.config.stop_loss_pct > 0:
            current = up_price if position.side is Side.UP else down_price
            if position.unrealized_pnl_pct(current) < -self.config.stop_loss_pct:
                return ExitReason.STOP_LOSS

        if timestamp >= window_end - RESOLUTION_BUFFER_MS:
            return ExitReason.MARKET_RESOLVED

        return None

    def on_tick(
        self,
        market_id: str,
        asset: str,
        history: Sequence[PriceTick],
        up_price: float,
        down_price: float,
        timestamp: int,
        window_end: int,
        liquidity: float = 0.0,
        up_token_id: str = "",
        down_token_id: str = "",
    ) -> Optional[TradeRecord]:
        """
        Process one tick for a market window.

        With an open position only exits are evaluated; otherwise only entry.

        Returns:
            TradeRecord if the position closed on this tick
        """
        position = self.ledger.get(market_id)
        if position is None:
            self.evaluate_entry(
                market_id, asset, history, up_price, down_price, timestamp,
                liquidity=liquidity, up_token_id=up_token_id, down_token_id=down_token_id,
            )
            return None

        reason = self.check_exit(position, history, up_price, down_price, timestamp, window_end)
        if reason is None:
            return None
        exit_price = up_price if position.side is Side.UP else down_price
        return self.ledger.close(market_id, exit_price, timestamp, reason)

    def settle(self, market_id: str, outcome: Side, timestamp: int) -> Optional[TradeRecord]:
        """
        Force-close a position still open when the window's data ends.

        Uses fixed settlement prices: 0.95 on the winning side, 0.05 otherwise.
        """
        position = self.ledger.get(market_id)
        if position is None:
            return None
        exit_price = WIN_SETTLEMENT_PRICE if position.side is outcome else LOSS_SETTLEMENT_PRICE
        return self.ledger.close(market_id, exit_price, timestamp, ExitReason.MARKET_RESOLVED)

    def close_position(self, market_id: str, exit_price: float, timestamp: int,
                       reason: ExitReason = ExitReason.MANUAL) -> Optional[TradeRecord]:
        if not self.ledger.has_position(market_id):
            return None
        return self.ledger.close(market_id, exit_price, timestamp, reason)
