"""
Momentum-lag detector.

When the underlying crypto makes a hard move, the 15-minute up/down market
often keeps pricing the losing side above fair value for a short while. The
detector measures that gap and turns it into a ranked Signal.
"""
import logging
from typing import Optional, Sequence, Tuple

from ..feeds.models import PriceTick
from .models import PriceMove, Side, Signal, StrategyConfig
from .volatility import detect_hard_move, measure_move

logger = logging.getLogger(__name__)

FAIR_VALUE = 0.50

# The lagging side must still be priced above this to count as mispriced
LAG_PRICE_FLOOR = 0.55

HIGH_LIQUIDITY = 5000.0


def calculate_gap(move_percent: float, up_price: float,
                  down_price: float) -> Tuple[float, Optional[Side]]:
    """
    Gap between the lagging token and fair value.

    An up move with DOWN still above 0.55 suggests buying UP, and the
    reverse for a down move. Otherwise there is no gap.

    Returns:
        (gap, suggested side) or (0.0, None)
    """
    if move_percent > 0 and down_price > LAG_PRICE_FLOOR:
        return down_price - FAIR_VALUE, Side.UP
    if move_percent < 0 and up_price > LAG_PRICE_FLOOR:
        return up_price - FAIR_VALUE, Side.DOWN
    return 0.0, None


def calculate_confidence(gap: float, move: PriceMove, liquidity: float = 0.0) -> float:
    """
    Heuristic ranking score in [0.5, 0.99].

    This orders signals against each other. It is not a win probability.
    """
    confidence = 0.5
    confidence += min(gap / 0.10, 0.2)
    confidence += min(abs(move.move_percent) / 0.05, 0.15)
    if move.duration_seconds < 30:
        confidence += 0.1
    if move.had_squeeze:
        confidence += 0.1
    if liquidity > HIGH_LIQUIDITY:
        confidence += 0.05
    return min(confidence, 0.99)


class MomentumLagDetector:
    """
    Evaluates price history against current implied probabilities.

    Example:
        detector = MomentumLagDetector(StrategyConfig())
        signal = detector.evaluate(history, "BTC", up_price=0.40, down_price=0.60)
        if signal:
            print(signal.suggested_side, signal.gap_percent)
    """

    def __init__(self, config: Optional[StrategyConfig] = None):
        self.config = config or StrategyConfig()
        self.config.validate()

    def detect_move(self, history: Sequence[PriceTick], asset: str) -> Optional[PriceMove]:
        if len(history) < self.config.min_samples:
            return None
        return detect_hard_move(
            history,
            asset,
            move_threshold=self.config.move_threshold,
            lookback_samples=self.config.lookback_samples,
            max_duration_seconds=self.config.max_duration_seconds,
            volatility_lookback=self.config.bb_period,
            std_dev=self.config.bb_std_dev,
            squeeze_threshold=self.config.squeeze_threshold,
        )

    def evaluate(
        self,
        history: Sequence[PriceTick],
        asset: str,
        up_price: float,
        down_price: float,
        liquidity: float = 0.0,
        market_id: str = "",
        up_token_id: str = "",
        down_token_id: str = "",
    ) -> Optional[Signal]:
        """
        Produce a Signal if a hard move left a large enough gap.

        Args:
            history: Price history snapshot, oldest first
            asset: Asset symbol
            up_price: Current UP token price
            down_price: Current DOWN token price
            liquidity: Book liquidity, used only as a confidence bonus
            market_id, up_token_id, down_token_id: Carried onto the Signal

        Returns:
            Signal or None
        """
        move = self.detect_move(history, asset)
        if move is None:
            return None

        gap, side = calculate_gap(move.move_percent, up_price, down_price)
        if side is None or gap < self.config.gap_threshold:
            return None

        entry_price = up_price if side is Side.UP else down_price
        lagging_price = down_price if side is Side.UP else up_price
        confidence = calculate_confidence(gap, move, liquidity)
        reason = (
            f"{asset} moved {move.move_percent:+.2%} in {move.duration_seconds:.0f}s, "
            f"{side.opposite.value} still at {lagging_price:.2f}"
        )

        logger.info(
            f"Signal: {asset} {side.value} gap={gap:.3f} conf={confidence:.2f} "
            f"entry={entry_price:.3f}{' (squeeze)' if move.had_squeeze else ''}"
        )
        return Signal(
            asset=asset,
            suggested_side=side,
            gap_percent=gap,
            confidence=confidence,
            entry_price=entry_price,
            timestamp=move.timestamp,
            move=move,
            market_id=market_id,
            token_id=up_token_id if side is Side.UP else down_token_id,
            liquidity=liquidity,
            reason=reason,
        )

    def current_gap(self, history: Sequence[PriceTick], asset: str,
                    up_price: float, down_price: float) -> float:
        """Gap implied by the move across the whole given history (0 if none)."""
        if len(history) < 2:
            return 0.0
        move = measure_move(
            history, asset,
            lookback_samples=len(history),
            max_duration_seconds=float("inf"),
        )
        if move is None:
            return 0.0
        gap, _ = calculate_gap(move.move_percent, up_price, down_price)
        return gap
