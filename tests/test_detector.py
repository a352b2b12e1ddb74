"""
Tests for hard-move detection and the momentum-lag detector.

Validates:
- Bollinger band and squeeze computation
- Hard-move windows measured in data time
- Gap rule and confidence scoring
- Signal generation
"""

import pytest
from typing import List

from src.feeds.models import PriceTick
from src.strategy.detector import MomentumLagDetector, calculate_confidence, calculate_gap
from src.strategy.models import PriceMove, Side, StrategyConfig, VolatilityMetrics
from src.strategy.volatility import (
    bollinger_bands,
    detect_hard_move,
    measure_move,
    recent_window,
    volatility_metrics,
)


# =============================================================================
# Test Fixtures
# =============================================================================

def make_history(flat_ticks: int, move_ticks: int, start: float = 100.0,
                 move: float = 0.03, asset: str = "BTC") -> List[PriceTick]:
    """Flat prices followed by a linear move, one tick per second."""
    ticks = [PriceTick(asset, start, i * 1000) for i in range(flat_ticks)]
    for j in range(1, move_ticks + 1):
        price = start * (1 + move * j / move_ticks)
        ticks.append(PriceTick(asset, price, (flat_ticks + j - 1) * 1000))
    return ticks


@pytest.fixture
def config() -> StrategyConfig:
    return StrategyConfig(gap_threshold=0.03, move_threshold=0.02)


@pytest.fixture
def detector(config) -> MomentumLagDetector:
    return MomentumLagDetector(config)


@pytest.fixture
def rising_history() -> List[PriceTick]:
    """40 flat ticks, then +3% over 20 ticks; 60 ticks spanning 59s."""
    return make_history(40, 20)


@pytest.fixture
def squeeze_history() -> List[PriceTick]:
    """Long flat stretch so the ticks before the move form a squeeze."""
    return make_history(100, 20)


def make_move(move_percent=0.03, duration=45.0, squeeze=False) -> PriceMove:
    return PriceMove(
        asset="BTC",
        move_percent=move_percent,
        duration_seconds=duration,
        start_price=100.0,
        end_price=100.0 * (1 + move_percent),
        timestamp=0,
        volatility_before=VolatilityMetrics(0.0, 0.0, 0.0, 0.0, 0.0, squeeze),
    )


# =============================================================================
# Volatility
# =============================================================================

class TestBollingerBands:
    """Tests for band computation."""

    def test_flat_prices_squeeze(self):
        metrics = volatility_metrics([100.0] * 20, period=20, squeeze_threshold=0.02)
        assert metrics.bandwidth == 0.0
        assert metrics.is_squeezing

    def test_volatile_prices_not_squeezing(self):
        prices = [100.0, 110.0] * 10
        metrics = volatility_metrics(prices, period=20, squeeze_threshold=0.02)
        # population sd of alternating 100/110 is 5, middle 105
        assert metrics.middle == pytest.approx(105.0)
        assert metrics.upper == pytest.approx(115.0)
        assert metrics.lower == pytest.approx(95.0)
        assert metrics.bandwidth == pytest.approx(20.0 / 105.0)
        assert not metrics.is_squeezing

    def test_uses_last_period_prices(self):
        prices = [1.0] * 5 + [50.0] * 20
        assert bollinger_bands(prices, period=20).middle == pytest.approx(50.0)

    def test_insufficient_prices(self):
        assert bollinger_bands([100.0] * 19, period=20) is None


class TestHardMove:
    """Tests for move measurement."""

    def test_recent_window_limited_by_duration(self):
        history = [PriceTick("BTC", 100.0, i * 10_000) for i in range(20)]
        window = recent_window(history, lookback_samples=60, max_duration_seconds=60)
        assert [t.timestamp for t in window] == [130_000, 140_000, 150_000, 160_000, 170_000, 180_000, 190_000]

    def test_measure_move(self, rising_history):
        move = measure_move(rising_history, "BTC")
        assert move.move_percent == pytest.approx(0.03)
        assert move.duration_seconds == pytest.approx(59.0)
        assert move.direction is Side.UP

    def test_detects_move_above_threshold(self, rising_history):
        move = detect_hard_move(rising_history, "BTC", move_threshold=0.02)
        assert move is not None
        # no ticks before the window, so no squeeze
        assert move.had_squeeze is False

    def test_ignores_small_move(self):
        history = make_history(40, 20, move=0.01)
        assert detect_hard_move(history, "BTC", move_threshold=0.02) is None

    def test_squeeze_before_move(self, squeeze_history):
        move = detect_hard_move(squeeze_history, "BTC", move_threshold=0.02)
        assert move is not None
        assert move.had_squeeze is True

    def test_down_move(self):
        history = make_history(40, 20, move=-0.04)
        move = detect_hard_move(history, "BTC", move_threshold=0.02)
        assert move.direction is Side.DOWN
        assert move.move_percent == pytest.approx(-0.04)


# =============================================================================
# Gap and Confidence
# =============================================================================

class TestCalculateGap:
    """Tests for the lagging-side gap rule."""

    def test_up_move_with_lagging_down(self):
        gap, side = calculate_gap(0.03, up_price=0.40, down_price=0.60)
        assert gap == pytest.approx(0.10)
        assert side is Side.UP

    def test_down_move_with_lagging_up(self):
        gap, side = calculate_gap(-0.03, up_price=0.62, down_price=0.38)
        assert gap == pytest.approx(0.12)
        assert side is Side.DOWN

    def test_lagging_side_must_exceed_floor(self):
        assert calculate_gap(0.03, up_price=0.45, down_price=0.55) == (0.0, None)
        assert calculate_gap(-0.03, up_price=0.55, down_price=0.45) == (0.0, None)

    def test_market_already_repriced(self):
        assert calculate_gap(0.03, up_price=0.70, down_price=0.30) == (0.0, None)

    def test_no_move(self):
        assert calculate_gap(0.0, up_price=0.40, down_price=0.60) == (0.0, None)


class TestCalculateConfidence:
    """Tests for the confidence heuristic."""

    def test_base_components(self):
        # 0.5 + 0.2 (gap term capped) + 0.15 (move term capped)
        assert calculate_confidence(0.05, make_move()) == pytest.approx(0.85)

    def test_small_inputs(self):
        # 0.5 + 0.01/0.1 + 0.0025/0.05
        conf = calculate_confidence(0.01, make_move(move_percent=0.0025))
        assert conf == pytest.approx(0.65)

    def test_bonuses(self):
        base = calculate_confidence(0.005, make_move(move_percent=0.001))
        fast = calculate_confidence(0.005, make_move(move_percent=0.001, duration=10))
        squeezed = calculate_confidence(0.005, make_move(move_percent=0.001, squeeze=True))
        liquid = calculate_confidence(0.005, make_move(move_percent=0.001), liquidity=6000)
        assert fast - base == pytest.approx(0.10)
        assert squeezed - base == pytest.approx(0.10)
        assert liquid - base == pytest.approx(0.05)

    def test_capped(self):
        conf = calculate_confidence(0.5, make_move(0.2, duration=5, squeeze=True), liquidity=10000)
        assert conf == 0.99

    def test_never_below_half(self):
        assert calculate_confidence(0.0, make_move(move_percent=0.0)) >= 0.5

    def test_grows_with_gap(self):
        move = make_move()
        values = [calculate_confidence(g, move) for g in (0.0, 0.01, 0.02, 0.05)]
        assert values == sorted(values)

    def test_grows_with_move_size(self):
        for sign in (1, -1):
            values = [
                calculate_confidence(0.05, make_move(move_percent=sign * m))
                for m in (0.0, 0.01, 0.03, 0.1)
            ]
            assert values == sorted(values)
            assert values[0] < values[-1]


# =============================================================================
# Detector
# =============================================================================

class TestMomentumLagDetector:
    """Tests for Signal generation."""

    def test_signal_on_lagging_market(self, detector, rising_history):
        signal = detector.evaluate(
            rising_history, "BTC", up_price=0.40, down_price=0.60,
            market_id="m1", up_token_id="up", down_token_id="down",
        )
        assert signal is not None
        assert signal.suggested_side is Side.UP
        assert signal.gap_percent == pytest.approx(0.10)
        assert signal.entry_price == 0.40
        assert signal.token_id == "up"
        assert signal.market_id == "m1"
        assert signal.timestamp == rising_history[-1].timestamp
        assert signal.confidence == pytest.approx(0.85)

    def test_squeeze_raises_confidence(self, detector, squeeze_history):
        signal = detector.evaluate(squeeze_history, "BTC", up_price=0.40, down_price=0.60)
        assert signal.confidence == pytest.approx(0.95)

    def test_no_signal_below_gap_threshold(self, rising_history):
        detector = MomentumLagDetector(StrategyConfig(gap_threshold=0.10))
        assert detector.evaluate(rising_history, "BTC", up_price=0.42, down_price=0.58) is None

    def test_no_signal_when_repriced(self, detector, rising_history):
        assert detector.evaluate(rising_history, "BTC", up_price=0.70, down_price=0.30) is None

    def test_needs_min_samples(self, detector):
        history = make_history(10, 19)
        assert len(history) < detector.config.min_samples
        assert detector.evaluate(history, "BTC", up_price=0.40, down_price=0.60) is None

    def test_current_gap_over_whole_history(self, detector, rising_history):
        assert detector.current_gap(rising_history, "BTC", 0.40, 0.60) == pytest.approx(0.10)
        assert detector.current_gap(rising_history, "BTC", 0.60, 0.40) == 0.0
        assert detector.current_gap(rising_history[:1], "BTC", 0.40, 0.60) == 0.0

    def test_invalid_config_rejected(self):
        with pytest.raises(ValueError):
            MomentumLagDetector(StrategyConfig(position_size_pct=0))
