"""
Tests for the backtest MarketSimulator.

Validates:
- Window generation and ids
- Synthetic path shape and determinism
- Injected hard moves and the lagged implied probabilities
- Price-history fetch and fallback to synthesis
"""

from unittest.mock import MagicMock, patch

import pytest
import requests

from src.backtest.models import WINDOW_MS, HardMove, SimulatedMarket
from src.backtest.simulator import ImpliedProbabilityModel, MarketSimulator
from src.strategy.models import Side


START_MS = 1_767_225_600_000  # 2026-01-01 00:00 UTC


# =============================================================================
# Test Fixtures
# =============================================================================

@pytest.fixture
def simulator() -> MarketSimulator:
    return MarketSimulator(seed=42, use_historical=False)


@pytest.fixture
def market() -> SimulatedMarket:
    return SimulatedMarket.for_window("BTC", START_MS)


def mock_response(payload):
    response = MagicMock()
    response.json.return_value = payload
    response.raise_for_status.return_value = None
    return response


# =============================================================================
# Windows
# =============================================================================

class TestGenerateMarkets:
    """Tests for window generation."""

    def test_back_to_back_windows_per_asset(self):
        markets = MarketSimulator.generate_markets(START_MS, START_MS + 60 * 60 * 1000, ["BTC", "ETH"])
        assert len(markets) == 8
        btc = [m for m in markets if m.asset == "BTC"]
        assert [m.start_time for m in btc] == [START_MS + i * WINDOW_MS for i in range(4)]
        assert all(m.end_time - m.start_time == WINDOW_MS for m in markets)

    def test_ids(self, market):
        assert market.condition_id == f"sim-BTC-{START_MS}"
        assert market.up_token_id == f"sim-BTC-up-{START_MS}"
        assert market.down_token_id == f"sim-BTC-down-{START_MS}"
        assert market.outcome is None

    def test_partial_window_included(self):
        markets = MarketSimulator.generate_markets(START_MS, START_MS + 1000, ["SOL"])
        assert len(markets) == 1

    def test_empty_range(self):
        assert MarketSimulator.generate_markets(START_MS, START_MS, ["BTC"]) == []


# =============================================================================
# Synthesis
# =============================================================================

class TestSynthesize:
    """Tests for synthetic price paths."""

    def test_one_point_per_second(self, simulator, market):
        data = simulator.synthesize(market)
        assert len(data) == 900
        assert data[0].timestamp == START_MS
        assert data[-1].timestamp == market.end_time - 1000
        assert market.outcome in (Side.UP, Side.DOWN)

    def test_implied_prices_bounded(self, simulator, market):
        for point in simulator.synthesize(market, HardMove(0, 59, 0.20, -1)):
            assert 0.01 <= point.up_price <= 0.99
            assert 0.01 <= point.down_price <= 0.99
            assert point.crypto_price > 0

    def test_same_seed_same_path(self, market):
        first = MarketSimulator(seed=7, use_historical=False).synthesize(market)
        other = SimulatedMarket.for_window("BTC", START_MS)
        second = MarketSimulator(seed=7, use_historical=False).synthesize(other)
        assert first == second
        assert market.outcome == other.outcome

    def test_forced_hard_move(self, simulator, market):
        data = simulator.synthesize(market, HardMove(60_000, 30, 0.05, 1))
        before, after = data[59], data[89]
        assert after.crypto_price / before.crypto_price > 1.04
        # implied UP barely reacts during the move
        assert after.up_price < 0.6
        assert market.outcome is Side.UP

    def test_outcome_follows_final_price(self, simulator, market):
        data = simulator.synthesize(market, HardMove(0, 30, 0.05, -1))
        assert data[-1].crypto_price < 65000.0
        assert market.outcome is Side.DOWN

    def test_random_hard_move_ranges(self, simulator):
        moves = [simulator.random_hard_move() for _ in range(300)]
        drawn = [m for m in moves if m is not None]
        assert 0 < len(drawn) < len(moves)
        for move in drawn:
            assert 0 <= move.start_offset_ms < 3 * 60 * 1000
            assert 20 <= move.duration_seconds < 60
            assert 0.03 <= move.magnitude < 0.07
            assert move.direction in (1, -1)


class TestImpliedProbabilityModel:
    """Tests for the lagged probability update."""

    def test_normal_lag(self):
        model = ImpliedProbabilityModel()
        model.step(0.02, in_hard_move=False)
        assert model.up_price == pytest.approx(0.5 + 0.1 * 0.08)
        assert model.down_price == pytest.approx(0.5 - 0.1 * 0.08)

    def test_slow_during_hard_move(self):
        model = ImpliedProbabilityModel()
        model.step(0.02, in_hard_move=True)
        assert model.up_price == pytest.approx(0.5 + 0.1 * 0.005)

    def test_target_clamped(self):
        model = ImpliedProbabilityModel()
        for _ in range(500):
            model.step(1.0, in_hard_move=False)
        assert model.up_price == pytest.approx(0.99, abs=1e-6)
        assert model.down_price == pytest.approx(0.01, abs=1e-6)


# =============================================================================
# Historical data
# =============================================================================

class TestHistoricalData:
    """Tests for the price-history endpoint path."""

    def test_uses_fetched_history(self, market):
        simulator = MarketSimulator(seed=1, use_historical=True, host="https://clob.test")
        start_s = START_MS // 1000
        history = [{"t": start_s + i, "p": 100.0 + i * 0.1} for i in range(120)]

        with patch("src.backtest.simulator.requests.get", return_value=mock_response({"history": history})) as get:
            data = simulator.get_historical_data(market)

        get.assert_called_once()
        assert get.call_args.args[0] == "https://clob.test/prices-history"
        assert get.call_args.kwargs["params"]["market"] == market.condition_id
        assert get.call_args.kwargs["timeout"] == 30.0
        assert len(data) == 120
        assert data[0].timestamp == START_MS
        assert data[-1].up_price > 0.5
        assert market.outcome is Side.UP
        assert simulator.historical_windows == 1

    def test_request_failure_falls_back_to_synthetic(self, market):
        simulator = MarketSimulator(seed=1, use_historical=True)
        with patch("src.backtest.simulator.requests.get", side_effect=requests.ConnectionError("down")):
            data = simulator.get_historical_data(market)
        assert len(data) == 900
        assert simulator.synthetic_windows == 1

    def test_empty_history_falls_back(self, market):
        simulator = MarketSimulator(seed=1, use_historical=True)
        with patch("src.backtest.simulator.requests.get", return_value=mock_response({"history": []})):
            assert simulator.fetch_price_history(market) is None

    def test_no_request_when_disabled(self, simulator, market):
        with patch("src.backtest.simulator.requests.get") as get:
            simulator.get_historical_data(market)
        get.assert_not_called()

    def test_bad_points_skipped(self, simulator, market):
        history = [{"t": 1, "p": "x"}, {"p": 1.0}, {"t": 3, "p": 0}, {"t": 2, "p": 10.0}, {"t": 4, "p": 9.0}]
        data = simulator.from_price_history(market, history)
        assert [p.timestamp for p in data] == [2000, 4000]
        assert market.outcome is Side.DOWN
