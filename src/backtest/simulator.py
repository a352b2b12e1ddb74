"""
Market Simulator for the Momentum-Lag Backtester.

Builds back-to-back 15-minute windows per asset and a 1Hz price path for
each one. A real crypto path is fetched from the CLOB price-history endpoint
when available; otherwise a random walk is synthesized, sometimes with an
injected hard move.

Implied probabilities follow the crypto path with a lag:
    target_up   = clamp(0.5 + 5 * cumulative_move, 0.01, 0.99)
    target_down = clamp(1 - (0.5 + 5 * cumulative_move), 0.01, 0.99)
    price      += (target - price) * lag
where lag is 0.005 inside a hard move and 0.08 otherwise. The slow catch-up
during hard moves is the gap the strategy trades.
"""
import logging
import random
from typing import Any, Dict, List, Optional

import requests

from .models import HardMove, HistoricalDataPoint, SimulatedMarket, WINDOW_MS
from ..config import CLOB_HOST
from ..strategy.models import Side

logger = logging.getLogger(__name__)

BASE_PRICES = {
    "BTC": 65000.0,
    "ETH": 3500.0,
    "SOL": 150.0,
    "XRP": 0.55,
}

SAMPLE_INTERVAL_MS = 1000
BASE_VOLATILITY = 0.0001  # per second

HARD_MOVE_PROBABILITY = 0.40
SQUEEZE_PROBABILITY = 0.6
SQUEEZE_VOL_FACTOR = 0.3
HARD_MOVE_VOL_FACTOR = 5
SQUEEZE_END_BEFORE_MOVE_MS = 30000

PROBABILITY_SENSITIVITY = 5
LAG_DURING_MOVE = 0.005
LAG_NORMAL = 0.08


def _clamp(value: float, low: float = 0.01, high: float = 0.99) -> float:
    return max(low, min(high, value))


class ImpliedProbabilityModel:
    """Lagged UP/DOWN prices tracking a crypto path."""

    def __init__(self):
        self.up_price = 0.5
        self.down_price = 0.5

    def step(self, cumulative_move: float, in_hard_move: bool) -> None:
        target_up = 0.5 + cumulative_move * PROBABILITY_SENSITIVITY
        target_down = 1 - target_up
        lag = LAG_DURING_MOVE if in_hard_move else LAG_NORMAL
        self.up_price += (_clamp(target_up) - self.up_price) * lag
        self.down_price += (_clamp(target_down) - self.down_price) * lag


class MarketSimulator:
    """
    Generates simulated market windows and their price paths.

    Example:
        simulator = MarketSimulator(seed=42)
        markets = simulator.generate_markets(start_ms, end_ms, ["BTC"])
        data = simulator.get_historical_data(markets[0])
        print(markets[0].outcome, len(data))
    """

    def __init__(
        self,
        host: str = CLOB_HOST,
        seed: Optional[int] = None,
        use_historical: bool = True,
        timeout: float = 30.0,
    ):
        """
        Args:
            host: CLOB host serving /prices-history
            seed: Seed for the synthetic random walk
            use_historical: Try the endpoint before synthesizing
            timeout: Request timeout in seconds
        """
        self.host = host.rstrip("/")
        self.use_historical = use_historical
        self.timeout = timeout
        self.rng = random.Random(seed)
        self.historical_windows = 0
        self.synthetic_windows = 0

    @staticmethod
    def generate_markets(start_ms: int, end_ms: int, assets: List[str]) -> List[SimulatedMarket]:
        """Back-to-back 15-minute windows for every asset in [start_ms, end_ms)."""
        markets = []
        current = start_ms
        while current < end_ms:
            for asset in assets:
                markets.append(SimulatedMarket.for_window(asset, current))
            current += WINDOW_MS
        return markets

    # -------------------------------------------------------------------------
    # Historical data
    # -------------------------------------------------------------------------

    def fetch_price_history(self, market: SimulatedMarket) -> Optional[List[Dict[str, Any]]]:
        """
        Request the window's price history. Safe to call from worker threads.

        Returns:
            Raw [{"t": seconds, "p": price}] points, or None if unavailable
        """
        if not self.use_historical:
            return None
        params = {
            "market": market.condition_id,
            "start_ts": market.start_time // 1000,
            "end_ts": market.end_time // 1000,
            "interval": 1,
        }
        try:
            response = requests.get(f"{self.host}/prices-history", params=params, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            logger.debug(f"No price history for {market.condition_id}: {e}")
            return None

        history = data.get("history") if isinstance(data, dict) else None
        if not history:
            return None
        return history

    def get_historical_data(self, market: SimulatedMarket,
                            history: Optional[List[Dict[str, Any]]] = None,
                            fetch: bool = True) -> List[HistoricalDataPoint]:
        """
        Price path for a window; sets market.outcome.

        Args:
            market: Window to build
            history: Previously fetched raw history, if any
            fetch: Fetch now when no history was passed in
        """
        if history is None and fetch:
            history = self.fetch_price_history(market)
        if history:
            data = self.from_price_history(market, history)
            if data:
                self.historical_windows += 1
                return data
        self.synthetic_windows += 1
        return self.synthesize(market)

    def from_price_history(self, market: SimulatedMarket,
                           history: List[Dict[str, Any]]) -> List[HistoricalDataPoint]:
        """Turn fetched points into a path, deriving implied prices with the lag model."""
        points = []
        for raw in history:
            try:
                timestamp = int(float(raw["t"]) * 1000)
                price = float(raw["p"])
            except (KeyError, TypeError, ValueError):
                continue
            if price > 0:
                points.append((timestamp, price))
        if not points:
            return []
        points.sort(key=lambda point: point[0])

        start_price = points[0][1]
        model = ImpliedProbabilityModel()
        data = []
        for timestamp, price in points:
            model.step((price - start_price) / start_price, in_hard_move=False)
            data.append(HistoricalDataPoint(timestamp, price, model.up_price, model.down_price))

        final_move = (points[-1][1] - start_price) / start_price
        market.outcome = Side.UP if final_move > 0 else Side.DOWN
        return data

    # -------------------------------------------------------------------------
    # Synthesis
    # -------------------------------------------------------------------------

    def random_hard_move(self) -> Optional[HardMove]:
        """Draw the window's hard move, or None (60% of windows)."""
        rng = self.rng
        has_hard_move = rng.random() < HARD_MOVE_PROBABILITY
        direction = 1 if rng.random() < 0.5 else -1
        start_offset_ms = int(rng.random() * 3 * 60 * 1000)
        duration_seconds = 20 + int(rng.random() * 40)
        magnitude = 0.03 + rng.random() * 0.04
        if not has_hard_move:
            return None
        squeeze = rng.random() < SQUEEZE_PROBABILITY
        return HardMove(start_offset_ms, duration_seconds, magnitude, direction, squeeze)

    def synthesize(self, market: SimulatedMarket,
                   hard_move: Optional[HardMove] = None) -> List[HistoricalDataPoint]:
        """
        Synthesize a 1Hz path for the window; sets market.outcome.

        Args:
            market: Window to build
            hard_move: Forced move; drawn at random when omitted
        """
        if hard_move is None:
            hard_move = self.random_hard_move()

        base_price = BASE_PRICES.get(market.asset, 100.0)
        crypto_price = base_price
        model = ImpliedProbabilityModel()

        if hard_move:
            move_start = market.start_time + hard_move.start_offset_ms
            move_end = move_start + hard_move.duration_seconds * 1000
        else:
            move_start = move_end = None

        data = []
        current = market.start_time
        while current < market.end_time:
            in_hard_move = move_start is not None and move_start <= current < move_end

            if hard_move and hard_move.squeeze and current < move_start - SQUEEZE_END_BEFORE_MOVE_MS:
                volatility = BASE_VOLATILITY * SQUEEZE_VOL_FACTOR
            elif in_hard_move:
                volatility = BASE_VOLATILITY * HARD_MOVE_VOL_FACTOR
            else:
                volatility = BASE_VOLATILITY

            if in_hard_move:
                step = hard_move.magnitude / hard_move.duration_seconds * hard_move.direction
                change = step + (self.rng.random() - 0.5) * BASE_VOLATILITY
            else:
                change = (self.rng.random() - 0.5) * 2 * volatility

            crypto_price *= 1 + change
            model.step((crypto_price - base_price) / base_price, in_hard_move)
            data.append(HistoricalDataPoint(current, crypto_price, model.up_price, model.down_price))
            current += SAMPLE_INTERVAL_MS

        final_move = (crypto_price - base_price) / base_price
        market.outcome = Side.UP if final_move > 0 else Side.DOWN
        return data
