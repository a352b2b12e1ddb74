"""
Volatility and hard-move detection over crypto price history.

All functions are pure and work in data time: "recent" is measured back from
the newest tick, never from the wall clock, so the same code serves the live
feed and backtest replay.
"""
import statistics
from typing import List, Optional, Sequence

from ..feeds.models import PriceTick
from .models import PriceMove, VolatilityMetrics


def bollinger_bands(prices: Sequence[float], period: int = 20,
                    std_dev: float = 2.0) -> Optional[VolatilityMetrics]:
    """
    Bollinger bands over the last `period` prices.

    Uses the population standard deviation. Band width is
    (upper - lower) / middle. The squeeze flag is left False; see
    volatility_metrics().
    """
    if period < 2 or len(prices) < period:
        return None

    window = list(prices[-period:])
    middle = statistics.fmean(window)
    if middle <= 0:
        return None
    sd = statistics.pstdev(window, mu=middle)
    upper = middle + std_dev * sd
    lower = middle - std_dev * sd

    return VolatilityMetrics(
        standard_deviation=sd / middle,
        bandwidth=(upper - lower) / middle,
        upper=upper,
        middle=middle,
        lower=lower,
        is_squeezing=False,
    )


def volatility_metrics(prices: Sequence[float], period: int = 20, std_dev: float = 2.0,
                       squeeze_threshold: float = 0.02) -> Optional[VolatilityMetrics]:
    """Bollinger bands plus squeeze classification (band width below threshold)."""
    bands = bollinger_bands(prices, period, std_dev)
    if bands is None:
        return None
    bands.is_squeezing = bands.bandwidth < squeeze_threshold
    return bands


def recent_window(history: Sequence[PriceTick], lookback_samples: int,
                  max_duration_seconds: float) -> List[PriceTick]:
    """Last `lookback_samples` ticks, limited to `max_duration_seconds` before the newest."""
    if not history:
        return []
    tail = list(history[-lookback_samples:])
    newest = tail[-1].timestamp
    cutoff = newest - max_duration_seconds * 1000
    return [tick for tick in tail if tick.timestamp >= cutoff]


def measure_move(history: Sequence[PriceTick], asset: str, lookback_samples: int = 60,
                 max_duration_seconds: float = 60.0) -> Optional[PriceMove]:
    """Percent change first -> last over the recent window, regardless of size."""
    window = recent_window(history, lookback_samples, max_duration_seconds)
    if len(window) < 2:
        return None

    start, end = window[0], window[-1]
    return PriceMove(
        asset=asset,
        move_percent=(end.price - start.price) / start.price,
        duration_seconds=(end.timestamp - start.timestamp) / 1000,
        start_price=start.price,
        end_price=end.price,
        timestamp=end.timestamp,
    )


def detect_hard_move(
    history: Sequence[PriceTick],
    asset: str,
    move_threshold: float = 0.02,
    lookback_samples: int = 60,
    max_duration_seconds: float = 60.0,
    volatility_lookback: int = 20,
    std_dev: float = 2.0,
    squeeze_threshold: float = 0.02,
) -> Optional[PriceMove]:
    """
    Find a hard move at the end of `history`.

    A hard move is a change of at least `move_threshold` over the recent
    window. The `volatility_lookback` ticks strictly before the move are
    checked for a squeeze; with too little prior history the move is
    treated as not squeezing.

    Returns:
        PriceMove with volatility_before filled in, or None
    """
    move = measure_move(history, asset, lookback_samples, max_duration_seconds)
    if move is None or abs(move.move_percent) < move_threshold:
        return None

    window = recent_window(history, lookback_samples, max_duration_seconds)
    move_start_ts = window[0].timestamp
    before = [tick.price for tick in history if tick.timestamp < move_start_ts][-volatility_lookback:]

    metrics = None
    if len(before) >= volatility_lookback:
        metrics = volatility_metrics(before, volatility_lookback, std_dev, squeeze_threshold)
    move.volatility_before = metrics or VolatilityMetrics(
        standard_deviation=0.01,
        bandwidth=squeeze_threshold,
        upper=0.0,
        middle=0.0,
        lower=0.0,
        is_squeezing=False,
    )
    return move

