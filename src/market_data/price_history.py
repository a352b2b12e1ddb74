"""
Bounded per-asset crypto price history.

Each asset keeps at most `max_samples` ticks and nothing older than
`max_age_ms` before its newest tick. Ticks are kept in arrival order, so an
out-of-order tick is stored where it arrived and not re-sorted.
"""
from collections import deque
from typing import Deque, Dict, List, Optional

from ..feeds.models import PriceTick

DEFAULT_MAX_SAMPLES = 600
DEFAULT_MAX_AGE_MS = 10 * 60 * 1000


class PriceHistory:
    """Ticks for a single asset."""

    def __init__(self, asset: str, max_samples: int = DEFAULT_MAX_SAMPLES,
                 max_age_ms: int = DEFAULT_MAX_AGE_MS):
        self.asset = asset
        self.max_age_ms = max_age_ms
        self._ticks: Deque[PriceTick] = deque(maxlen=max_samples)
        self._newest_ts = 0

    def append(self, tick: PriceTick) -> None:
        if tick.price <= 0:
            raise ValueError(f"price must be positive, got {tick.price}")
        self._ticks.append(tick)
        self._newest_ts = max(self._newest_ts, tick.timestamp)
        self._trim()

    def _trim(self) -> None:
        cutoff = self._newest_ts - self.max_age_ms
        while self._ticks and self._ticks[0].timestamp < cutoff:
            self._ticks.popleft()

    def snapshot(self) -> List[PriceTick]:
        """Copy of the current ticks, oldest first."""
        return list(self._ticks)

    @property
    def latest(self) -> Optional[PriceTick]:
        return self._ticks[-1] if self._ticks else None

    def __len__(self) -> int:
        return len(self._ticks)


class PriceHistoryStore:
    """
    PriceHistory for every asset seen on the crypto feed.

    Only the dispatcher thread writes to the store.
    """

    def __init__(self, max_samples: int = DEFAULT_MAX_SAMPLES,
                 max_age_ms: int = DEFAULT_MAX_AGE_MS):
        self.max_samples = max_samples
        self.max_age_ms = max_age_ms
        self._histories: Dict[str, PriceHistory] = {}

    def append(self, tick: PriceTick) -> None:
        history = self._histories.get(tick.asset)
        if history is None:
            history = PriceHistory(tick.asset, self.max_samples, self.max_age_ms)
            self._histories[tick.asset] = history
        history.append(tick)

    def get(self, asset: str) -> List[PriceTick]:
        """Snapshot of an asset's history (empty if never seen)."""
        history = self._histories.get(asset)
        return history.snapshot() if history else []

    def latest_price(self, asset: str) -> Optional[float]:
        history = self._histories.get(asset)
        if history is None or history.latest is None:
            return None
        return history.latest.price

    def assets(self) -> List[str]:
        return list(self._histories.keys())

    def __len__(self) -> int:
        return sum(len(h) for h in self._histories.values())
