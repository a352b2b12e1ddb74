"""
Typed events produced by the streaming feeds.

Feed adapters never touch shared state directly. They turn raw payloads into
the events below and put them on a queue consumed by the FeedDispatcher.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


class ConnectionEventKind(Enum):
    """Lifecycle notifications emitted by a StreamConnection."""
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"
    RECONNECTING = "reconnecting"
    MAX_RECONNECT_ATTEMPTS = "max_reconnect_attempts"


@dataclass
class PriceTick:
    """
    A single crypto spot trade.

    Attributes:
        asset: Asset symbol (BTC, ETH, SOL, XRP)
        price: Trade price, always positive
        timestamp: Trade time in milliseconds
    """
    asset: str
    price: float
    timestamp: int


@dataclass
class OrderBookLevel:
    """One price level of an order book."""
    price: float
    size: float


@dataclass
class OrderBook:
    """
    Full order book snapshot for one outcome token.

    Attributes:
        token_id: CLOB token id
        bids: Levels sorted by descending price
        asks: Levels sorted by ascending price
        timestamp: Snapshot time in milliseconds
        total_liquidity: Sum of price * size over both sides
    """
    token_id: str
    bids: List[OrderBookLevel] = field(default_factory=list)
    asks: List[OrderBookLevel] = field(default_factory=list)
    timestamp: int = 0
    total_liquidity: float = 0.0

    def __post_init__(self):
        self.bids = sorted(self.bids, key=lambda level: level.price, reverse=True)
        self.asks = sorted(self.asks, key=lambda level: level.price)
        self.total_liquidity = (
            sum(level.price * level.size for level in self.bids)
            + sum(level.price * level.size for level in self.asks)
        )

    @property
    def best_bid(self) -> Optional[float]:
        return self.bids[0].price if self.bids else None

    @property
    def best_ask(self) -> Optional[float]:
        return self.asks[0].price if self.asks else None

    @property
    def mid_price(self) -> Optional[float]:
        """Mid price, or whichever side is present."""
        if self.best_bid is not None and self.best_ask is not None:
            return (self.best_bid + self.best_ask) / 2
        if self.best_bid is not None:
            return self.best_bid
        return self.best_ask

    @property
    def spread(self) -> Optional[float]:
        if self.best_bid is not None and self.best_ask is not None:
            return self.best_ask - self.best_bid
        return None


@dataclass
class PriceChange:
    """Normalized last-trade / price update for a token (0-1 scale)."""
    token_id: str
    price: float
    timestamp: int


@dataclass
class ConnectionEvent:
    """
    Connection lifecycle event.

    Attributes:
        feed: Name of the feed that emitted the event
        kind: What happened
        detail: Free-form context (error text, attempt number)
    """
    feed: str
    kind: ConnectionEventKind
    detail: str = ""

    @property
    def is_fatal(self) -> bool:
        return self.kind == ConnectionEventKind.MAX_RECONNECT_ATTEMPTS
