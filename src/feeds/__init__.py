"""
Streaming ingestion for Binance spot trades and the Polymarket CLOB.

Both feeds share StreamConnection for reconnect, heartbeat and subscription
replay, and hand typed events to a FeedDispatcher queue.
"""

from .models import (
    ConnectionEvent,
    ConnectionEventKind,
    OrderBook,
    OrderBookLevel,
    PriceChange,
    PriceTick,
)
from .connection import ConnectionState, StreamConnection, reconnect_delay_ms
from .binance_feed import BinanceFeed
from .polymarket_feed import PolymarketFeed, normalize_share_price
from .dispatcher import FeedDispatcher

__all__ = [
    "ConnectionEvent",
    "ConnectionEventKind",
    "OrderBook",
    "OrderBookLevel",
    "PriceChange",
    "PriceTick",
    "ConnectionState",
    "StreamConnection",
    "reconnect_delay_ms",
    "BinanceFeed",
    "PolymarketFeed",
    "normalize_share_price",
    "FeedDispatcher",
]
