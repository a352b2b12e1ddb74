"""In-memory market state fed by the dispatcher."""

from .price_history import PriceHistory, PriceHistoryStore
from .order_books import MarketQuote, MarketQuoteStore, OrderBookStore

__all__ = [
    "PriceHistory",
    "PriceHistoryStore",
    "MarketQuote",
    "MarketQuoteStore",
    "OrderBookStore",
]
