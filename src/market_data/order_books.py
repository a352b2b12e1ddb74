"""
Order book and market quote stores for Polymarket outcome tokens.

OrderBookStore keeps the latest full snapshot per token. MarketQuoteStore
maps tokens back to their market so a price change on either token updates
the UP/DOWN quote of that market.
"""
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from ..feeds.models import OrderBook, PriceChange
from ..strategy.models import Side

logger = logging.getLogger(__name__)

# Length of one up/down market window
WINDOW_MS = 15 * 60 * 1000


class OrderBookStore:
    """Latest snapshot per token. Each snapshot replaces the previous one."""

    def __init__(self):
        self._books: Dict[str, OrderBook] = {}

    def update(self, book: OrderBook) -> None:
        self._books[book.token_id] = book

    def get(self, token_id: str) -> Optional[OrderBook]:
        return self._books.get(token_id)

    def liquidity(self, token_id: str) -> float:
        book = self._books.get(token_id)
        return book.total_liquidity if book else 0.0

    def __len__(self) -> int:
        return len(self._books)


@dataclass
class MarketQuote:
    """
    Current implied probabilities of one 15-minute market.

    Attributes:
        condition_id: Market condition id
        asset: Underlying asset symbol
        up_token_id: Token paying out if the asset ends higher
        down_token_id: Token paying out otherwise
        end_time: Window end (ms)
        up_price: Latest UP token price (0-1)
        down_price: Latest DOWN token price (0-1)
        liquidity_up: Book liquidity of the UP token
        liquidity_down: Book liquidity of the DOWN token
        timestamp: Last update (ms), 0 until the first update
    """
    condition_id: str
    asset: str
    up_token_id: str
    down_token_id: str
    end_time: int
    up_price: float = 0.5
    down_price: float = 0.5
    liquidity_up: float = 0.0
    liquidity_down: float = 0.0
    timestamp: int = 0

    @property
    def start_time(self) -> int:
        return self.end_time - WINDOW_MS

    @property
    def liquidity(self) -> float:
        return self.liquidity_up + self.liquidity_down

    def price_for(self, side: Side) -> float:
        return self.up_price if side is Side.UP else self.down_price

    def token_for(self, side: Side) -> str:
        return self.up_token_id if side is Side.UP else self.down_token_id

    def liquidity_for(self, side: Side) -> float:
        return self.liquidity_up if side is Side.UP else self.liquidity_down


class MarketQuoteStore:
    """Tracked markets keyed by condition id, with a token -> market index."""

    def __init__(self):
        self._quotes: Dict[str, MarketQuote] = {}
        self._token_index: Dict[str, Tuple[str, Side]] = {}

    def register(self, quote: MarketQuote) -> None:
        self._quotes[quote.condition_id] = quote
        self._token_index[quote.up_token_id] = (quote.condition_id, Side.UP)
        self._token_index[quote.down_token_id] = (quote.condition_id, Side.DOWN)
        logger.info(f"Tracking {quote.asset} market {quote.condition_id[:16]}")

    def remove(self, condition_id: str) -> Optional[MarketQuote]:
        quote = self._quotes.pop(condition_id, None)
        if quote is not None:
            self._token_index.pop(quote.up_token_id, None)
            self._token_index.pop(quote.down_token_id, None)
        return quote

    def get(self, condition_id: str) -> Optional[MarketQuote]:
        return self._quotes.get(condition_id)

    def for_asset(self, asset: str) -> List[MarketQuote]:
        return [q for q in self._quotes.values() if q.asset == asset]

    def markets(self) -> List[MarketQuote]:
        return list(self._quotes.values())

    def apply_price_change(self, change: PriceChange) -> Optional[MarketQuote]:
        """Update the owning market's quote. Unknown tokens are ignored."""
        entry = self._token_index.get(change.token_id)
        if entry is None:
            return None
        quote = self._quotes[entry[0]]
        if entry[1] is Side.UP:
            quote.up_price = change.price
        else:
            quote.down_price = change.price
        quote.timestamp = max(quote.timestamp, change.timestamp)
        return quote

    def apply_book(self, book: OrderBook) -> Optional[MarketQuote]:
        """Record book liquidity; seed the price from the mid before any trade."""
        entry = self._token_index.get(book.token_id)
        if entry is None:
            return None
        quote = self._quotes[entry[0]]
        if entry[1] is Side.UP:
            quote.liquidity_up = book.total_liquidity
        else:
            quote.liquidity_down = book.total_liquidity

        if quote.timestamp == 0 and book.mid_price is not None:
            if entry[1] is Side.UP:
                quote.up_price = book.mid_price
            else:
                quote.down_price = book.mid_price
        return quote

    def __len__(self) -> int:
        return len(self._quotes)
