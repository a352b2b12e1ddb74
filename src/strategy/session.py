"""
Live paper-trading session.

TradingSession owns both feeds, the market stores, the runner and its
ledger, and the dispatcher that ties them together. Nothing is global: the
scripts build one session and pass it around.

Threading:
- each feed's socket thread only enqueues events
- the dispatcher thread applies every event (ticks, price changes, books,
  connection events, market registration and expiry)
- the caller's thread runs run(), which discovers markets over HTTP and
  enqueues the results, so stores are never touched from two threads
"""
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..api.market_finder import MarketFinder
from ..feeds.binance_feed import BinanceFeed
from ..feeds.dispatcher import FeedDispatcher
from ..feeds.models import ConnectionEvent, OrderBook, PriceChange, PriceTick
from ..feeds.polymarket_feed import PolymarketFeed
from ..market_data.order_books import MarketQuote, MarketQuoteStore, OrderBookStore
from ..market_data.price_history import PriceHistoryStore
from ..reporting.trade_history import TradeHistoryWriter
from .models import ExitReason, StrategyConfig, TradeRecord
from .runner import PositionLedger, StrategyRunner
from ..config import INITIAL_BALANCE

logger = logging.getLogger(__name__)


@dataclass
class MarketDiscovered:
    """A market found by discovery, to be tracked from the dispatcher thread."""
    quote: MarketQuote


@dataclass
class ExpireMarkets:
    """Close and drop markets whose window has ended."""
    now_ms: int


class TradingSession:
    """
    Context object for a live paper-trading run.

    Example:
        session = TradingSession(StrategyConfig.from_env())
        session.run(duration_seconds=3600)
        print(session.status())
    """

    def __init__(
        self,
        config: Optional[StrategyConfig] = None,
        initial_balance: float = INITIAL_BALANCE,
        dispatcher: Optional[FeedDispatcher] = None,
        crypto_feed: Optional[BinanceFeed] = None,
        market_feed: Optional[PolymarketFeed] = None,
        market_finder: Optional[MarketFinder] = None,
        trade_writer: Optional[TradeHistoryWriter] = None,
    ):
        self.config = config or StrategyConfig.from_env()
        self.dispatcher = dispatcher or FeedDispatcher()
        self.price_history = PriceHistoryStore()
        self.order_books = OrderBookStore()
        self.quotes = MarketQuoteStore()
        self.ledger = PositionLedger(initial_balance, max_positions=self.config.max_positions)
        self.runner = StrategyRunner(self.config, self.ledger, risk_checks=True)
        self.trade_writer = trade_writer
        self.market_finder = market_finder

        self.crypto_feed = crypto_feed or BinanceFeed(
            on_tick=self.dispatcher.put, on_event=self.dispatcher.put
        )
        self.market_feed = market_feed or PolymarketFeed(
            on_update=self.dispatcher.put, on_event=self.dispatcher.put
        )

        self.fatal_error: Optional[str] = None
        self.started_at: Optional[float] = None
        self._stop_event = threading.Event()

        self.dispatcher.register(PriceTick, self.on_price_tick)
        self.dispatcher.register(PriceChange, self.on_price_change)
        self.dispatcher.register(OrderBook, self.on_order_book)
        self.dispatcher.register(ConnectionEvent, self.on_connection_event)
        self.dispatcher.register(MarketDiscovered, self.on_market_discovered)
        self.dispatcher.register(ExpireMarkets, self.on_expire_markets)

    # -------------------------------------------------------------------------
    # Event handlers (dispatcher thread)
    # -------------------------------------------------------------------------

    def on_price_tick(self, tick: PriceTick) -> None:
        self.price_history.append(tick)
        for quote in self.quotes.for_asset(tick.asset):
            if quote.start_time > tick.timestamp:
                continue
            self.evaluate_market(quote, tick.timestamp)

    def on_price_change(self, change: PriceChange) -> None:
        self.quotes.apply_price_change(change)

    def on_order_book(self, book: OrderBook) -> None:
        self.order_books.update(book)
        self.quotes.apply_book(book)

    def on_connection_event(self, event: ConnectionEvent) -> None:
        if event.is_fatal:
            self.fatal_error = f"{event.feed}: reconnect attempts exhausted"
            logger.critical(f"Stopping session, {self.fatal_error}")
            self._stop_event.set()
        else:
            logger.info(f"[{event.feed}] {event.kind.value} {event.detail}".rstrip())

    def on_market_discovered(self, event: MarketDiscovered) -> None:
        self.add_market(event.quote)

    def on_expire_markets(self, event: ExpireMarkets) -> None:
        self.expire_markets(event.now_ms)

    # -------------------------------------------------------------------------
    # Markets and positions
    # -------------------------------------------------------------------------

    def add_market(self, quote: MarketQuote) -> bool:
        """Track a market and subscribe its tokens. False if already tracked."""
        if self.quotes.get(quote.condition_id) is not None:
            return False
        self.quotes.register(quote)
        self.market_feed.subscribe_tokens([quote.up_token_id, quote.down_token_id])
        return True

    def evaluate_market(self, quote: MarketQuote, timestamp: int) -> Optional[TradeRecord]:
        """Run entry/exit rules for one market against the asset's history."""
        history = self.price_history.get(quote.asset)
        trade = self.runner.on_tick(
            quote.condition_id,
            quote.asset,
            history,
            quote.up_price,
            quote.down_price,
            timestamp,
            quote.end_time,
            liquidity=quote.liquidity,
            up_token_id=quote.up_token_id,
            down_token_id=quote.down_token_id,
        )
        if trade is not None:
            self._record(trade)
        return trade

    def expire_markets(self, now_ms: int) -> List[TradeRecord]:
        """Close positions in ended windows at the last quote and stop tracking them."""
        closed = []
        for quote in self.quotes.markets():
            if quote.end_time > now_ms:
                continue
            position = self.ledger.get(quote.condition_id)
            if position is not None:
                trade = self.runner.close_position(
                    quote.condition_id,
                    quote.price_for(position.side),
                    now_ms,
                    ExitReason.MARKET_RESOLVED,
                )
                if trade is not None:
                    self._record(trade)
                    closed.append(trade)
            self.quotes.remove(quote.condition_id)
            self.ledger.forget(quote.condition_id)
            self.market_feed.unsubscribe_tokens([quote.up_token_id, quote.down_token_id])
            logger.info(f"Stopped tracking expired market {quote.condition_id[:16]}")
        return closed

    def close_all(self, reason: ExitReason = ExitReason.MANUAL) -> List[TradeRecord]:
        """Close every open position at its current quote."""
        closed = []
        now_ms = int(time.time() * 1000)
        for market_id, position in list(self.ledger.positions.items()):
            quote = self.quotes.get(market_id)
            price = quote.price_for(position.side) if quote else position.entry_price
            trade = self.runner.close_position(market_id, price, now_ms, reason)
            if trade is not None:
                self._record(trade)
                closed.append(trade)
        return closed

    def _record(self, trade: TradeRecord) -> None:
        if self.trade_writer is None:
            return
        try:
            self.trade_writer.write(trade)
        except OSError as e:
            logger.error(f"Failed to write trade history: {e}")

    # -------------------------------------------------------------------------
    # Lifecycle (caller thread)
    # -------------------------------------------------------------------------

    def discover_markets(self) -> int:
        """Look up current markets and hand new ones to the dispatcher."""
        if self.market_finder is None:
            return 0
        found = 0
        for market in self.market_finder.find_active_markets():
            self.dispatcher.put(MarketDiscovered(market.to_quote()))
            found += 1
        return found

    def start(self) -> None:
        self.started_at = time.time()
        self._stop_event.clear()
        self.dispatcher.start()
        self.crypto_feed.start()
        self.market_feed.start()
        logger.info("Trading session started")

    def stop(self, close_positions: bool = True) -> None:
        """Stop feeds and dispatcher, then close open positions at their last quote."""
        self._stop_event.set()
        self.crypto_feed.stop()
        self.market_feed.stop()
        self.dispatcher.stop()
        if close_positions:
            self.close_all()
        logger.info(
            f"Trading session stopped: {len(self.ledger.trades)} trades, "
            f"balance ${self.ledger.balance:,.2f}"
        )

    def request_stop(self) -> None:
        self._stop_event.set()

    @property
    def is_stopping(self) -> bool:
        return self._stop_event.is_set()

    def run(self, duration_seconds: Optional[float] = None, refresh_interval: float = 60.0) -> None:
        """
        Run until the duration elapses, a stop is requested, or a feed gives up.

        Markets are rediscovered and expired every `refresh_interval` seconds.
        """
        self.start()
        deadline = time.time() + duration_seconds if duration_seconds else None
        try:
            while not self._stop_event.is_set():
                self.discover_markets()
                self.dispatcher.put(ExpireMarkets(int(time.time() * 1000)))
                wait = refresh_interval
                if deadline is not None:
                    wait = min(wait, deadline - time.time())
                    if wait <= 0:
                        break
                self._stop_event.wait(wait)
        except KeyboardInterrupt:
            logger.info("Interrupted")
        finally:
            self.stop()

    def status(self) -> Dict[str, Any]:
        return {
            "running": self.started_at is not None and not self._stop_event.is_set(),
            "uptime_seconds": int(time.time() - self.started_at) if self.started_at else 0,
            "crypto_connected": self.crypto_feed.is_connected,
            "market_connected": self.market_feed.is_connected,
            "markets_tracked": len(self.quotes),
            "assets_with_history": self.price_history.assets(),
            "open_positions": self.ledger.open_count,
            "trades": len(self.ledger.trades),
            "balance": round(self.ledger.balance, 2),
            "drawdown": round(self.ledger.drawdown, 4),
            "paused": self.runner.is_paused,
            "fatal_error": self.fatal_error,
            "positions": [
                {
                    "market": p.market_id,
                    "asset": p.asset,
                    "side": p.side.value,
                    "entry_price": p.entry_price,
                    "size": round(p.size, 4),
                }
                for p in self.ledger.positions.values()
            ],
        }
