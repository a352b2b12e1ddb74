"""
Tests for the price history and order book stores.
"""

import pytest

from src.feeds.models import OrderBook, OrderBookLevel, PriceChange, PriceTick
from src.market_data.order_books import MarketQuote, MarketQuoteStore, OrderBookStore
from src.market_data.price_history import PriceHistory, PriceHistoryStore
from src.strategy.models import Side


# =============================================================================
# Test Fixtures
# =============================================================================

@pytest.fixture
def quote() -> MarketQuote:
    return MarketQuote(
        condition_id="0xcond",
        asset="BTC",
        up_token_id="up",
        down_token_id="down",
        end_time=1_700_000_900_000,
    )


@pytest.fixture
def quotes(quote) -> MarketQuoteStore:
    store = MarketQuoteStore()
    store.register(quote)
    return store


def book(token_id, bids=(), asks=()):
    return OrderBook(
        token_id=token_id,
        bids=[OrderBookLevel(p, s) for p, s in bids],
        asks=[OrderBookLevel(p, s) for p, s in asks],
        timestamp=1,
    )


# =============================================================================
# Price History
# =============================================================================

class TestPriceHistory:
    """Tests for the bounded tick history."""

    def test_keeps_at_most_max_samples(self):
        history = PriceHistory("BTC", max_samples=5)
        for i in range(8):
            history.append(PriceTick("BTC", 100.0 + i, 1000 + i))
        assert len(history) == 5
        assert history.snapshot()[0].price == 103.0
        assert history.latest.price == 107.0

    def test_drops_ticks_older_than_max_age(self):
        history = PriceHistory("BTC", max_age_ms=10_000)
        history.append(PriceTick("BTC", 100.0, 0))
        history.append(PriceTick("BTC", 101.0, 5_000))
        history.append(PriceTick("BTC", 102.0, 12_000))
        assert [t.timestamp for t in history.snapshot()] == [5_000, 12_000]

    def test_rejects_non_positive_price(self):
        history = PriceHistory("BTC")
        with pytest.raises(ValueError):
            history.append(PriceTick("BTC", 0.0, 1))
        assert len(history) == 0

    def test_out_of_order_tick_kept_in_arrival_order(self):
        history = PriceHistory("BTC")
        history.append(PriceTick("BTC", 100.0, 2000))
        history.append(PriceTick("BTC", 99.0, 1000))
        assert [t.timestamp for t in history.snapshot()] == [2000, 1000]

    def test_snapshot_is_a_copy(self):
        history = PriceHistory("BTC")
        history.append(PriceTick("BTC", 100.0, 1))
        snapshot = history.snapshot()
        snapshot.clear()
        assert len(history) == 1


class TestPriceHistoryStore:
    """Tests for per-asset histories."""

    def test_separate_histories_per_asset(self):
        store = PriceHistoryStore()
        store.append(PriceTick("BTC", 65000.0, 1))
        store.append(PriceTick("ETH", 3500.0, 1))
        store.append(PriceTick("BTC", 65100.0, 2))

        assert len(store.get("BTC")) == 2
        assert store.latest_price("BTC") == 65100.0
        assert store.latest_price("ETH") == 3500.0
        assert sorted(store.assets()) == ["BTC", "ETH"]
        assert len(store) == 3

    def test_unknown_asset(self):
        store = PriceHistoryStore()
        assert store.get("SOL") == []
        assert store.latest_price("SOL") is None


# =============================================================================
# Order Books
# =============================================================================

class TestOrderBook:
    """Tests for snapshot derived values."""

    def test_sides_sorted_and_liquidity(self):
        snapshot = book("up", bids=[(0.40, 10), (0.45, 20)], asks=[(0.60, 5), (0.55, 10)])
        assert snapshot.best_bid == 0.45
        assert snapshot.best_ask == 0.55
        assert snapshot.mid_price == pytest.approx(0.50)
        assert snapshot.spread == pytest.approx(0.10)
        assert snapshot.total_liquidity == pytest.approx(4.0 + 9.0 + 3.0 + 5.5)

    def test_one_sided_book(self):
        snapshot = book("up", asks=[(0.6, 1)])
        assert snapshot.best_bid is None
        assert snapshot.mid_price == 0.6
        assert snapshot.spread is None


class TestOrderBookStore:
    """Tests for the latest-snapshot store."""

    def test_snapshot_replaces_previous(self):
        store = OrderBookStore()
        store.update(book("up", bids=[(0.5, 100)]))
        store.update(book("up", bids=[(0.5, 10)]))
        assert store.liquidity("up") == pytest.approx(5.0)
        assert len(store) == 1

    def test_unknown_token(self):
        store = OrderBookStore()
        assert store.get("nope") is None
        assert store.liquidity("nope") == 0.0


class TestMarketQuoteStore:
    """Tests for token -> market quote updates."""

    def test_price_change_updates_side(self, quotes):
        quotes.apply_price_change(PriceChange("up", 0.62, 10))
        quotes.apply_price_change(PriceChange("down", 0.40, 11))
        quote = quotes.get("0xcond")

        assert quote.up_price == 0.62
        assert quote.down_price == 0.40
        assert quote.timestamp == 11
        assert quote.price_for(Side.UP) == 0.62
        assert quote.token_for(Side.DOWN) == "down"

    def test_unknown_token_ignored(self, quotes):
        assert quotes.apply_price_change(PriceChange("other", 0.9, 1)) is None

    def test_book_sets_liquidity_and_seeds_price(self, quotes):
        quotes.apply_book(book("up", bids=[(0.58, 1000)], asks=[(0.60, 1000)]))
        quote = quotes.get("0xcond")
        assert quote.liquidity_up == pytest.approx(1180.0)
        assert quote.up_price == pytest.approx(0.59)
        assert quote.liquidity == pytest.approx(1180.0)

    def test_book_does_not_override_traded_price(self, quotes):
        quotes.apply_price_change(PriceChange("down", 0.45, 5))
        quotes.apply_book(book("down", bids=[(0.30, 10)], asks=[(0.32, 10)]))
        assert quotes.get("0xcond").down_price == 0.45

    def test_remove_clears_token_index(self, quotes):
        removed = quotes.remove("0xcond")
        assert removed is not None
        assert len(quotes) == 0
        assert quotes.apply_price_change(PriceChange("up", 0.7, 1)) is None

    def test_for_asset(self, quotes):
        assert [q.condition_id for q in quotes.for_asset("BTC")] == ["0xcond"]
        assert quotes.for_asset("ETH") == []
