"""
Tests for the feed adapters and the dispatcher.

Validates:
- Binance aggTrade parsing and malformed payload handling
- Polymarket frame decoding priority and price normalization
- Subscription payloads
- Dispatcher routing and error isolation
"""

import json
from typing import List

import pytest

from src.feeds.binance_feed import BinanceFeed, build_stream_url, parse_agg_trade, symbol_to_asset
from src.feeds.dispatcher import FeedDispatcher
from src.feeds.models import OrderBook, OrderBookLevel, PriceChange, PriceTick
from src.feeds.polymarket_feed import (
    PolymarketFeed,
    build_subscription,
    normalize_share_price,
)


# =============================================================================
# Test Fixtures
# =============================================================================

@pytest.fixture
def ticks() -> List[PriceTick]:
    return []


@pytest.fixture
def binance_feed(ticks) -> BinanceFeed:
    return BinanceFeed(on_tick=ticks.append, symbols=["BTCUSDT", "ETHUSDT"])


@pytest.fixture
def updates() -> list:
    return []


@pytest.fixture
def polymarket_feed(updates) -> PolymarketFeed:
    return PolymarketFeed(on_update=updates.append, auth_token="")


def agg_trade(symbol="BTCUSDT", price="65000.10", trade_time=1700000000000):
    return {"e": "aggTrade", "E": trade_time + 2, "s": symbol, "p": price, "q": "0.01", "T": trade_time}


# =============================================================================
# Binance
# =============================================================================

class TestBinanceParsing:
    """Tests for aggTrade parsing."""

    def test_stream_url(self):
        url = build_stream_url("wss://stream.binance.com:9443/ws/", ["BTCUSDT", "ethusdt"])
        assert url == "wss://stream.binance.com:9443/ws/btcusdt@aggTrade/ethusdt@aggTrade"

    def test_symbol_to_asset(self):
        assert symbol_to_asset("BTCUSDT") == "BTC"
        assert symbol_to_asset("solusdt") == "SOL"
        assert symbol_to_asset("DOGEUSDT") is None

    def test_parse_trade(self):
        tick = parse_agg_trade(agg_trade())
        assert tick == PriceTick(asset="BTC", price=65000.10, timestamp=1700000000000)

    def test_parse_combined_stream_wrapper(self):
        tick = parse_agg_trade({"stream": "ethusdt@aggTrade", "data": agg_trade("ETHUSDT", "3500")})
        assert tick.asset == "ETH"
        assert tick.price == 3500.0

    def test_falls_back_to_event_time(self):
        data = agg_trade()
        del data["T"]
        assert parse_agg_trade(data).timestamp == 1700000000002

    def test_rejects_other_events_and_bad_prices(self):
        assert parse_agg_trade({"e": "trade", "s": "BTCUSDT", "p": "1", "T": 1}) is None
        assert parse_agg_trade(agg_trade(price="0")) is None
        assert parse_agg_trade(agg_trade(price="-5")) is None
        assert parse_agg_trade(agg_trade(price="abc")) is None
        assert parse_agg_trade(agg_trade(symbol="DOGEUSDT")) is None

    def test_rejects_bad_timestamps(self):
        assert parse_agg_trade({"e": "aggTrade", "s": "BTCUSDT", "p": "1", "T": "abc"}) is None
        assert parse_agg_trade({"e": "aggTrade", "s": "BTCUSDT", "p": "1", "T": None, "E": [1]}) is None


class TestBinanceFeed:
    """Tests for BinanceFeed message handling."""

    def test_valid_message_forwarded(self, binance_feed, ticks):
        binance_feed.handle_message(json.dumps(agg_trade()))
        assert len(ticks) == 1
        assert binance_feed.stats.ticks == 1

    def test_malformed_message_dropped(self, binance_feed, ticks):
        binance_feed.handle_message("{not json")
        binance_feed.handle_message("[1, 2]")
        binance_feed.handle_message(json.dumps({"result": None, "id": 1}))
        assert ticks == []
        assert binance_feed.stats.dropped == 3

    def test_bad_timestamp_dropped(self, binance_feed, ticks):
        binance_feed.handle_message(json.dumps({"e": "aggTrade", "s": "BTCUSDT", "p": "1", "T": "abc"}))
        assert ticks == []
        assert binance_feed.stats.dropped == 1

    def test_url_built_from_symbols(self, binance_feed):
        assert binance_feed.url.endswith("/btcusdt@aggTrade/ethusdt@aggTrade")
        assert binance_feed.is_connected is False


# =============================================================================
# Polymarket
# =============================================================================

class TestNormalizeSharePrice:
    """Tests for share price scaling."""

    def test_fraction_unchanged(self):
        assert normalize_share_price("0.53") == pytest.approx(0.53)
        assert normalize_share_price(1) == 1.0

    def test_cents(self):
        assert normalize_share_price(53) == pytest.approx(0.53)
        assert normalize_share_price("100") == pytest.approx(1.0)

    def test_micro_units(self):
        assert normalize_share_price(530000) == pytest.approx(0.53)


class TestSubscriptionPayloads:
    """Tests for the wire subscription payloads."""

    def test_market_channel(self):
        payload = build_subscription("market", ["b", "a"])
        assert payload == {"assets_ids": ["a", "b"], "type": "market"}

    def test_user_channel_requires_token(self):
        assert build_subscription("user", ["m1"], auth_token="") is None
        payload = build_subscription("user", ["m1"], auth_token="secret")
        assert payload == {"type": "subscribe", "channel": "user", "auth": "secret"}

    def test_unknown_channel(self):
        assert build_subscription("trades", ["x"]) is None


class TestPolymarketDecoding:
    """Tests for frame decoding in priority order."""

    def test_price_change_batch(self, polymarket_feed, updates):
        message = json.dumps({
            "market": "0xabc",
            "timestamp": "1700000000000",
            "price_changes": [
                {"asset_id": "up", "price": "0.61"},
                {"asset_id": "down", "price": "39"},
            ],
        })
        polymarket_feed.handle_message(message)

        assert updates == [
            PriceChange(token_id="up", price=0.61, timestamp=1700000000000),
            PriceChange(token_id="down", price=pytest.approx(0.39), timestamp=1700000000000),
        ]

    def test_book_snapshot(self, polymarket_feed, updates):
        message = json.dumps({
            "asset_id": "up",
            "timestamp": 1700000000000,
            "bids": [{"price": "0.48", "size": "100"}, {"price": "0.50", "size": "50"}],
            "asks": [{"price": "0.55", "size": "20"}, {"price": "0.52", "size": "10"}],
        })
        polymarket_feed.handle_message(message)

        assert len(updates) == 1
        book = updates[0]
        assert isinstance(book, OrderBook)
        assert book.best_bid == 0.50
        assert book.best_ask == 0.52
        assert book.total_liquidity == pytest.approx(0.48 * 100 + 0.50 * 50 + 0.55 * 20 + 0.52 * 10)

    def test_price_changes_win_over_book_shape(self, polymarket_feed, updates):
        frame = {
            "asset_id": "up",
            "bids": [],
            "asks": [],
            "price_changes": [{"asset_id": "up", "price": "0.7"}],
            "timestamp": 5,
        }
        polymarket_feed.handle_message(json.dumps(frame))
        assert [type(u) for u in updates] == [PriceChange]

    def test_typed_messages(self, polymarket_feed, updates):
        polymarket_feed.handle_message(json.dumps(
            {"type": "price_change", "data": {"asset_id": "up", "price": 0.44}, "timestamp": 9}
        ))
        polymarket_feed.handle_message(json.dumps(
            {"type": "book", "data": {"asset_id": "down", "bids": [], "asks": [{"price": "0.6", "size": "5"}]}}
        ))
        polymarket_feed.handle_message(json.dumps({"type": "subscribed", "channel": "market"}))

        assert isinstance(updates[0], PriceChange)
        assert updates[0].timestamp == 9
        assert isinstance(updates[1], OrderBook)
        assert len(updates) == 2

    def test_list_of_frames(self, polymarket_feed, updates):
        frames = [
            {"asset_id": "a", "bids": [], "asks": []},
            {"asset_id": "b", "bids": [], "asks": []},
        ]
        polymarket_feed.handle_message(json.dumps(frames))
        assert [u.token_id for u in updates] == ["a", "b"]

    def test_plain_text_ignored(self, polymarket_feed, updates):
        polymarket_feed.handle_message("PONG")
        polymarket_feed.handle_message("INVALID OPERATION")
        assert updates == []
        assert polymarket_feed.stats.control_replies == 2
        assert polymarket_feed.stats.malformed == 0

    def test_malformed_json_counted(self, polymarket_feed, updates):
        polymarket_feed.handle_message("{broken")
        assert updates == []
        assert polymarket_feed.stats.malformed == 1

    def test_bad_frame_in_batch_keeps_the_rest(self, polymarket_feed, updates):
        frames = [
            {"price_changes": [{"asset_id": "a", "price": "0.42"}]},
            {"asset_id": "b", "bids": [{"price": "abc", "size": "10"}], "asks": []},
            {"asset_id": "c", "bids": [["0.5", "10"]], "asks": []},
        ]
        polymarket_feed.handle_message(json.dumps(frames))

        assert [u.token_id for u in updates] == ["a", "c"]
        assert updates[0].price == pytest.approx(0.42)
        assert updates[1].bids == []
        assert polymarket_feed.stats.malformed == 1

    def test_unrecognized_frame(self, polymarket_feed, updates):
        polymarket_feed.handle_message(json.dumps({"hello": "world"}))
        polymarket_feed.handle_message(json.dumps({"type": "last_trade_price"}))
        assert updates == []
        assert polymarket_feed.stats.unrecognized == 2

    def test_subscribe_tokens_remembered(self, polymarket_feed):
        polymarket_feed.subscribe_tokens(["up", "down"])
        assert polymarket_feed.connection.subscriptions == {"market": {"up", "down"}}
        polymarket_feed.unsubscribe_tokens(["up", "down"])
        assert polymarket_feed.connection.subscriptions == {}


# =============================================================================
# Dispatcher
# =============================================================================

class TestFeedDispatcher:
    """Tests for event routing."""

    def test_routes_by_type(self):
        dispatcher = FeedDispatcher()
        seen = []
        dispatcher.register(PriceTick, lambda e: seen.append(("tick", e.asset)))
        dispatcher.register(PriceChange, lambda e: seen.append(("change", e.token_id)))

        dispatcher.put(PriceTick("BTC", 1.0, 1))
        dispatcher.put(PriceChange("up", 0.5, 2))
        dispatcher.put(OrderBookLevel(0.5, 1))

        assert dispatcher.drain() == 3
        assert seen == [("tick", "BTC"), ("change", "up")]
        assert dispatcher.processed == 2

    def test_handler_error_does_not_stop_others(self):
        dispatcher = FeedDispatcher()
        seen = []

        def broken(event):
            raise RuntimeError("boom")

        dispatcher.register(PriceTick, broken)
        dispatcher.register(PriceTick, seen.append)
        dispatcher.put(PriceTick("BTC", 1.0, 1))
        dispatcher.put(PriceTick("ETH", 2.0, 2))
        dispatcher.drain()

        assert [t.asset for t in seen] == ["BTC", "ETH"]
        assert dispatcher.handler_errors == 2

    def test_start_and_stop(self):
        dispatcher = FeedDispatcher()
        dispatcher.start()
        assert dispatcher.is_running
        dispatcher.stop()
        assert not dispatcher.is_running
