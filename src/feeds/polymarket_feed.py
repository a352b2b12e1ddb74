"""
Polymarket CLOB market-channel feed.

Decodes the market channel into PriceChange and OrderBook events. The
channel sends several shapes, so every JSON frame is tried against the
known formats in a fixed priority order:

1. Price-change batch: {"market": ..., "price_changes": [{"asset_id", "price", ...}], "timestamp"}
2. Book snapshot:     {"asset_id", "bids": [{"price", "size"}], "asks": [...], "timestamp"}
3. Legacy typed:      {"type": "price_change" | "book" | "subscribed" | "unsubscribed" | "error", "data": {...}}

Anything else is dropped as unrecognized. Payloads that are not JSON at all
(the server answers some control requests with plain text such as "PONG" or
"INVALID OPERATION") are ignored without attempting a parse.
"""
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Union

from .connection import StreamConnection
from .models import ConnectionEvent, OrderBook, OrderBookLevel, PriceChange
from ..config import POLYMARKET_AUTH_TOKEN, POLYMARKET_WS_URL

logger = logging.getLogger(__name__)

MarketUpdate = Union[PriceChange, OrderBook]

MARKET_CHANNEL = "market"
USER_CHANNEL = "user"


def normalize_share_price(value: Any) -> float:
    """
    Bring a share price onto the 0-1 scale.

    Prices arrive as fractions (0.53), cents (53) or micro-units (530000).
    """
    price = float(value)
    if price <= 1:
        return price
    if price <= 100:
        return price / 100
    return price / 1_000_000


def build_subscription(channel: str, ids: List[str], auth_token: str = "") -> Optional[Dict[str, Any]]:
    """Wire payload for a channel subscription, or None if it cannot be sent."""
    if channel == MARKET_CHANNEL:
        return {"assets_ids": sorted(ids), "type": "market"}
    if channel == USER_CHANNEL:
        if not auth_token:
            logger.warning("Polymarket: user channel requested without an auth token, skipping")
            return None
        return {"type": "subscribe", "channel": "user", "auth": auth_token}
    logger.warning(f"Polymarket: unknown channel {channel}")
    return None


def _timestamp_ms(value: Any) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return int(time.time() * 1000)


def _levels(raw_levels: List[Dict[str, Any]]) -> List[OrderBookLevel]:
    levels = []
    for raw in raw_levels or []:
        if not isinstance(raw, dict):
            continue
        price = float(raw.get("price", 0))
        size = float(raw.get("size", 0))
        if price < 0 or size < 0:
            continue
        levels.append(OrderBookLevel(price=price, size=size))
    return levels


def parse_book(data: Dict[str, Any]) -> Optional[OrderBook]:
    """Build an OrderBook from a snapshot body."""
    token_id = data.get("asset_id") or data.get("market")
    if not token_id:
        return None
    return OrderBook(
        token_id=str(token_id),
        bids=_levels(data.get("bids", [])),
        asks=_levels(data.get("asks", [])),
        timestamp=_timestamp_ms(data.get("timestamp")),
    )


def parse_price_change(data: Dict[str, Any], timestamp: Any = None) -> Optional[PriceChange]:
    token_id = data.get("asset_id")
    if not token_id or data.get("price") is None:
        return None
    return PriceChange(
        token_id=str(token_id),
        price=normalize_share_price(data["price"]),
        timestamp=_timestamp_ms(data.get("timestamp", timestamp)),
    )


@dataclass
class PolymarketFeedStats:
    price_changes: int = 0
    books: int = 0
    unrecognized: int = 0
    malformed: int = 0
    control_replies: int = 0


class PolymarketFeed:
    """
    Prediction-market feed backed by a StreamConnection.

    Decoded PriceChange and OrderBook events go to `on_update` (usually a
    queue's put).

    Example:
        events = Queue()
        feed = PolymarketFeed(on_update=events.put, on_event=events.put)
        feed.subscribe_tokens([up_token_id, down_token_id])
        feed.start()
    """

    NAME = "polymarket"

    def __init__(
        self,
        on_update: Callable[[MarketUpdate], None],
        on_event: Optional[Callable[[ConnectionEvent], None]] = None,
        url: str = POLYMARKET_WS_URL,
        auth_token: str = POLYMARKET_AUTH_TOKEN,
        **connection_kwargs,
    ):
        self.auth_token = auth_token
        self.stats = PolymarketFeedStats()
        self._on_update = on_update
        self.connection = StreamConnection(
            url=url,
            name=self.NAME,
            on_message=self.handle_message,
            on_event=on_event,
            subscription_builder=lambda channel, ids: build_subscription(channel, ids, self.auth_token),
            **connection_kwargs,
        )

    def start(self) -> None:
        logger.info("Starting Polymarket feed")
        self.connection.connect()

    def stop(self) -> None:
        self.connection.disconnect()

    @property
    def is_connected(self) -> bool:
        return self.connection.is_connected

    def subscribe_tokens(self, token_ids: List[str]) -> None:
        """Subscribe to market-channel updates for outcome tokens."""
        self.connection.subscribe(MARKET_CHANNEL, token_ids)

    def unsubscribe_tokens(self, token_ids: List[str]) -> None:
        self.connection.unsubscribe(MARKET_CHANNEL, token_ids)

    def subscribe_user(self, market_ids: List[str]) -> None:
        """Subscribe to the authenticated user channel for the given markets."""
        self.connection.subscribe(USER_CHANNEL, market_ids)

    # -------------------------------------------------------------------------
    # Decoding
    # -------------------------------------------------------------------------

    def handle_message(self, message: str) -> None:
        """Decode one payload and forward every resulting event."""
        for update in self.decode(message):
            self._on_update(update)

    def decode(self, message: str) -> List[MarketUpdate]:
        text = message.strip() if isinstance(message, str) else ""
        if not text.startswith(("{", "[")):
            self.stats.control_replies += 1
            logger.debug(f"Polymarket: control reply {text[:40]!r}")
            return []

        try:
            payload = json.loads(text)
        except json.JSONDecodeError as e:
            self.stats.malformed += 1
            logger.warning(f"Polymarket: malformed payload dropped: {e}")
            return []

        frames = payload if isinstance(payload, list) else [payload]
        updates: List[MarketUpdate] = []
        for frame in frames:
            if not isinstance(frame, dict):
                self.stats.unrecognized += 1
                continue
            try:
                updates.extend(self.decode_frame(frame))
            except (TypeError, ValueError, AttributeError) as e:
                self.stats.malformed += 1
                logger.warning(f"Polymarket: malformed frame dropped: {e}")
        return updates

    def decode_frame(self, frame: Dict[str, Any]) -> List[MarketUpdate]:
        """Decode one JSON object, trying each known shape in priority order."""
        if isinstance(frame.get("price_changes"), list):
            return self._decode_price_changes(frame)

        if "bids" in frame and "asks" in frame:
            book = parse_book(frame)
            if book is not None:
                self.stats.books += 1
                return [book]

        if "type" in frame:
            return self._decode_typed(frame)

        self.stats.unrecognized += 1
        logger.debug(f"Polymarket: unrecognized frame keys {sorted(frame.keys())}")
        return []

    def _decode_price_changes(self, frame: Dict[str, Any]) -> List[MarketUpdate]:
        updates: List[MarketUpdate] = []
        for entry in frame["price_changes"]:
            if not isinstance(entry, dict):
                continue
            try:
                change = parse_price_change(entry, frame.get("timestamp"))
            except (TypeError, ValueError) as e:
                logger.warning(f"Polymarket: bad price change {entry}: {e}")
                continue
            if change is not None:
                self.stats.price_changes += 1
                updates.append(change)
        return updates

    def _decode_typed(self, frame: Dict[str, Any]) -> List[MarketUpdate]:
        message_type = frame.get("type")
        data = frame.get("data")

        if message_type == "price_change" and isinstance(data, dict):
            try:
                change = parse_price_change(data, frame.get("timestamp"))
            except (TypeError, ValueError) as e:
                logger.warning(f"Polymarket: bad price change {data}: {e}")
                return []
            if change is not None:
                self.stats.price_changes += 1
                return [change]
            return []

        if message_type == "book" and isinstance(data, dict):
            book = parse_book(data)
            if book is not None:
                self.stats.books += 1
                return [book]
            return []

        if message_type in ("subscribed", "unsubscribed"):
            logger.debug(f"Polymarket: {message_type} {frame.get('channel', '')} {frame.get('market', '')}")
            return []

        if message_type == "error":
            logger.error(f"Polymarket: server error message: {data}")
            return []

        self.stats.unrecognized += 1
        logger.debug(f"Polymarket: unknown message type {message_type}")
        return []
