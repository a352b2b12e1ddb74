"""
Binance aggTrade feed.

Streams aggregated spot trades for the configured symbols over one combined
WebSocket and converts each trade into a PriceTick.

Payload (raw stream):
    {"e": "aggTrade", "E": 1672515782136, "s": "BTCUSDT", "p": "65000.10",
     "q": "0.012", "T": 1672515782134, ...}

Combined streams wrap the same body as {"stream": "...", "data": {...}}.
"""
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from .connection import StreamConnection
from .models import ConnectionEvent, PriceTick
from ..config import BINANCE_SYMBOLS, BINANCE_WS_URL, SUPPORTED_ASSETS

logger = logging.getLogger(__name__)


def build_stream_url(base_url: str, symbols: List[str]) -> str:
    """Combined aggTrade stream URL, e.g. {base}/btcusdt@aggTrade/ethusdt@aggTrade."""
    streams = "/".join(f"{symbol.lower()}@aggTrade" for symbol in symbols)
    return f"{base_url.rstrip('/')}/{streams}"


def symbol_to_asset(symbol: str) -> Optional[str]:
    """Map an exchange symbol like BTCUSDT to its asset (BTC). None if unsupported."""
    upper = symbol.upper()
    for asset in SUPPORTED_ASSETS:
        if upper.startswith(asset):
            return asset
    return None


def parse_agg_trade(data: Dict[str, Any]) -> Optional[PriceTick]:
    """
    Convert an aggTrade payload into a PriceTick.

    Returns None for other event types, unsupported symbols or a
    non-positive price.
    """
    if "data" in data and isinstance(data["data"], dict):
        data = data["data"]

    if data.get("e") != "aggTrade":
        return None

    asset = symbol_to_asset(str(data.get("s", "")))
    if asset is None:
        return None

    try:
        price = float(data["p"])
    except (KeyError, TypeError, ValueError):
        return None
    if price <= 0:
        return None

    timestamp = data.get("T") or data.get("E")
    if timestamp is None:
        return None
    try:
        timestamp = int(timestamp)
    except (TypeError, ValueError):
        return None

    return PriceTick(asset=asset, price=price, timestamp=timestamp)


@dataclass
class FeedStats:
    """Counters for a feed, reset only on restart."""
    ticks: int = 0
    dropped: int = 0


class BinanceFeed:
    """
    Crypto price feed backed by a StreamConnection.

    Parsed ticks are handed to `on_tick` (usually a queue's put) and never
    applied to shared state on the socket thread.

    Example:
        events = Queue()
        feed = BinanceFeed(on_tick=events.put, on_event=events.put)
        feed.start()
    """

    NAME = "binance"

    def __init__(
        self,
        on_tick: Callable[[PriceTick], None],
        on_event: Optional[Callable[[ConnectionEvent], None]] = None,
        symbols: Optional[List[str]] = None,
        base_url: str = BINANCE_WS_URL,
        **connection_kwargs,
    ):
        self.symbols = symbols or list(BINANCE_SYMBOLS)
        self.url = build_stream_url(base_url, self.symbols)
        self.stats = FeedStats()
        self._on_tick = on_tick
        self.connection = StreamConnection(
            url=self.url,
            name=self.NAME,
            on_message=self.handle_message,
            on_event=on_event,
            **connection_kwargs,
        )

    def start(self) -> None:
        logger.info(f"Starting Binance feed for {', '.join(self.symbols)}")
        self.connection.connect()

    def stop(self) -> None:
        self.connection.disconnect()

    @property
    def is_connected(self) -> bool:
        return self.connection.is_connected

    def handle_message(self, message: str) -> None:
        """Decode one raw payload; malformed payloads are logged and dropped."""
        try:
            data = json.loads(message)
        except (json.JSONDecodeError, TypeError) as e:
            self.stats.dropped += 1
            logger.warning(f"Binance: malformed payload dropped: {e}")
            return

        if not isinstance(data, dict):
            self.stats.dropped += 1
            return

        tick = parse_agg_trade(data)
        if tick is None:
            self.stats.dropped += 1
            return

        self.stats.ticks += 1
        self._on_tick(tick)
