"""
Market discovery for 15-minute crypto up/down markets.

Markets resolve every 15 minutes (:00, :15, :30, :45) and use a predictable
Gamma slug: {asset}-updown-15m-{end_unix_ts}. The timestamp is the window's
END time, e.g. btc-updown-15m-1767729600 ends at 2026-01-06 20:00:00 UTC.
"""
import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

import requests

from ..config import GAMMA_API_URL, SUPPORTED_ASSETS
from ..market_data.order_books import MarketQuote

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 900


@dataclass
class Market15Min:
    """An active 15-minute up/down market."""

    asset: str
    condition_id: str
    question: str
    slug: str
    up_token_id: str
    down_token_id: str
    up_price: float
    down_price: float
    liquidity: float
    end_time: int  # Unix seconds

    @property
    def seconds_to_resolution(self) -> int:
        return max(0, self.end_time - int(time.time()))

    @property
    def is_tradeable(self) -> bool:
        """More than 60s left before resolution."""
        return self.seconds_to_resolution > 60

    def to_quote(self) -> MarketQuote:
        """Seed a MarketQuote for the live session."""
        return MarketQuote(
            condition_id=self.condition_id,
            asset=self.asset,
            up_token_id=self.up_token_id,
            down_token_id=self.down_token_id,
            end_time=self.end_time * 1000,
            up_price=self.up_price,
            down_price=self.down_price,
        )


def _json_list(value: Any) -> List[Any]:
    """Gamma returns some list fields as JSON-encoded strings."""
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError:
            return []
    return value if isinstance(value, list) else []


def _parse_end_time(data: Dict[str, Any]) -> int:
    end_date = data.get("endDate") or data.get("endDateIso")
    if isinstance(end_date, str) and end_date:
        try:
            return int(datetime.fromisoformat(end_date.replace("Z", "+00:00")).timestamp())
        except ValueError:
            pass
    elif isinstance(end_date, (int, float)):
        return int(end_date)

    # Fall back to the slug suffix
    suffix = str(data.get("slug", "")).rsplit("-", 1)[-1]
    if suffix.isdigit():
        return int(suffix)
    return int(time.time()) + WINDOW_SECONDS


def parse_market(data: Dict[str, Any], asset: str) -> Optional[Market15Min]:
    """
    Parse a Gamma market into Market15Min.

    Outcomes are "Up"/"Down" (older markets "Yes"/"No"); token ids and prices
    are matched to outcomes by index.
    """
    outcomes = _json_list(data.get("outcomes"))
    prices = _json_list(data.get("outcomePrices"))
    token_ids = _json_list(data.get("clobTokenIds"))

    if len(outcomes) < 2 or len(prices) < 2 or len(token_ids) < 2:
        logger.warning(f"Market {data.get('slug')} has incomplete outcome data")
        return None

    up_idx = down_idx = None
    for i, outcome in enumerate(outcomes):
        label = str(outcome).upper()
        if label in ("UP", "YES"):
            up_idx = i
        elif label in ("DOWN", "NO"):
            down_idx = i
    if up_idx is None or down_idx is None:
        logger.warning(f"Could not find Up/Down outcomes in {outcomes}")
        return None

    try:
        return Market15Min(
            asset=asset.upper(),
            condition_id=data.get("conditionId") or data.get("condition_id", ""),
            question=data.get("question", ""),
            slug=data.get("slug", ""),
            up_token_id=str(token_ids[up_idx]),
            down_token_id=str(token_ids[down_idx]),
            up_price=float(prices[up_idx]),
            down_price=float(prices[down_idx]),
            liquidity=float(data.get("liquidity") or data.get("liquidityNum") or 0),
            end_time=_parse_end_time(data),
        )
    except (TypeError, ValueError) as e:
        logger.warning(f"Failed to parse market {data.get('slug')}: {e}")
        return None


class MarketFinder:
    """
    Finds the active 15-minute market per asset on the Gamma API.

    Example:
        finder = MarketFinder(["BTC", "ETH"])
        for market in finder.find_active_markets():
            print(market.slug, market.up_price, market.down_price)
    """

    def __init__(self, assets: Optional[List[str]] = None, gamma_url: str = GAMMA_API_URL,
                 timeout: float = 10):
        self.assets = [a.upper() for a in (assets or SUPPORTED_ASSETS)]
        self.gamma_url = gamma_url.rstrip("/")
        self.timeout = timeout

    @staticmethod
    def next_window_end(now: Optional[float] = None) -> int:
        """Unix timestamp of the next 15-minute boundary."""
        now = int(time.time() if now is None else now)
        return ((now // WINDOW_SECONDS) + 1) * WINDOW_SECONDS

    @staticmethod
    def build_slug(asset: str, end_ts: int) -> str:
        return f"{asset.lower()}-updown-15m-{end_ts}"

    def fetch_market(self, slug: str) -> Optional[Dict[str, Any]]:
        """Fetch one market by exact slug; None if missing or on error."""
        try:
            response = requests.get(
                f"{self.gamma_url}/markets", params={"slug": slug}, timeout=self.timeout
            )
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            logger.debug(f"Failed to fetch market {slug}: {e}")
            return None

        if isinstance(data, list) and data:
            return data[0]
        return None

    def find_market_for_asset(self, asset: str, now: Optional[float] = None) -> Optional[Market15Min]:
        """
        Current tradeable market for an asset.

        Checks the current window first, then the next one since assets can
        be offset by a window.
        """
        base_ts = self.next_window_end(now)
        for end_ts in (base_ts, base_ts + WINDOW_SECONDS):
            raw = self.fetch_market(self.build_slug(asset, end_ts))
            if not raw:
                continue
            market = parse_market(raw, asset)
            if market and market.is_tradeable:
                return market
        return None

    def find_active_markets(self) -> List[Market15Min]:
        markets = []
        for asset in self.assets:
            market = self.find_market_for_asset(asset)
            if market:
                logger.debug(f"Found market: {market.slug} (ends in {market.seconds_to_resolution}s)")
                markets.append(market)
        logger.info(f"Found {len(markets)} active 15-minute markets for {self.assets}")
        return markets
