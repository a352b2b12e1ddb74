"""CSV export of closed trades."""
import csv
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Union

from ..strategy.models import TradeRecord

logger = logging.getLogger(__name__)

CSV_FIELDS = [
    "timestamp",
    "asset",
    "market",
    "side",
    "entry_price",
    "exit_price",
    "size",
    "cost_basis",
    "proceeds",
    "pnl",
    "pnl_percent",
    "hold_time_minutes",
    "exit_reason",
    "signal_gap",
    "signal_confidence",
    "is_orphaned",
    "order_latency_ms",
    "slippage",
    "expected_price",
    "market_spread_at_entry",
]


def trade_to_row(trade: TradeRecord) -> Dict[str, Any]:
    """Flatten a trade into CSV columns; timestamps become ISO-8601 UTC."""
    row = trade.to_dict()
    row["timestamp"] = datetime.fromtimestamp(trade.timestamp / 1000, tz=timezone.utc).isoformat()
    for key in ("entry_price", "exit_price"):
        row[key] = f"{row[key]:.4f}"
    for key in ("size", "cost_basis", "proceeds", "pnl"):
        row[key] = f"{row[key]:.4f}"
    row["pnl_percent"] = f"{trade.pnl_percent:.6f}"
    row["hold_time_minutes"] = f"{trade.hold_time_minutes:.2f}"
    row["signal_gap"] = f"{trade.signal_gap:.4f}"
    row["signal_confidence"] = f"{trade.signal_confidence:.4f}"
    row["is_orphaned"] = "true" if trade.is_orphaned else "false"
    for key in ("order_latency_ms", "slippage", "expected_price", "market_spread_at_entry"):
        if row[key] is None:
            row[key] = ""
    return row


class TradeHistoryWriter:
    """
    Appends trades to a CSV file, writing the header once.

    Example:
        writer = TradeHistoryWriter("./trades.csv")
        writer.write(trade)
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def _needs_header(self) -> bool:
        return not self.path.exists() or self.path.stat().st_size == 0

    def write(self, trade: TradeRecord) -> None:
        self.write_all([trade])

    def write_all(self, trades: Iterable[TradeRecord]) -> int:
        """Append trades. Returns the number of rows written."""
        rows = [trade_to_row(t) for t in trades]
        self.path.parent.mkdir(parents=True, exist_ok=True)
        write_header = self._needs_header()
        with open(self.path, "a", newline="") as f:
            writer = csv.DictWriter(f, fieldnames=CSV_FIELDS)
            if write_header:
                writer.writeheader()
            writer.writerows(rows)
        logger.debug(f"Wrote {len(rows)} trades to {self.path}")
        return len(rows)

    def read_all(self) -> List[Dict[str, str]]:
        if not self.path.exists():
            return []
        with open(self.path, newline="") as f:
            return list(csv.DictReader(f))
