"""Trade reporting."""

from .trade_history import CSV_FIELDS, TradeHistoryWriter

__all__ = ["CSV_FIELDS", "TradeHistoryWriter"]
