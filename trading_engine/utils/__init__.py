"""Utils: Telegram, timeframes, exchange filters."""

from trading_engine.utils.exchange_filters import SymbolFilters, parse_symbol_filters, round_price, round_quantity
from trading_engine.utils.telegram import TelegramNotifier, notifier_from_config, send_telegram
from trading_engine.utils.timeframes import periods_per_year, timeframe_minutes, timeframe_seconds

__all__ = [
    "SymbolFilters",
    "TelegramNotifier",
    "notifier_from_config",
    "parse_symbol_filters",
    "periods_per_year",
    "round_price",
    "round_quantity",
    "send_telegram",
    "timeframe_minutes",
    "timeframe_seconds",
]
