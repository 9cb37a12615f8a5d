"""Data: bar store, market event normalization, historical loading."""

from trading_engine.data.store import TimeSeriesStore
from trading_engine.data.feed import MarketDataNormalizer, TradeAggregator
from trading_engine.data.history import bars_from_frame, load_csv, filter_range

__all__ = [
    "TimeSeriesStore",
    "MarketDataNormalizer",
    "TradeAggregator",
    "bars_from_frame",
    "load_csv",
    "filter_range",
]
