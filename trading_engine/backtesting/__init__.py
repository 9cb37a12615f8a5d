"""Backtesting engine: bar-by-bar replay through the trading session with simulated fills."""

from trading_engine.backtesting.engine import BacktestEngine, BacktestResult, buy_and_hold_pct, validate_history
from trading_engine.backtesting.walk_forward import WalkForwardWindow, bar_times, slice_bars, split_windows

__all__ = [
    "BacktestEngine",
    "BacktestResult",
    "WalkForwardWindow",
    "bar_times",
    "buy_and_hold_pct",
    "slice_bars",
    "split_windows",
    "validate_history",
]
