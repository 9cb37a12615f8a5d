"""Analytics: performance tracking and metrics (Sharpe, Sortino, MDD, win rate, etc.)."""

from trading_engine.analytics.metrics import (
    PerformanceMetrics,
    compute_metrics,
    drawdown_series,
    expectancy,
    max_drawdown,
    profit_factor,
    returns_from_equity,
    sharpe_ratio,
    sortino_ratio,
    win_rate,
)
from trading_engine.analytics.tracker import PerformanceSnapshot, PerformanceTracker

__all__ = [
    "PerformanceMetrics",
    "PerformanceSnapshot",
    "PerformanceTracker",
    "compute_metrics",
    "drawdown_series",
    "expectancy",
    "max_drawdown",
    "profit_factor",
    "returns_from_equity",
    "sharpe_ratio",
    "sortino_ratio",
    "win_rate",
]
