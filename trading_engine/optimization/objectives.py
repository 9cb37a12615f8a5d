"""Objectives: metric -> score, higher is better."""

from __future__ import annotations
import math
from typing import Callable, Dict

from trading_engine.analytics.metrics import PerformanceMetrics
from trading_engine.core.errors import ConfigError

OBJECTIVES: Dict[str, Callable[[PerformanceMetrics], float]] = {
    "sharpe": lambda m: m.sharpe_ratio,
    "sortino": lambda m: m.sortino_ratio,
    "total_return": lambda m: m.total_return_pct,
    "profit_factor": lambda m: m.profit_factor,
    "expectancy": lambda m: m.expectancy,
    # minimized: smaller drawdown scores higher
    "max_drawdown": lambda m: -m.max_drawdown_pct,
}


def check_objective(name: str) -> str:
    if name not in OBJECTIVES:
        raise ConfigError(f"unknown objective {name!r} (known: {sorted(OBJECTIVES)})")
    return name


def score(metrics: PerformanceMetrics, objective: str) -> float:
    value = float(OBJECTIVES[check_objective(objective)](metrics))
    return -math.inf if math.isnan(value) else value
