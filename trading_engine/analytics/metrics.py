"""
Performance metrics: Sharpe, Sortino, max drawdown, win rate, profit factor, expectancy.
Ratios work on per-bar equity returns and are annualized from the timeframe;
trade statistics work on net trade P&Ls.
"""

from __future__ import annotations
import math
from dataclasses import asdict, dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np


@dataclass
class PerformanceMetrics:
    """Aggregate performance metrics of one run."""
    total_return_pct: float
    sharpe_ratio: float
    sortino_ratio: float
    max_drawdown: float
    max_drawdown_pct: float
    win_rate: float
    profit_factor: float
    expectancy: float
    total_trades: int
    winning_trades: int
    losing_trades: int
    avg_win: float
    avg_loss: float
    final_equity: float

    def as_dict(self) -> dict:
        return asdict(self)


def returns_from_equity(equity: Sequence[float]) -> List[float]:
    """Simple returns between consecutive equity points (points at <= 0 give no return)."""
    arr = np.asarray(equity, dtype=float)
    if arr.size < 2:
        return []
    prev = arr[:-1]
    rets = np.divide(arr[1:] - prev, prev, out=np.zeros_like(prev), where=prev > 0)
    return rets.tolist()


def sharpe_ratio(returns: Sequence[float], risk_free_rate: float = 0.0, periods_per_year: float = 252.0) -> float:
    """Annualized Sharpe of period returns (0 when flat)."""
    if len(returns) < 2:
        return 0.0
    excess = np.asarray(returns, dtype=float) - risk_free_rate / periods_per_year
    sd = excess.std(ddof=1)
    if sd <= 1e-12:
        return 0.0
    return float(np.sqrt(periods_per_year) * excess.mean() / sd)


def sortino_ratio(returns: Sequence[float], risk_free_rate: float = 0.0, periods_per_year: float = 252.0) -> float:
    """Annualized Sortino: mean excess over downside deviation (target 0)."""
    if len(returns) < 2:
        return 0.0
    excess = np.asarray(returns, dtype=float) - risk_free_rate / periods_per_year
    downside = np.minimum(excess, 0.0)
    dd = math.sqrt(float(np.mean(downside ** 2)))
    if dd <= 1e-12:
        return 0.0
    return float(np.sqrt(periods_per_year) * excess.mean() / dd)


def drawdown_series(equity: Sequence[float]) -> Tuple[np.ndarray, np.ndarray]:
    """Drawdown below the running peak: (absolute, percent of peak)."""
    arr = np.asarray(equity, dtype=float)
    if arr.size == 0:
        return arr, arr
    peak = np.maximum.accumulate(arr)
    dd = peak - arr
    pct = np.divide(dd, peak, out=np.zeros_like(dd), where=peak > 0) * 100.0
    return dd, pct


def max_drawdown(equity: Sequence[float]) -> Tuple[float, float]:
    """Largest drawdown of an equity curve: (absolute, percent). Both >= 0."""
    dd, pct = drawdown_series(equity)
    if dd.size == 0:
        return 0.0, 0.0
    return float(dd.max()), float(pct.max())


def win_rate(pnls: Sequence[float]) -> float:
    """Fraction of trades with positive PnL."""
    if not pnls:
        return 0.0
    return sum(1 for p in pnls if p > 0) / len(pnls)


def profit_factor(pnls: Sequence[float]) -> float:
    """Gross profit / gross loss; inf when there are wins and no losses."""
    wins = sum(p for p in pnls if p > 0)
    losses = sum(-p for p in pnls if p < 0)
    if losses <= 0:
        return float("inf") if wins > 0 else 0.0
    return wins / losses


def expectancy(pnls: Sequence[float]) -> float:
    """Average PnL per trade."""
    if not pnls:
        return 0.0
    return sum(pnls) / len(pnls)


def compute_metrics(
    pnls: Sequence[float],
    equity: Sequence[float],
    initial_capital: Optional[float] = None,
    risk_free_rate: float = 0.0,
    periods_per_year: float = 252.0,
) -> PerformanceMetrics:
    """
    Full metrics from net trade PnLs and an equity curve sampled once per bar.
    initial_capital defaults to the first equity point.
    """
    pnls = list(pnls)
    equity = list(equity)
    start = initial_capital if initial_capital is not None else (equity[0] if equity else 0.0)
    final = equity[-1] if equity else start
    curve = [start] + equity if initial_capital is not None else equity
    rets = returns_from_equity(curve)
    mdd, mdd_pct = max_drawdown(curve)
    wins = [p for p in pnls if p > 0]
    losses = [p for p in pnls if p < 0]
    return PerformanceMetrics(
        total_return_pct=(final / start - 1.0) * 100.0 if start > 0 else 0.0,
        sharpe_ratio=sharpe_ratio(rets, risk_free_rate, periods_per_year),
        sortino_ratio=sortino_ratio(rets, risk_free_rate, periods_per_year),
        max_drawdown=mdd,
        max_drawdown_pct=mdd_pct,
        win_rate=win_rate(pnls),
        profit_factor=profit_factor(pnls),
        expectancy=expectancy(pnls),
        total_trades=len(pnls),
        winning_trades=len(wins),
        losing_trades=len(losses),
        avg_win=sum(wins) / len(wins) if wins else 0.0,
        avg_loss=sum(losses) / len(losses) if losses else 0.0,
        final_equity=final,
    )
