"""Unit tests for analytics.metrics."""

import numpy as np
import pytest
from trading_engine.analytics.metrics import (
    compute_metrics,
    expectancy,
    max_drawdown,
    profit_factor,
    returns_from_equity,
    sharpe_ratio,
    sortino_ratio,
    win_rate,
)


def test_sharpe_ratio_empty():
    assert sharpe_ratio([]) == 0.0


def test_sharpe_ratio_constant():
    assert sharpe_ratio([0.01] * 10) == 0.0  # zero std


def test_sharpe_ratio_annualized():
    rets = [0.01, -0.005, 0.02, 0.0, 0.003]
    arr = np.array(rets)
    expected = np.sqrt(252) * arr.mean() / arr.std(ddof=1)
    assert sharpe_ratio(rets) == pytest.approx(expected)


def test_sortino_only_penalizes_downside():
    assert sortino_ratio([0.01, 0.02, 0.03]) == 0.0
    rets = [0.02, -0.01, 0.03, -0.02]
    downside = np.sqrt(np.mean(np.minimum(rets, 0.0) ** 2))
    assert sortino_ratio(rets, periods_per_year=1) == pytest.approx(np.mean(rets) / downside)


def test_win_rate():
    assert win_rate([1, -1, 1, 1]) == 0.75
    assert win_rate([]) == 0.0


def test_profit_factor():
    assert profit_factor([10, -5, 10, -5]) == 2.0
    assert profit_factor([10, 10]) == float("inf")
    assert profit_factor([-5, -5]) == 0.0
    assert profit_factor([]) == 0.0


def test_expectancy():
    assert expectancy([10, -5, 5]) == pytest.approx(10 / 3)
    assert expectancy([]) == 0.0


def test_max_drawdown():
    # peak 120, trough 90 => 30 absolute, 25%
    assert max_drawdown([100.0, 120.0, 90.0, 130.0]) == pytest.approx((30.0, 25.0))
    assert max_drawdown([]) == (0.0, 0.0)
    assert max_drawdown([100.0, 110.0, 120.0]) == (0.0, 0.0)


def test_returns_from_equity():
    assert returns_from_equity([100.0, 110.0, 99.0]) == pytest.approx([0.1, -0.1])
    assert returns_from_equity([100.0]) == []


def test_compute_metrics():
    pnls = [10.0, -5.0, 15.0, -3.0]
    equity = [1010.0, 1005.0, 1020.0, 1017.0]
    m = compute_metrics(pnls, equity, initial_capital=1000.0)
    assert m.total_trades == 4
    assert m.winning_trades == 2
    assert m.losing_trades == 2
    assert m.expectancy == pytest.approx(4.25)
    assert m.win_rate == 0.5
    assert m.avg_win == pytest.approx(12.5)
    assert m.avg_loss == pytest.approx(-4.0)
    assert m.final_equity == 1017.0
    assert m.total_return_pct == pytest.approx(1.7)
    assert m.max_drawdown == pytest.approx(5.0)


def test_compute_metrics_no_trades():
    m = compute_metrics([], [1000.0, 1000.0])
    assert m.total_trades == 0
    assert m.total_return_pct == 0.0
    assert m.sharpe_ratio == 0.0
    assert m.as_dict()["profit_factor"] == 0.0
