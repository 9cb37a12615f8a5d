"""Shared factories: hourly bars from a close series, test configs and run contexts."""

from datetime import datetime, timedelta, timezone

import pytest
from trading_engine.core.config import Config
from trading_engine.core.context import RunContext
from trading_engine.core.types import Bar

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)
HOUR = timedelta(hours=1)


def _bar(i, close, instrument="BTCUSDT", open_=None, high=None, low=None, volume=1000.0):
    o = close if open_ is None else open_
    h = max(o, close) if high is None else high
    lo = min(o, close) if low is None else low
    return Bar(instrument, T0 + i * HOUR, o, h, lo, close, volume)


def _bars(closes, instrument="BTCUSDT", volume=1000.0):
    """One bar per close; each bar opens at the previous close."""
    out = []
    prev = None
    for i, c in enumerate(closes):
        out.append(_bar(i, c, instrument, open_=c if prev is None else prev, volume=volume))
        prev = c
    return out


def _config(**overrides):
    params = dict(
        instruments=("BTCUSDT",),
        timeframe="1h",
        strategy="close_above_ma",
        strategy_params={"window": 3},
        leverage=5.0,
        risk_per_trade_pct=1.0,
        max_exposure_pct=500.0,
        min_notional=0.0,
        min_risk_reward=0.0,
        stop_loss_pct=2.0,
        take_profit_pct=0.0,
        slippage_bps=0.0,
        fee_bps=0.0,
        initial_capital=10000.0,
        max_workers=1,
    )
    params.update(overrides)
    return Config(**params)


@pytest.fixture
def t0():
    return T0


@pytest.fixture
def make_bar():
    return _bar


@pytest.fixture
def make_bars():
    return _bars


@pytest.fixture
def make_config():
    return _config


@pytest.fixture
def context():
    return RunContext(_config(), run_id="test")
