"""Tests for runtime.session: the per-bar cycle shared by backtest and live."""

import pytest
from trading_engine.core.context import RunContext
from trading_engine.core.errors import SimulationError
from trading_engine.core.types import Direction, PositionState
from trading_engine.execution.simulator import BacktestSimulator
from trading_engine.runtime.session import TradingSession
from trading_engine.strategies import build_strategy


def new_session(config):
    ctx = RunContext(config, run_id="s")
    strategy = build_strategy(config.strategy, config.strategy_params)
    return TradingSession(ctx, strategy, BacktestSimulator.from_context(ctx))


def test_warm_up_primes_indicators_without_trading(make_config, make_bars, make_bar):
    session = new_session(make_config())
    history = make_bars([100, 100, 100])
    assert session.warm_up(history + [history[-1]]) == 3
    assert session.context.stats["bars"] == 0
    assert session.manager.pending_orders() == []

    result = session.on_bar(make_bar(3, 105.0))
    assert result.signal.direction is Direction.LONG
    assert len(result.orders) == 1
    assert result.orders[0].id == "s-000001"
    assert session.manager.state("BTCUSDT") is PositionState.ENTERING


def test_stale_bar_is_dropped_and_counted(make_config, make_bar):
    session = new_session(make_config())
    assert session.on_bar(make_bar(1, 100.0)) is not None
    assert session.on_bar(make_bar(1, 100.0)) is None
    assert session.on_bar(make_bar(0, 100.0)) is None
    assert session.context.stats["stale_bars"] == 2
    assert session.context.stats["bars"] == 1


def test_feed_routes_and_counts_bad_events(make_config):
    session = new_session(make_config())
    bar = {"type": "bar", "symbol": "BTCUSDT", "time": "2024-01-01T00:00:00Z",
           "open": 1, "high": 1, "low": 1, "close": 1, "volume": 1}
    [result] = session.feed(bar)
    assert result.bar.instrument == "BTCUSDT"
    assert session.feed({**bar, "symbol": "ETHUSDT"}) == []
    assert session.feed({"type": "book"}) == []
    assert session.context.stats["bad_events"] == 2
    assert len(session.context.errors) == 2


def test_shutdown_cancels_pending_once(make_config, make_bars):
    session = new_session(make_config())
    for bar in make_bars([100, 100, 100, 105]):
        session.on_bar(bar)
    assert len(session.manager.pending_orders()) == 1
    session.shutdown("test")
    assert session.shutdown("again") == []
    snap = session.snapshot()
    assert snap["pending_orders"] == []
    assert snap["states"]["BTCUSDT"] is PositionState.FLAT
    assert snap["stats"]["orders_cancelled"] == 1
    assert snap["run_id"] == "s"
    assert session.process_reports([]) == []


def test_seed_loads_history_and_rejects_bad_batches(make_config, make_bars, make_bar):
    session = new_session(make_config())
    assert session.seed({"BTCUSDT": make_bars([100, 100, 100])}) == 3
    assert session.stores["BTCUSDT"].last.open_time == make_bar(2, 100.0).open_time
    assert session.context.stats["bars"] == 0
    assert session.on_bar(make_bar(3, 105.0)).signal.direction is Direction.LONG

    with pytest.raises(SimulationError):
        new_session(make_config()).seed({"BTCUSDT": [make_bar(1, 100.0), make_bar(0, 100.0)]})
