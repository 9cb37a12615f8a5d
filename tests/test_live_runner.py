"""Async tests for runtime.live: backpressure, backtest parity and cancellation."""

import asyncio

import pytest
from trading_engine.backtesting.engine import BacktestEngine
from trading_engine.core.context import RunContext
from trading_engine.core.types import PositionState
from trading_engine.execution.simulator import BacktestSimulator
from trading_engine.runtime.live import LiveRunner, poll_klines
from trading_engine.runtime.session import TradingSession
from trading_engine.strategies import build_strategy

STOPPED_OUT = [100, 100, 100, 105, 106, 107, 100, 99, 98]


def new_session(config):
    ctx = RunContext(config)
    strategy = build_strategy(config.strategy, config.strategy_params)
    return TradingSession(ctx, strategy, BacktestSimulator.from_context(ctx))


async def replay(bars):
    for bar in bars:
        yield bar


@pytest.mark.asyncio
async def test_live_decisions_match_backtest(make_config, make_bars):
    cfg = make_config()
    bars = make_bars(STOPPED_OUT)
    backtest = BacktestEngine(RunContext(cfg)).run({"BTCUSDT": bars})

    session = new_session(cfg)
    runner = LiveRunner(session, {"BTCUSDT": replay(bars)}, poll_interval=0.01)
    snapshot = await runner.run()

    assert [r.signal for r in runner.results] == backtest.signals
    assert list(session.manager.trades) == backtest.trades
    assert snapshot["performance"].equity == pytest.approx(backtest.metrics.final_equity)
    assert snapshot["stats"]["bars"] == len(bars)


@pytest.mark.asyncio
async def test_bounded_queue_applies_backpressure(make_config, make_bars):
    bars = make_bars([100 + (i % 7) for i in range(40)])
    session = new_session(make_config())
    lags = []

    async def source():
        for i, bar in enumerate(bars):
            lags.append(i - session.context.stats["bars"])
            yield bar

    runner = LiveRunner(session, {"BTCUSDT": source()}, queue_size=1, poll_interval=0.01)
    await runner.run()
    # one bar queued, one in the pipeline: the producer is never further ahead
    assert max(lags) <= 2
    assert [r.bar for r in runner.results] == bars
    assert session.context.stats["bars"] == len(bars)


@pytest.mark.asyncio
async def test_instruments_run_concurrently_without_loss(make_config, make_bars):
    cfg = make_config(instruments=("BTCUSDT", "ETHUSDT"))
    session = new_session(cfg)
    btc = make_bars(STOPPED_OUT)
    eth = make_bars([50 + i for i in range(12)], instrument="ETHUSDT")
    runner = LiveRunner(session, {"BTCUSDT": replay(btc), "ETHUSDT": replay(eth)}, queue_size=2, poll_interval=0.01)
    await runner.run()
    seen = {"BTCUSDT": [], "ETHUSDT": []}
    for r in runner.results:
        seen[r.bar.instrument].append(r.bar)
    assert seen == {"BTCUSDT": btc, "ETHUSDT": eth}


@pytest.mark.asyncio
async def test_cancellation_resolves_pending_orders(make_config, make_bars, make_bar):
    bars = make_bars([100, 100, 100, 105])  # last bar leaves an unfilled entry
    session = new_session(make_config())
    ctx = session.context

    async def source():
        for bar in bars:
            yield bar
        while ctx.stats["bars"] < len(bars):
            await asyncio.sleep(0.01)
        ctx.cancel()
        i = len(bars)
        while True:
            await asyncio.sleep(0.01)
            yield make_bar(i, 100.0)
            i += 1

    runner = LiveRunner(session, {"BTCUSDT": source()}, poll_interval=0.01)
    snapshot = await asyncio.wait_for(runner.run(), timeout=10)
    assert snapshot["pending_orders"] == []
    assert snapshot["states"]["BTCUSDT"] is PositionState.FLAT
    assert snapshot["stats"]["orders_cancelled"] == 1
    assert snapshot["stats"]["bars"] == len(bars)


@pytest.mark.asyncio
async def test_raw_events_and_bad_events(make_config):
    session = new_session(make_config())
    events = [
        {"type": "bar", "symbol": "BTCUSDT", "time": "2024-01-01T00:00:00Z",
         "open": 1, "high": 1, "low": 1, "close": 1, "volume": 1},
        {"type": "bar", "symbol": "BTCUSDT", "time": "2024-01-01T01:00:00Z"},
        {"type": "bar", "symbol": "BTCUSDT", "time": "2024-01-01T00:00:00Z",
         "open": 1, "high": 1, "low": 1, "close": 1, "volume": 1},
        {"type": "bar", "symbol": "BTCUSDT", "time": "2024-01-01T01:00:00Z",
         "open": 1, "high": 2, "low": 1, "close": 2, "volume": 1},
    ]
    runner = LiveRunner(session, {"BTCUSDT": replay(events)}, poll_interval=0.01)
    snapshot = await runner.run()
    assert snapshot["stats"]["bars"] == 2
    assert snapshot["stats"]["bad_events"] == 1
    assert snapshot["stats"]["stale_bars"] == 1


@pytest.mark.asyncio
async def test_notifier_sees_fills_and_closed_trades(make_config, make_bars):
    messages = []
    session = new_session(make_config())
    runner = LiveRunner(session, {"BTCUSDT": replay(make_bars(STOPPED_OUT))}, poll_interval=0.01,
                        notifier=messages.append)
    await runner.run()
    assert sum(m.startswith("FILL BTCUSDT") for m in messages) == 2
    assert any(m.startswith("CLOSED BTCUSDT LONG") and "stop_loss" in m for m in messages)


@pytest.mark.asyncio
async def test_failing_notifier_does_not_stop_trading(make_config, make_bars):
    def broken(text):
        raise RuntimeError("notifier down")

    session = new_session(make_config())
    runner = LiveRunner(session, {"BTCUSDT": replay(make_bars(STOPPED_OUT))}, poll_interval=0.01, notifier=broken)
    snapshot = await runner.run()
    assert snapshot["stats"]["bars"] == len(STOPPED_OUT)
    assert len(session.manager.trades) == 1


@pytest.mark.asyncio
async def test_poll_klines_yields_each_closed_bar_once(make_bars):
    bars = make_bars([1, 2, 3, 4])
    calls = []

    def fetch():
        calls.append(1)
        if len(calls) == 1:
            raise ConnectionError("timeout")
        if len(calls) == 2:
            return bars[:3]
        return bars[1:]

    out = []
    gen = poll_klines(fetch, 0, after=bars[0].open_time)
    async for bar in gen:
        out.append(bar)
        if len(out) == 3:
            break
    await gen.aclose()
    assert out == bars[1:]


@pytest.mark.asyncio
async def test_poll_klines_stops_on_event(make_bars):
    stop = asyncio.Event()
    stop.set()
    out = [bar async for bar in poll_klines(lambda: make_bars([1]), 0, stop=stop)]
    assert out == []


@pytest.mark.asyncio
async def test_live_history_is_bounded(make_config, make_bars):
    cfg = make_config(live_history=5)
    bars = make_bars([100 + (i % 5) for i in range(20)])
    ctx = RunContext(cfg)
    strategy = build_strategy(cfg.strategy, cfg.strategy_params)
    session = TradingSession(ctx, strategy, BacktestSimulator.from_context(ctx), history=cfg.live_history)
    runner = LiveRunner(session, {"BTCUSDT": replay(bars)}, poll_interval=0.01)
    snapshot = await runner.run()
    assert snapshot["stats"]["bars"] == 20
    assert [r.bar for r in runner.results] == bars[-5:]
    assert len(session.tracker.equity_curve) <= 5
    assert session.manager.pending_orders() == []
