"""Integration tests for backtesting.engine and walk-forward splits."""

import pytest
from trading_engine.backtesting.engine import BacktestEngine, buy_and_hold_pct, validate_history
from trading_engine.backtesting.walk_forward import bar_times, slice_bars, split_windows
from trading_engine.core.context import RunContext
from trading_engine.core.errors import SimulationError
from trading_engine.core.types import Direction, PositionState

# SMA(3) goes long on the close of bar 3 (105); the entry fills at the open of
# bar 4 (105) with a 2% stop at 102.9; bar 6 closes at 100 below the stop and
# the exit fills at the open of bar 7 (100).
STOPPED_OUT = [100, 100, 100, 105, 106, 107, 100, 99, 98]


def run(config, bars_by_instrument, **kwargs):
    return BacktestEngine(RunContext(config)).run(bars_by_instrument, **kwargs)


def test_single_stop_loss_round_trip(make_config, make_bars):
    bars = make_bars(STOPPED_OUT)
    result = run(make_config(), {"BTCUSDT": bars})
    assert len(result.trades) == 1
    trade = result.trades[0]
    assert trade.exit_reason == "stop_loss"
    assert trade.entry_price == 105.0
    assert trade.exit_price == pytest.approx(100.0)
    assert trade.entry_time == bars[4].open_time
    assert trade.exit_time == bars[7].open_time
    qty = 47.619  # 100 risk / 2.1 stop distance, floored to the lot step
    assert trade.quantity == pytest.approx(qty)
    assert trade.pnl == pytest.approx(-5.0 * qty)
    assert result.metrics.total_trades == 1
    assert result.metrics.final_equity == pytest.approx(10000.0 - 5.0 * qty)
    assert result.bars_processed == len(bars)
    assert result.stats["bars"] == len(bars)
    assert result.stats["fills"] == 2
    assert result.positions["BTCUSDT"].is_flat
    assert result.benchmark_return_pct == pytest.approx(-2.0)
    assert [ts for ts, _ in result.equity_curve] == [b.open_time for b in bars]


def test_entry_fills_at_next_open_not_signal_close(make_config, make_bar):
    # bar 4 gaps up: the entry decided on bar 3's close (105) must fill at 108
    bars = [make_bar(i, c) for i, c in enumerate([100, 100, 100])]
    bars.append(make_bar(3, 105.0, open_=100.0))
    bars.append(make_bar(4, 109.0, open_=108.0))
    result = run(make_config(), {"BTCUSDT": bars})
    longs = [s for s in result.signals if s.direction is Direction.LONG]
    assert longs[0].timestamp == bars[3].open_time
    pos = result.positions["BTCUSDT"]
    assert pos.entry_price == 108.0
    assert pos.open_time == bars[4].open_time


def test_fees_and_slippage_reduce_pnl(make_config, make_bars):
    bars = {"BTCUSDT": make_bars(STOPPED_OUT)}
    clean = run(make_config(), bars)
    costly = run(make_config(fee_bps=10.0, slippage_bps=10.0), bars)
    assert costly.trades[0].pnl < clean.trades[0].pnl
    assert costly.trades[0].fees > 0.0


def test_open_position_left_open_at_end(make_config, make_bars):
    result = run(make_config(), {"BTCUSDT": make_bars([100, 100, 100, 105, 106])})
    assert result.trades == []
    pos = result.positions["BTCUSDT"]
    assert pos.quantity > 0
    assert pos.unrealized_pnl == pytest.approx((106.0 - 105.0) * pos.quantity)
    assert result.snapshot["states"]["BTCUSDT"] is PositionState.OPEN
    assert result.metrics.final_equity == pytest.approx(10000.0 + pos.unrealized_pnl)


def test_pending_order_cancelled_at_end_of_data(make_config, make_bars):
    result = run(make_config(), {"BTCUSDT": make_bars([100, 100, 100, 105])})
    assert result.positions["BTCUSDT"].is_flat
    assert result.snapshot["pending_orders"] == []
    assert result.stats["orders_cancelled"] == 1


def test_runs_are_deterministic(make_config, make_bars):
    bars = {"BTCUSDT": make_bars([100, 101, 99, 104, 106, 103, 108, 101, 97, 99, 104, 110])}
    a = run(make_config(), bars)
    b = run(make_config(), bars)
    assert a.trades == b.trades
    assert a.equity_curve == b.equity_curve
    assert a.metrics == b.metrics


def test_date_range(make_config, make_bars):
    bars = make_bars(STOPPED_OUT)
    result = run(make_config(), {"BTCUSDT": bars}, start=bars[2].open_time, end=bars[5].open_time)
    assert result.bars_processed == 3


def test_bars_before_start_warm_up_the_strategy(make_config, make_bars):
    bars = make_bars(STOPPED_OUT)
    result = run(make_config(), {"BTCUSDT": bars}, start=bars[3].open_time)
    assert result.bars_processed == len(bars) - 3
    assert result.stats["bars"] == len(bars) - 3
    # primed by bars 0-2, the average is ready on the first replayed bar
    [trade] = result.trades
    assert trade.entry_time == bars[4].open_time
    assert trade.exit_time == bars[7].open_time


def test_multi_instrument_time_order(make_config, make_bars):
    cfg = make_config(instruments=("BTCUSDT", "ETHUSDT"))
    bars = {"BTCUSDT": make_bars(STOPPED_OUT), "ETHUSDT": make_bars(STOPPED_OUT[:5], instrument="ETHUSDT")}
    result = run(cfg, bars)
    assert result.bars_processed == len(STOPPED_OUT) + 5
    assert result.stats["bars"] == len(STOPPED_OUT) + 5
    assert {t.instrument for t in result.trades} == {"BTCUSDT"}
    assert not result.positions["ETHUSDT"].is_flat


def test_cancelled_context_stops_replay(make_config, make_bars):
    ctx = RunContext(make_config())
    ctx.cancel()
    result = BacktestEngine(ctx).run({"BTCUSDT": make_bars(STOPPED_OUT)})
    assert result.cancelled
    assert result.bars_processed == 0


def test_non_monotonic_history_is_fatal(make_config, make_bars):
    bars = make_bars([100, 101, 102])
    with pytest.raises(SimulationError):
        run(make_config(), {"BTCUSDT": [bars[0], bars[2], bars[1]]})
    with pytest.raises(SimulationError):
        run(make_config(), {"ETHUSDT": make_bars([1, 2], instrument="ETHUSDT")})
    with pytest.raises(SimulationError):
        validate_history({"BTCUSDT": make_bars([1, 2], instrument="ETHUSDT")}, RunContext(make_config()))


def test_sizing_refusals_are_counted(make_config, make_bars):
    # a lot minimum above any sized quantity makes every entry refused by sizing
    cfg = make_config(symbol_info={"filters": [{"filterType": "LOT_SIZE", "minQty": "1000", "stepSize": "1"}]})
    result = run(cfg, {"BTCUSDT": make_bars(STOPPED_OUT)})
    assert result.trades == []
    assert result.stats["sizing_downgrades"] >= 1
    assert result.stats.get("orders_submitted", 0) == 0


def test_buy_and_hold(make_bars):
    assert buy_and_hold_pct({"A": make_bars([100, 110])}) == pytest.approx(10.0)
    assert buy_and_hold_pct({"A": make_bars([100, 110]), "B": make_bars([100, 90])}) == pytest.approx(0.0)
    assert buy_and_hold_pct({"A": []}) == 0.0


def test_split_windows():
    single = split_windows(10, 0.7)[0]
    assert (single.train_start, single.train_end, single.test_start, single.test_end) == (0, 7, 7, 10)
    rolling = split_windows(30, 0.5, step_bars=5)
    assert [(w.train_start, w.test_start, w.test_end) for w in rolling] == [(0, 15, 20), (5, 20, 25), (10, 25, 30)]
    assert split_windows(1, 0.5) == []
    with pytest.raises(ValueError):
        split_windows(30, 0.5, step_bars=0)


def test_bar_times_and_slices(make_bars):
    bars = {"A": make_bars([1, 2, 3]), "B": make_bars([1, 2], instrument="B")}
    times = bar_times(bars)
    assert len(times) == 3
    sliced = slice_bars(bars, times[1], None)
    assert [len(v) for v in sliced.values()] == [2, 1]
