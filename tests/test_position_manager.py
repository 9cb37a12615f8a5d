"""Unit tests for orders.manager: the per-instrument FLAT/ENTERING/OPEN/EXITING machine."""

import pytest
from trading_engine.core.context import RunContext
from trading_engine.core.errors import OrderError, SizingError
from trading_engine.core.types import (
    Direction,
    ExecutionReport,
    Fill,
    OrderSide,
    OrderStatus,
    OrderType,
    PositionState,
    Signal,
)
from trading_engine.orders.manager import PositionManager

EQUITY = 10000.0


def signal(bar, direction, **kwargs):
    return Signal(bar.instrument, bar.open_time, direction, **kwargs)


def fill_report(order, qty, price, when, fee=0.0, status=OrderStatus.FILLED):
    fill = Fill(order.id, order.instrument, order.side, price, qty, fee, when)
    return ExecutionReport(order.id, order.instrument, status, when, fill=fill)


def status_report(order, status, when, reason=""):
    return ExecutionReport(order.id, order.instrument, status, when, reason=reason)


@pytest.fixture
def manager(context):
    return PositionManager(context)


def open_long(manager, make_bar, price=100.0):
    bar = make_bar(0, price)
    [order] = manager.on_signal(signal(bar, Direction.LONG), bar, EQUITY)
    manager.on_report(fill_report(order, order.quantity, price, make_bar(1, price).open_time))
    return order


def test_long_signal_sizes_a_market_entry(manager, make_bar):
    bar = make_bar(0, 100.0)
    orders = manager.on_signal(signal(bar, Direction.LONG), bar, EQUITY)
    assert len(orders) == 1
    order = orders[0]
    # 1% of 10000 at risk over a 2% stop (2.0) => 50
    assert order.quantity == 50.0
    assert order.side is OrderSide.BUY
    assert order.order_type is OrderType.MARKET
    assert order.created_at == bar.open_time
    assert order.stop_loss == pytest.approx(98.0)
    assert manager.state("BTCUSDT") is PositionState.ENTERING
    assert manager.pending_orders() == [order]
    assert manager.context.stats["orders_submitted"] == 1


def test_limit_entry_when_signal_names_a_price(manager, make_bar):
    bar = make_bar(0, 100.0)
    [order] = manager.on_signal(signal(bar, Direction.SHORT, entry_price=101.0, stop_price=103.0), bar, EQUITY)
    assert order.order_type is OrderType.LIMIT
    assert order.price == 101.0
    assert order.side is OrderSide.SELL
    assert order.quantity == 50.0


def test_flat_signal_while_flat_does_nothing(manager, make_bar):
    bar = make_bar(0, 100.0)
    assert manager.on_signal(signal(bar, Direction.FLAT), bar, EQUITY) == []
    assert manager.state("BTCUSDT") is PositionState.FLAT
    assert manager.context.stats["signals"] == 0
    assert manager.recent_signals()[-1].direction is Direction.FLAT


def test_position_equals_sum_of_fills(manager, make_bar):
    bar = make_bar(0, 100.0)
    [order] = manager.on_signal(signal(bar, Direction.LONG), bar, EQUITY)
    when = make_bar(1, 100.0).open_time
    first = manager.on_report(fill_report(order, 20.0, 101.0, when, status=OrderStatus.PARTIALLY_FILLED))
    assert first.fill_applied
    assert manager.state("BTCUSDT") is PositionState.ENTERING
    assert manager.position("BTCUSDT").quantity == 20.0
    manager.on_report(fill_report(order, 30.0, 102.0, when))
    pos = manager.position("BTCUSDT")
    assert manager.state("BTCUSDT") is PositionState.OPEN
    assert pos.quantity == pytest.approx(50.0)
    assert pos.entry_price == pytest.approx(101.6)
    # levels follow the average fill, not the signal's reference price
    assert pos.stop_price == pytest.approx(101.6 * 0.98)
    assert order.status is OrderStatus.FILLED
    assert manager.context.stats["fills"] == 2


def test_position_view_is_a_copy(manager, make_bar):
    open_long(manager, make_bar)
    view = manager.position("BTCUSDT")
    view.quantity = 0.0
    assert manager.position("BTCUSDT").quantity == 50.0


def test_rejected_entry_reverts_to_flat(manager, make_bar):
    bar = make_bar(0, 100.0)
    [order] = manager.on_signal(signal(bar, Direction.LONG), bar, EQUITY)
    manager.on_report(status_report(order, OrderStatus.REJECTED, bar.open_time, "insufficient margin"))
    assert manager.state("BTCUSDT") is PositionState.FLAT
    assert manager.position("BTCUSDT").is_flat
    assert manager.pending_orders() == []
    assert manager.context.stats["orders_rejected"] == 1
    err = manager.context.errors[-1]
    assert isinstance(err, OrderError)
    assert "insufficient margin" in str(err)


def test_partial_fill_then_reject_keeps_filled_part(manager, make_bar):
    bar = make_bar(0, 100.0)
    [order] = manager.on_signal(signal(bar, Direction.LONG), bar, EQUITY)
    when = make_bar(1, 100.0).open_time
    manager.on_report(fill_report(order, 20.0, 100.0, when, status=OrderStatus.PARTIALLY_FILLED))
    manager.on_report(status_report(order, OrderStatus.REJECTED, when, "rejected remainder"))
    assert manager.state("BTCUSDT") is PositionState.OPEN
    pos = manager.position("BTCUSDT")
    assert pos.quantity == 20.0
    assert pos.stop_price == pytest.approx(98.0)
    assert order.status is OrderStatus.REJECTED


def test_opposite_signal_while_entering_cancels_once(manager, make_bar):
    bar = make_bar(0, 100.0)
    [order] = manager.on_signal(signal(bar, Direction.LONG), bar, EQUITY)
    nxt = make_bar(1, 100.0)
    assert manager.on_signal(signal(nxt, Direction.SHORT), nxt, EQUITY) == []
    assert manager.pop_cancel_requests() == [order.id]
    manager.on_signal(signal(nxt, Direction.FLAT), nxt, EQUITY)
    assert manager.pop_cancel_requests() == []
    assert manager.state("BTCUSDT") is PositionState.ENTERING
    manager.on_report(status_report(order, OrderStatus.CANCELLED, nxt.open_time, "cancel requested"))
    assert manager.state("BTCUSDT") is PositionState.FLAT
    assert manager.context.stats["orders_cancelled"] == 1


def test_same_direction_while_entering_keeps_order(manager, make_bar):
    bar = make_bar(0, 100.0)
    manager.on_signal(signal(bar, Direction.LONG), bar, EQUITY)
    manager.on_signal(signal(bar, Direction.LONG), bar, EQUITY)
    assert manager.pop_cancel_requests() == []


def test_stop_loss_exit_closes_round_trip(manager, make_bar):
    open_long(manager, make_bar)
    low = make_bar(2, 97.0)
    [exit_order] = manager.check_exits(low, EQUITY)
    assert exit_order.reduce_only
    assert exit_order.side is OrderSide.SELL
    assert exit_order.quantity == 50.0
    assert manager.state("BTCUSDT") is PositionState.EXITING
    # signals are ignored while exiting
    assert manager.on_signal(signal(low, Direction.SHORT), low, EQUITY) == []
    outcome = manager.on_report(fill_report(exit_order, 50.0, 97.0, make_bar(3, 97.0).open_time, fee=1.0))
    trade = outcome.trade
    assert trade is not None
    assert trade.exit_reason == "stop_loss"
    assert trade.side is Direction.LONG
    assert trade.entry_price == 100.0
    assert trade.exit_price == pytest.approx(97.0)
    assert trade.pnl == pytest.approx(-150.0 - 1.0)
    assert trade.fees == pytest.approx(1.0)
    assert manager.state("BTCUSDT") is PositionState.FLAT
    assert list(manager.trades) == [trade]
    assert manager.risk.consecutive_losses == 1


def test_take_profit_exit(make_config, make_bar):
    manager = PositionManager(RunContext(make_config(take_profit_pct=3.0)))
    open_long(manager, make_bar)
    assert manager.check_exits(make_bar(2, 102.0), EQUITY) == []
    [order] = manager.check_exits(make_bar(3, 104.0), EQUITY)
    trade = manager.on_report(fill_report(order, 50.0, 104.0, make_bar(4, 104.0).open_time)).trade
    assert trade.exit_reason == "take_profit"
    assert trade.pnl == pytest.approx(200.0)


def test_trailing_stop_follows_peak(make_config, make_bar):
    manager = PositionManager(RunContext(make_config(trailing_stop_pct=5.0, stop_loss_pct=20.0)))
    open_long(manager, make_bar)
    assert manager.check_exits(make_bar(2, 120.0), EQUITY) == []
    assert manager.check_exits(make_bar(3, 115.0), EQUITY) == []
    [order] = manager.check_exits(make_bar(4, 113.0), EQUITY)
    trade = manager.on_report(fill_report(order, order.quantity, 113.0, make_bar(5, 113.0).open_time)).trade
    assert trade.exit_reason == "trailing_stop"


@pytest.mark.parametrize("direction, reason", [
    (Direction.FLAT, "signal_flat"),
    (Direction.SHORT, "signal_reverse"),
])
def test_signal_exits(manager, make_bar, direction, reason):
    open_long(manager, make_bar)
    bar = make_bar(2, 101.0)
    assert manager.on_signal(signal(bar, Direction.LONG), bar, EQUITY) == []
    [order] = manager.on_signal(signal(bar, direction), bar, EQUITY)
    assert order.reduce_only
    trade = manager.on_report(fill_report(order, 50.0, 101.0, make_bar(3, 101.0).open_time)).trade
    assert trade.exit_reason == reason
    # a reversal closes first; the new side needs a fresh signal
    assert manager.state("BTCUSDT") is PositionState.FLAT


def test_cancelled_exit_returns_to_open(manager, make_bar):
    open_long(manager, make_bar)
    bar = make_bar(2, 101.0)
    [order] = manager.on_signal(signal(bar, Direction.FLAT), bar, EQUITY)
    manager.on_report(status_report(order, OrderStatus.CANCELLED, bar.open_time))
    assert manager.state("BTCUSDT") is PositionState.OPEN
    assert manager.position("BTCUSDT").quantity == 50.0


def test_cooldown_after_close(make_config, make_bar):
    manager = PositionManager(RunContext(make_config(cooldown_bars=2)))
    open_long(manager, make_bar)
    bar = make_bar(2, 101.0)
    [order] = manager.on_signal(signal(bar, Direction.FLAT), bar, EQUITY)
    manager.on_report(fill_report(order, 50.0, 101.0, make_bar(3, 101.0).open_time))
    for i in (3, 4):
        b = make_bar(i, 101.0)
        assert manager.on_signal(signal(b, Direction.LONG), b, EQUITY) == []
    b = make_bar(5, 101.0)
    assert len(manager.on_signal(signal(b, Direction.LONG), b, EQUITY)) == 1


def test_exposure_cap_downgrades_second_instrument(make_config, make_bar):
    ctx = RunContext(make_config(instruments=("BTCUSDT", "ETHUSDT"), max_exposure_pct=60.0))
    manager = PositionManager(ctx)
    btc = make_bar(0, 100.0)
    assert len(manager.on_signal(signal(btc, Direction.LONG), btc, EQUITY)) == 1
    eth = make_bar(0, 100.0, instrument="ETHUSDT")
    assert manager.on_signal(signal(eth, Direction.LONG), eth, EQUITY) == []
    assert manager.state("ETHUSDT") is PositionState.FLAT
    assert ctx.stats["sizing_downgrades"] == 1
    err = ctx.errors[-1]
    assert isinstance(err, SizingError)
    assert "exposure" in str(err)
    assert manager.exposure() == pytest.approx(5000.0)


def test_unknown_order_report_is_recorded(manager, t0):
    report = ExecutionReport("nope", "BTCUSDT", OrderStatus.FILLED, t0)
    outcome = manager.on_report(report)
    assert not outcome.fill_applied
    assert manager.context.stats["order_errors"] == 1


def test_overfill_is_recorded_not_raised(manager, make_bar):
    bar = make_bar(0, 100.0)
    [order] = manager.on_signal(signal(bar, Direction.LONG), bar, EQUITY)
    outcome = manager.on_report(fill_report(order, 80.0, 100.0, bar.open_time))
    assert not outcome.fill_applied
    assert manager.position("BTCUSDT").is_flat
    assert manager.context.stats["order_errors"] == 1


def test_resolve_pending_cancels_everything(manager, make_bar):
    bar = make_bar(0, 100.0)
    [order] = manager.on_signal(signal(bar, Direction.LONG), bar, EQUITY)
    assert manager.resolve_pending("shutdown") == [order]
    assert order.status is OrderStatus.CANCELLED
    assert manager.pending_orders() == []
    assert manager.state("BTCUSDT") is PositionState.FLAT


def test_finished_orders_and_trades_are_bounded(context, make_bar):
    manager = PositionManager(context, order_history=2, trade_history=1)
    orders, trades = [], []
    for _ in range(2):
        entry = open_long(manager, make_bar)
        bar = make_bar(2, 101.0)
        [exit_order] = manager.on_signal(signal(bar, Direction.FLAT), bar, EQUITY)
        outcome = manager.on_report(fill_report(exit_order, 50.0, 101.0, make_bar(3, 101.0).open_time))
        orders += [entry, exit_order]
        trades.append(outcome.trade)
    assert manager._orders == {}
    assert manager.pending_orders() == []
    # the two most recent terminal orders stay resolvable, older ones are dropped
    assert manager.order(orders[-1].id) is orders[-1]
    assert manager.order(orders[-2].id) is orders[-2]
    assert manager.order(orders[0].id) is None
    assert list(manager.trades) == [trades[-1]]
    assert manager.trades[0] is trades[-1]
