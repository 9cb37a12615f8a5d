"""
Position & order manager: turns signals into sized orders and execution reports
into positions. One state machine per instrument:

    FLAT -> ENTERING -> OPEN -> EXITING -> FLAT

Positions change only through fills. Rejections and cancellations are recovered
here (logged, counted, recorded on the RunContext); nothing is retried.
"""

from __future__ import annotations
import logging
from collections import OrderedDict, deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Deque, Dict, List, Optional

from trading_engine.core.context import RunContext
from trading_engine.core.errors import OrderError, SizingError
from trading_engine.core.types import (
    Bar,
    Direction,
    ExecutionReport,
    Fill,
    Order,
    OrderSide,
    OrderStatus,
    OrderType,
    Position,
    PositionState,
    Signal,
    Trade,
)
from trading_engine.risk.manager import RiskManager

logger = logging.getLogger("trading_engine.orders")


@dataclass
class ReportOutcome:
    """What an execution report did: whether its fill was booked, and any trade it closed."""
    fill_applied: bool = False
    trade: Optional[Trade] = None


@dataclass
class _Book:
    """Per-instrument state. Not shared across instruments."""
    position: Position
    state: PositionState = PositionState.FLAT
    entry_order: Optional[Order] = None
    exit_order: Optional[Order] = None
    exit_reason: str = ""
    cancel_requested: bool = False
    cooldown_left: int = 0
    signal_stop: Optional[float] = None
    signal_tp: Optional[float] = None
    # round trip accumulators
    trade_side: Direction = Direction.FLAT
    trade_entry_time: Optional[datetime] = None
    trade_qty: float = 0.0
    trade_entry_price: float = 0.0
    trade_fees: float = 0.0
    trade_realized: float = 0.0
    exit_qty: float = 0.0
    exit_notional: float = 0.0
    ref_prices: Dict[str, float] = field(default_factory=dict)

    def reset_trade(self) -> None:
        self.trade_side = Direction.FLAT
        self.trade_entry_time = None
        self.trade_qty = 0.0
        self.trade_entry_price = 0.0
        self.trade_fees = 0.0
        self.trade_realized = 0.0
        self.exit_qty = 0.0
        self.exit_notional = 0.0


class PositionManager:
    """Owns orders and positions for every instrument of a run."""

    def __init__(
        self,
        context: RunContext,
        risk: Optional[RiskManager] = None,
        signal_history: int = 100,
        order_history: int = 1000,
        trade_history: Optional[int] = None,
    ):
        self.context = context
        self.config = context.config
        self.risk = risk or RiskManager.from_config(context.config)
        self.trades: Deque[Trade] = deque(maxlen=trade_history)
        self._books: Dict[str, _Book] = {
            inst: _Book(position=Position(instrument=inst, leverage=self.config.leverage))
            for inst in context.instruments
        }
        self._orders: Dict[str, Order] = {}  # live (non-terminal) orders
        self._finished: OrderedDict[str, Order] = OrderedDict()
        self._order_history = order_history
        self._cancel_requests: List[str] = []
        self._signals: Deque[Signal] = deque(maxlen=signal_history)

    # --- read-only views ---

    def _book(self, instrument: str) -> _Book:
        self.context.require_instrument(instrument)
        return self._books[instrument]

    def state(self, instrument: str) -> PositionState:
        return self._book(instrument).state

    def position(self, instrument: str) -> Position:
        """Snapshot copy of the instrument's position."""
        return self._book(instrument).position.snapshot()

    def positions(self) -> Dict[str, Position]:
        return {inst: b.position.snapshot() for inst, b in self._books.items()}

    def recent_signals(self) -> List[Signal]:
        return list(self._signals)

    def pending_orders(self, instrument: Optional[str] = None) -> List[Order]:
        return [
            o for o in self._orders.values()
            if not o.is_terminal and (instrument is None or o.instrument == instrument)
        ]

    def order(self, order_id: str) -> Optional[Order]:
        return self._orders.get(order_id) or self._finished.get(order_id)

    def _retire(self, order: Order) -> None:
        """Move a terminal order out of the live set; only the last order_history are kept."""
        self._orders.pop(order.id, None)
        self._finished[order.id] = order
        while len(self._finished) > self._order_history:
            self._finished.popitem(last=False)

    def exposure(self) -> float:
        """Open notional plus the remaining notional of pending entries, all instruments."""
        total = 0.0
        for book in self._books.values():
            total += book.position.notional
            entry = book.entry_order
            if entry is not None and not entry.is_terminal:
                total += entry.remaining * book.ref_prices.get(entry.id, entry.price or 0.0)
        return total

    def pop_cancel_requests(self) -> List[str]:
        """Order ids the adapter should cancel (each requested once)."""
        out, self._cancel_requests = self._cancel_requests, []
        return out

    # --- per-bar checks ---

    def check_exits(self, bar: Bar, equity: Optional[float] = None) -> List[Order]:
        """
        Mark the position at the bar close and fire stop-loss / take-profit /
        trailing-stop exits. Returns closing orders to submit.
        """
        book = self._book(bar.instrument)
        self.risk.roll_day(bar.open_time.date())
        if equity is not None:
            self.risk.set_equity(equity)
        pos = book.position
        if pos.is_flat:
            return []
        pos.mark(bar.close)
        if book.state is not PositionState.OPEN:
            return []
        reason = self._exit_trigger(pos, bar.close)
        if not reason:
            return []
        logger.info("%s: %s at %.6g (entry %.6g)", bar.instrument, reason, bar.close, pos.entry_price)
        return [self._open_exit(book, bar, reason)]

    def _exit_trigger(self, pos: Position, price: float) -> str:
        long = pos.quantity > 0
        if pos.stop_price is not None and (price <= pos.stop_price if long else price >= pos.stop_price):
            return "stop_loss"
        if pos.take_profit_price is not None and (
            price >= pos.take_profit_price if long else price <= pos.take_profit_price
        ):
            return "take_profit"
        trail_pct = self.config.trailing_stop_pct
        if trail_pct > 0 and pos.peak_price is not None:
            if long and price <= pos.peak_price * (1 - trail_pct / 100):
                return "trailing_stop"
            if not long and price >= pos.peak_price * (1 + trail_pct / 100):
                return "trailing_stop"
        return ""

    # --- signals ---

    def on_signal(self, signal: Signal, bar: Bar, equity: float) -> List[Order]:
        """Apply a strategy decision. Returns new orders to submit (possibly none)."""
        book = self._book(signal.instrument)
        self._signals.append(signal)
        if signal.direction is not Direction.FLAT:
            self.context.stats["signals"] += 1
        state = book.state
        direction = signal.direction

        if state is PositionState.FLAT:
            if book.cooldown_left > 0:
                book.cooldown_left -= 1
                return []
            if direction is Direction.FLAT:
                return []
            order = self._open_entry(book, signal, bar, equity)
            return [order] if order is not None else []

        if state is PositionState.ENTERING:
            entry = book.entry_order
            wanted = OrderSide.for_direction(direction) if direction is not Direction.FLAT else None
            if entry is not None and not book.cancel_requested and wanted is not entry.side:
                book.cancel_requested = True
                self._cancel_requests.append(entry.id)
                logger.info("%s: %s signal while entering, cancelling %s", signal.instrument, direction.value, entry.id)
            return []

        if state is PositionState.OPEN:
            held = book.position.direction
            if direction is held:
                return []
            reason = "signal_flat" if direction is Direction.FLAT else "signal_reverse"
            return [self._open_exit(book, bar, reason)]

        # EXITING: wait for the close to complete
        return []

    def _levels(self, side_sign: int, price: float, stop: Optional[float], tp: Optional[float]):
        cfg = self.config
        if stop is None and cfg.stop_loss_pct > 0:
            stop = price * (1 - side_sign * cfg.stop_loss_pct / 100)
        if tp is None and cfg.take_profit_pct > 0:
            tp = price * (1 + side_sign * cfg.take_profit_pct / 100)
        return stop, tp

    def _open_entry(self, book: _Book, signal: Signal, bar: Bar, equity: float) -> Optional[Order]:
        side = OrderSide.for_direction(signal.direction)
        ref = signal.entry_price if signal.entry_price is not None else bar.close
        stop, tp = self._levels(side.sign, ref, signal.stop_price, signal.take_profit_price)
        result = self.risk.size_entry(ref, stop, tp, equity, self.exposure())
        if not result.allowed:
            err = SizingError(f"{signal.direction.value} signal downgraded: {result.reason}", signal.instrument)
            self.context.record(err, "sizing_downgrades")
            logger.info("%s: %s", signal.instrument, err)
            return None
        order = Order(
            id=self.context.next_order_id(),
            instrument=signal.instrument,
            side=side,
            quantity=result.quantity,
            created_at=bar.open_time,
            order_type=OrderType.LIMIT if signal.entry_price is not None else OrderType.MARKET,
            price=signal.entry_price,
            leverage=self.config.leverage,
            stop_loss=stop,
            take_profit=tp,
        )
        book.ref_prices[order.id] = ref
        book.signal_stop = signal.stop_price
        book.signal_tp = signal.take_profit_price
        book.entry_order = order
        book.cancel_requested = False
        book.state = PositionState.ENTERING
        self._orders[order.id] = order
        self.context.stats["orders_submitted"] += 1
        logger.info(
            "%s: entry %s %s qty=%s ref=%.6g stop=%s tp=%s",
            order.instrument, order.id, side.value, order.quantity, ref, stop, tp,
        )
        return order

    def _open_exit(self, book: _Book, bar: Bar, reason: str) -> Order:
        pos = book.position
        order = Order(
            id=self.context.next_order_id(),
            instrument=pos.instrument,
            side=OrderSide.SELL if pos.quantity > 0 else OrderSide.BUY,
            quantity=abs(pos.quantity),
            created_at=bar.open_time,
            leverage=pos.leverage,
            reduce_only=True,
        )
        book.exit_order = order
        book.exit_reason = reason
        book.state = PositionState.EXITING
        self._orders[order.id] = order
        self.context.stats["orders_submitted"] += 1
        logger.info("%s: exit %s (%s) qty=%s", pos.instrument, order.id, reason, order.quantity)
        return order

    # --- execution reports ---

    def on_report(self, report: ExecutionReport) -> ReportOutcome:
        """Book a fill and/or status change. Unknown or illegal reports are recorded, not raised."""
        order = self.order(report.order_id)
        if order is None:
            self.context.record(
                OrderError(f"report for unknown order {report.order_id}", report.instrument), "order_errors"
            )
            logger.warning("%s: report for unknown order %s", report.instrument, report.order_id)
            return ReportOutcome()
        book = self._books[order.instrument]
        outcome = ReportOutcome()
        try:
            if report.fill is not None:
                order.apply_fill(report.fill)
                self._book_fill(book, order, report.fill)
                outcome.fill_applied = True
            if report.status in (OrderStatus.CANCELLED, OrderStatus.REJECTED) and not order.is_terminal:
                order.transition(report.status, report.reason)
                self._on_dead_order(book, order)
        except OrderError as e:
            self.context.record(e, "order_errors")
            logger.warning("%s", e)
        if outcome.fill_applied and order.status is OrderStatus.FILLED:
            outcome.trade = self._on_filled(book, order, report.fill.timestamp)
        if order.is_terminal:
            self._retire(order)
        return outcome

    def _book_fill(self, book: _Book, order: Order, fill: Fill) -> None:
        pos = book.position
        was_flat = pos.is_flat
        realized = pos.apply_fill(fill)
        if was_flat:
            book.reset_trade()
            book.trade_side = pos.direction
            book.trade_entry_time = fill.timestamp
        book.trade_fees += fill.fee
        book.trade_realized += realized
        if abs(pos.quantity) > book.trade_qty:
            book.trade_qty = abs(pos.quantity)
            book.trade_entry_price = pos.entry_price
        if order is book.exit_order:
            book.exit_qty += fill.quantity
            book.exit_notional += fill.notional
        self.context.stats["fills"] += 1
        logger.debug(
            "%s: fill %s %s %s @ %.6g fee=%.6g -> pos %s",
            fill.instrument, order.id, fill.side.value, fill.quantity, fill.price, fill.fee, pos.quantity,
        )

    def _set_levels(self, book: _Book) -> None:
        pos = book.position
        sign = 1 if pos.quantity > 0 else -1
        pos.stop_price, pos.take_profit_price = self._levels(sign, pos.entry_price, book.signal_stop, book.signal_tp)

    def _on_filled(self, book: _Book, order: Order, when: datetime) -> Optional[Trade]:
        if order is book.entry_order:
            book.entry_order = None
            book.ref_prices.pop(order.id, None)
            book.cancel_requested = False
            book.state = PositionState.OPEN
            self._set_levels(book)
            logger.info(
                "%s: OPEN %s @ %.6g stop=%s tp=%s", order.instrument, book.position.quantity,
                book.position.entry_price, book.position.stop_price, book.position.take_profit_price,
            )
            return None
        if order is book.exit_order and book.position.is_flat:
            return self._close_round_trip(book, when)
        return None

    def _on_dead_order(self, book: _Book, order: Order) -> None:
        """Cancelled or rejected order: revert to the last stable state."""
        counter = "orders_rejected" if order.status is OrderStatus.REJECTED else "orders_cancelled"
        err = OrderError(
            f"order {order.id} {order.status.value.lower()}: {order.reason or 'no reason'}"
            f" (filled {order.filled_quantity}/{order.quantity})",
            order.instrument,
        )
        self.context.record(err, counter)
        logger.warning("%s: %s", order.instrument, err)
        if order is book.entry_order:
            book.entry_order = None
            book.ref_prices.pop(order.id, None)
            book.cancel_requested = False
            if book.position.is_flat:
                book.state = PositionState.FLAT
                book.reset_trade()
            else:
                # partially filled: the filled part stays open, the rest is gone
                book.state = PositionState.OPEN
                self._set_levels(book)
        elif order is book.exit_order:
            book.exit_order = None
            book.exit_reason = ""
            book.state = PositionState.FLAT if book.position.is_flat else PositionState.OPEN

    def _close_round_trip(self, book: _Book, exit_time) -> Trade:
        exit_price = book.exit_notional / book.exit_qty if book.exit_qty else 0.0
        pnl = book.trade_realized - book.trade_fees
        basis = book.trade_entry_price * book.trade_qty
        trade = Trade(
            instrument=book.position.instrument,
            side=book.trade_side,
            quantity=book.trade_qty,
            entry_price=book.trade_entry_price,
            exit_price=exit_price,
            pnl=pnl,
            pnl_pct=pnl / basis * 100 if basis else 0.0,
            entry_time=book.trade_entry_time,
            exit_time=exit_time,
            exit_reason=book.exit_reason or "closed",
            fees=book.trade_fees,
        )
        self.trades.append(trade)
        self.risk.record_trade_pnl(pnl)
        book.state = PositionState.FLAT
        book.exit_order = None
        book.exit_reason = ""
        book.cooldown_left = self.config.cooldown_bars
        book.reset_trade()
        logger.info(
            "%s: closed %s %s @ %.6g -> %.6g pnl=%.4f (%s)",
            trade.instrument, trade.side.value, trade.quantity, trade.entry_price,
            trade.exit_price, trade.pnl, trade.exit_reason,
        )
        return trade

    # --- shutdown ---

    def resolve_pending(self, reason: str = "shutdown") -> List[Order]:
        """Cancel internally every order still pending (after the adapter was asked)."""
        resolved = []
        for order in self.pending_orders():
            order.transition(OrderStatus.CANCELLED, reason)
            self._on_dead_order(self._books[order.instrument], order)
            self._retire(order)
            resolved.append(order)
        return resolved
