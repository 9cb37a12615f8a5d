"""
Core data types: bars, ticks, signals, orders, fills, positions and trades.
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Mapping, Optional

from trading_engine.core.errors import OrderError

# Quantities below this are treated as zero (float residue after partial fills).
QTY_EPSILON = 1e-12


class Direction(str, Enum):
    LONG = "LONG"
    SHORT = "SHORT"
    FLAT = "FLAT"

    @property
    def sign(self) -> int:
        return {Direction.LONG: 1, Direction.SHORT: -1, Direction.FLAT: 0}[self]


class OrderSide(str, Enum):
    BUY = "BUY"
    SELL = "SELL"

    @property
    def sign(self) -> int:
        return 1 if self is OrderSide.BUY else -1

    @property
    def opposite(self) -> "OrderSide":
        return OrderSide.SELL if self is OrderSide.BUY else OrderSide.BUY

    @classmethod
    def for_direction(cls, direction: Direction) -> "OrderSide":
        if direction is Direction.LONG:
            return cls.BUY
        if direction is Direction.SHORT:
            return cls.SELL
        raise ValueError("FLAT has no order side")


class OrderType(str, Enum):
    MARKET = "MARKET"
    LIMIT = "LIMIT"
    STOP = "STOP"


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    PARTIALLY_FILLED = "PARTIALLY_FILLED"
    FILLED = "FILLED"
    CANCELLED = "CANCELLED"
    REJECTED = "REJECTED"

    @property
    def is_terminal(self) -> bool:
        return self in (OrderStatus.FILLED, OrderStatus.CANCELLED, OrderStatus.REJECTED)


class PositionState(str, Enum):
    FLAT = "FLAT"
    ENTERING = "ENTERING"
    OPEN = "OPEN"
    EXITING = "EXITING"


@dataclass(frozen=True)
class Bar:
    """OHLCV candle for one instrument. Immutable once built."""
    instrument: str
    open_time: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float

    @property
    def typical_price(self) -> float:
        return (self.high + self.low + self.close) / 3.0


@dataclass(frozen=True)
class Tick:
    """Single trade print."""
    instrument: str
    timestamp: datetime
    price: float
    quantity: float
    side: OrderSide


@dataclass(frozen=True)
class IndicatorSnapshot:
    """Indicator values at the latest bar and the bar before it. None = no value yet."""
    values: Mapping[str, Optional[float]] = field(default_factory=dict)
    previous: Mapping[str, Optional[float]] = field(default_factory=dict)

    def get(self, name: str) -> Optional[float]:
        return self.values.get(name)

    def prev(self, name: str) -> Optional[float]:
        return self.previous.get(name)

    def ready(self, *names: str) -> bool:
        return all(self.values.get(n) is not None for n in names)


@dataclass(frozen=True)
class Signal:
    """A strategy's directional decision for one bar."""
    instrument: str
    timestamp: datetime
    direction: Direction
    strength: float = 1.0
    stop_price: Optional[float] = None
    take_profit_price: Optional[float] = None
    entry_price: Optional[float] = None  # limit entry; None = market
    metadata: Mapping[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class Fill:
    """(Part of) an order executed at a price."""
    order_id: str
    instrument: str
    side: OrderSide
    price: float
    quantity: float
    fee: float
    timestamp: datetime

    @property
    def signed_quantity(self) -> float:
        return self.side.sign * self.quantity

    @property
    def notional(self) -> float:
        return self.price * self.quantity


@dataclass(frozen=True)
class ExecutionReport:
    """Status change of an order as seen by an execution adapter."""
    order_id: str
    instrument: str
    status: OrderStatus
    timestamp: datetime
    fill: Optional[Fill] = None
    reason: str = ""


_ALLOWED = {
    OrderStatus.PENDING: {
        OrderStatus.PARTIALLY_FILLED, OrderStatus.FILLED, OrderStatus.CANCELLED, OrderStatus.REJECTED,
    },
    OrderStatus.PARTIALLY_FILLED: {
        OrderStatus.PARTIALLY_FILLED, OrderStatus.FILLED, OrderStatus.CANCELLED, OrderStatus.REJECTED,
    },
}


@dataclass
class Order:
    """Order owned by the position manager until it reaches a terminal status."""
    id: str
    instrument: str
    side: OrderSide
    quantity: float
    created_at: datetime
    order_type: OrderType = OrderType.MARKET
    price: Optional[float] = None  # limit / stop trigger
    leverage: float = 1.0
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    reduce_only: bool = False
    status: OrderStatus = OrderStatus.PENDING
    filled_quantity: float = 0.0
    avg_fill_price: float = 0.0
    fees: float = 0.0
    reason: str = ""

    @property
    def remaining(self) -> float:
        rem = self.quantity - self.filled_quantity
        return rem if rem > QTY_EPSILON else 0.0

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def transition(self, status: OrderStatus, reason: str = "") -> None:
        """Move to a new status. Terminal statuses are final."""
        if status == self.status and not status.is_terminal:
            return
        if status not in _ALLOWED.get(self.status, set()):
            raise OrderError(
                f"order {self.id}: illegal transition {self.status.value} -> {status.value}",
                self.instrument,
            )
        self.status = status
        if reason:
            self.reason = reason

    def apply_fill(self, fill: Fill) -> None:
        if fill.quantity > self.remaining + QTY_EPSILON:
            raise OrderError(
                f"order {self.id}: fill {fill.quantity} exceeds remaining {self.remaining}",
                self.instrument,
            )
        total = self.filled_quantity + fill.quantity
        self.avg_fill_price = (self.avg_fill_price * self.filled_quantity + fill.price * fill.quantity) / total
        self.filled_quantity = total
        self.fees += fill.fee
        self.transition(OrderStatus.FILLED if self.remaining == 0.0 else OrderStatus.PARTIALLY_FILLED)


@dataclass
class Position:
    """Open position state. Signed quantity: > 0 long, < 0 short. Mutated only by fills."""
    instrument: str
    quantity: float = 0.0
    entry_price: float = 0.0
    unrealized_pnl: float = 0.0
    realized_pnl: float = 0.0
    leverage: float = 1.0
    open_time: Optional[datetime] = None
    stop_price: Optional[float] = None
    take_profit_price: Optional[float] = None
    peak_price: Optional[float] = None
    last_price: Optional[float] = None

    @property
    def is_flat(self) -> bool:
        return abs(self.quantity) <= QTY_EPSILON

    @property
    def direction(self) -> Direction:
        if self.is_flat:
            return Direction.FLAT
        return Direction.LONG if self.quantity > 0 else Direction.SHORT

    @property
    def notional(self) -> float:
        price = self.last_price if self.last_price is not None else self.entry_price
        return abs(self.quantity) * price

    def apply_fill(self, fill: Fill) -> float:
        """Apply a fill; returns the gross P&L realized by the reducing part."""
        signed = fill.signed_quantity
        realized = 0.0
        if self.is_flat or (self.quantity > 0) == (signed > 0):
            total = abs(self.quantity) + fill.quantity
            self.entry_price = (self.entry_price * abs(self.quantity) + fill.price * fill.quantity) / total
            if self.is_flat:
                self.open_time = fill.timestamp
                self.peak_price = fill.price
            self.quantity += signed
        else:
            closing = min(abs(self.quantity), fill.quantity)
            direction = 1.0 if self.quantity > 0 else -1.0
            realized = (fill.price - self.entry_price) * closing * direction
            self.quantity += signed
            if abs(self.quantity) <= QTY_EPSILON:
                self.quantity = 0.0
                self.entry_price = 0.0
                self.open_time = None
                self.peak_price = None
            elif (self.quantity > 0) != (direction > 0):
                # flipped through zero: remainder opens at the fill price
                self.entry_price = fill.price
                self.open_time = fill.timestamp
                self.peak_price = fill.price
        self.realized_pnl += realized
        self.mark(fill.price)
        return realized

    def mark(self, price: float) -> None:
        self.last_price = price
        if self.is_flat:
            self.unrealized_pnl = 0.0
            return
        self.unrealized_pnl = (price - self.entry_price) * self.quantity
        if self.peak_price is None:
            self.peak_price = price
        elif self.quantity > 0:
            self.peak_price = max(self.peak_price, price)
        else:
            self.peak_price = min(self.peak_price, price)

    def snapshot(self) -> "Position":
        """Detached copy for read-only consumers (strategies, reporting)."""
        return replace(self)


@dataclass
class Trade:
    """Closed round trip for analytics."""
    instrument: str
    side: Direction
    quantity: float
    entry_price: float
    exit_price: float
    pnl: float
    pnl_pct: float
    entry_time: Optional[datetime]
    exit_time: datetime
    exit_reason: str  # "stop_loss" | "take_profit" | "trailing_stop" | "signal_flat" | "signal_reverse"
    fees: float = 0.0
