"""
Backtest execution simulator. Orders wait for the next bar: market orders fill at
its open (plus slippage), limit and stop orders when its range crosses their
price. An order never fills on a bar that does not start after it was created.
"""

from __future__ import annotations
import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Deque, Dict, Iterable, List, Optional

from trading_engine.core.context import RunContext
from trading_engine.core.errors import SimulationError
from trading_engine.core.types import (
    QTY_EPSILON,
    Bar,
    ExecutionReport,
    Fill,
    Order,
    OrderSide,
    OrderStatus,
    OrderType,
)
from trading_engine.execution.base import ExecutionAdapter

logger = logging.getLogger("trading_engine.execution.sim")


@dataclass
class _Working:
    order: Order
    remaining: float


class BacktestSimulator(ExecutionAdapter):
    """Deterministic fills against historical bars, FIFO per instrument."""

    def __init__(
        self,
        instruments: Iterable[str],
        slippage_bps: float = 0.0,
        fee_bps: float = 0.0,
        volume_participation: float = 0.0,
    ):
        self.instruments = tuple(instruments)
        self.slippage_bps = slippage_bps
        self.fee_bps = fee_bps
        self.volume_participation = volume_participation
        self._working: Dict[str, List[_Working]] = {i: [] for i in self.instruments}
        self._reports: Deque[ExecutionReport] = deque()
        self._last_time: Dict[str, datetime] = {}

    @classmethod
    def from_context(cls, context: RunContext) -> "BacktestSimulator":
        cfg = context.config
        return cls(
            context.instruments,
            slippage_bps=cfg.slippage_bps,
            fee_bps=cfg.fee_bps,
            volume_participation=cfg.volume_participation,
        )

    def _reject(self, order: Order, reason: str) -> None:
        logger.warning("Rejecting %s (%s): %s", order.id, order.instrument, reason)
        self._reports.append(ExecutionReport(
            order_id=order.id, instrument=order.instrument, status=OrderStatus.REJECTED,
            timestamp=order.created_at, reason=reason,
        ))

    def submit(self, order: Order) -> None:
        if order.instrument not in self._working:
            return self._reject(order, f"unknown instrument {order.instrument}")
        if not order.quantity > 0:
            return self._reject(order, f"invalid quantity {order.quantity}")
        if order.order_type is not OrderType.MARKET and (order.price is None or order.price <= 0):
            return self._reject(order, f"{order.order_type.value} order needs a positive price")
        self._working[order.instrument].append(_Working(order=order, remaining=order.quantity))

    def cancel(self, order_id: str) -> bool:
        for inst, queue in self._working.items():
            for w in queue:
                if w.order.id == order_id:
                    queue.remove(w)
                    self._reports.append(ExecutionReport(
                        order_id=order_id, instrument=inst, status=OrderStatus.CANCELLED,
                        timestamp=self._last_time.get(inst, w.order.created_at), reason="cancel requested",
                    ))
                    return True
        return False

    def poll(self, instrument: Optional[str] = None) -> List[ExecutionReport]:
        if instrument is None:
            out = list(self._reports)
            self._reports.clear()
            return out
        out, keep = [], deque()
        for r in self._reports:
            (out if r.instrument == instrument else keep).append(r)
        self._reports = keep
        return out

    def open_orders(self, instrument: Optional[str] = None) -> List[Order]:
        return [
            w.order for inst, queue in self._working.items() for w in queue
            if instrument is None or inst == instrument
        ]

    def _price(self, order: Order, bar: Bar) -> Optional[float]:
        slip = self.slippage_bps / 1e4
        buy = order.side is OrderSide.BUY
        if order.order_type is OrderType.MARKET:
            return bar.open * (1 + slip if buy else 1 - slip)
        if order.order_type is OrderType.LIMIT:
            if buy and bar.low <= order.price:
                return min(bar.open, order.price)
            if not buy and bar.high >= order.price:
                return max(bar.open, order.price)
            return None
        # stop: triggers through the level, fills at the worse of open and stop
        if buy and bar.high >= order.price:
            return max(bar.open, order.price) * (1 + slip)
        if not buy and bar.low <= order.price:
            return min(bar.open, order.price) * (1 - slip)
        return None

    def on_market_data(self, bar: Bar) -> None:
        if bar.instrument not in self._working:
            raise SimulationError(f"bar for unknown instrument {bar.instrument}", bar.instrument)
        last = self._last_time.get(bar.instrument)
        if last is not None and bar.open_time <= last:
            raise SimulationError(
                f"bar at {bar.open_time} is not after last processed bar {last}", bar.instrument
            )
        self._last_time[bar.instrument] = bar.open_time

        available = bar.volume * self.volume_participation if self.volume_participation > 0 else None
        still: List[_Working] = []
        for w in self._working[bar.instrument]:
            order = w.order
            if order.created_at >= bar.open_time:
                still.append(w)
                continue
            price = self._price(order, bar)
            if price is None:
                still.append(w)
                continue
            qty = w.remaining if available is None else min(w.remaining, available)
            if qty <= QTY_EPSILON:
                still.append(w)
                continue
            if available is not None:
                available -= qty
            w.remaining -= qty
            done = w.remaining <= QTY_EPSILON
            fee = price * qty * self.fee_bps / 1e4
            self._reports.append(ExecutionReport(
                order_id=order.id,
                instrument=order.instrument,
                status=OrderStatus.FILLED if done else OrderStatus.PARTIALLY_FILLED,
                timestamp=bar.open_time,
                fill=Fill(
                    order_id=order.id, instrument=order.instrument, side=order.side,
                    price=price, quantity=qty, fee=fee, timestamp=bar.open_time,
                ),
            ))
            if not done:
                still.append(w)
        self._working[bar.instrument] = still
