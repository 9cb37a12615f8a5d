"""
Performance tracker: cash, realized and unrealized P&L, equity curve, drawdown.

    cash   = initial capital - fees paid
    equity = cash + realized (gross) + unrealized

Lots are tracked here from fills, independently of the position manager.
"""

from __future__ import annotations
import logging
from collections import deque
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Deque, Dict, List, Optional, Tuple

from trading_engine.core.types import QTY_EPSILON, Fill, Trade

logger = logging.getLogger("trading_engine.analytics")


@dataclass(frozen=True)
class PerformanceSnapshot:
    equity: float
    cash: float
    realized_pnl: float
    unrealized_pnl: float
    fees: float
    drawdown: float
    drawdown_pct: float
    max_drawdown: float
    max_drawdown_pct: float
    trade_count: int
    win_rate: float

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass
class _Lot:
    quantity: float = 0.0  # signed
    avg_price: float = 0.0
    last_price: float = 0.0

    @property
    def unrealized(self) -> float:
        if abs(self.quantity) <= QTY_EPSILON:
            return 0.0
        return (self.last_price - self.avg_price) * self.quantity


class PerformanceTracker:
    """
    history bounds the equity curve and the per-trade P&L list (live runs);
    None keeps everything, which backtest metrics need.
    """

    def __init__(self, initial_capital: float, history: Optional[int] = None):
        self.initial_capital = initial_capital
        self.fees = 0.0
        self.realized_pnl = 0.0
        self.equity_curve: Deque[Tuple[datetime, float]] = deque(maxlen=history)
        self.trade_pnls: Deque[float] = deque(maxlen=history)
        self._trade_count = 0
        self._wins = 0
        self._lots: Dict[str, _Lot] = {}
        self._peak = initial_capital
        self._drawdown = 0.0
        self._max_drawdown = 0.0
        self._max_drawdown_pct = 0.0

    @property
    def cash(self) -> float:
        return self.initial_capital - self.fees

    @property
    def unrealized_pnl(self) -> float:
        return sum(lot.unrealized for lot in self._lots.values())

    @property
    def equity(self) -> float:
        return self.cash + self.realized_pnl + self.unrealized_pnl

    def exposure(self) -> float:
        return sum(abs(lot.quantity) * lot.last_price for lot in self._lots.values())

    def on_fill(self, fill: Fill) -> float:
        """Book a fill; returns the gross P&L it realized."""
        lot = self._lots.setdefault(fill.instrument, _Lot())
        signed = fill.signed_quantity
        realized = 0.0
        if abs(lot.quantity) <= QTY_EPSILON or (lot.quantity > 0) == (signed > 0):
            total = abs(lot.quantity) + fill.quantity
            lot.avg_price = (lot.avg_price * abs(lot.quantity) + fill.price * fill.quantity) / total
            lot.quantity += signed
        else:
            closing = min(abs(lot.quantity), fill.quantity)
            realized = (fill.price - lot.avg_price) * closing * (1.0 if lot.quantity > 0 else -1.0)
            was_long = lot.quantity > 0
            lot.quantity += signed
            if abs(lot.quantity) <= QTY_EPSILON:
                lot.quantity, lot.avg_price = 0.0, 0.0
            elif (lot.quantity > 0) != was_long:
                lot.avg_price = fill.price
        lot.last_price = fill.price
        self.fees += fill.fee
        self.realized_pnl += realized
        self._record(fill.timestamp)
        return realized

    def on_mark(self, instrument: str, price: float, timestamp: datetime) -> None:
        lot = self._lots.setdefault(instrument, _Lot())
        lot.last_price = price
        self._record(timestamp)

    def on_trade(self, trade: Trade) -> None:
        self.trade_pnls.append(trade.pnl)
        self._trade_count += 1
        if trade.pnl > 0:
            self._wins += 1

    def _record(self, timestamp: datetime) -> None:
        eq = self.equity
        self.equity_curve.append((timestamp, eq))
        if eq > self._peak:
            self._peak = eq
        self._drawdown = self._peak - eq
        if self._drawdown > self._max_drawdown:
            self._max_drawdown = self._drawdown
        if self._peak > 0:
            self._max_drawdown_pct = max(self._max_drawdown_pct, self._drawdown / self._peak * 100.0)

    def equity_by_period(self) -> List[Tuple[datetime, float]]:
        """Last equity per timestamp, in time order (one point per bar time)."""
        last: Dict[datetime, float] = {}
        for ts, eq in self.equity_curve:
            last[ts] = eq
        return sorted(last.items())

    def snapshot(self) -> PerformanceSnapshot:
        unrealized = self.unrealized_pnl
        cash = self.cash
        n = self._trade_count
        return PerformanceSnapshot(
            equity=cash + self.realized_pnl + unrealized,
            cash=cash,
            realized_pnl=self.realized_pnl,
            unrealized_pnl=unrealized,
            fees=self.fees,
            drawdown=self._drawdown,
            drawdown_pct=self._drawdown / self._peak * 100.0 if self._peak > 0 else 0.0,
            max_drawdown=self._max_drawdown,
            max_drawdown_pct=self._max_drawdown_pct,
            trade_count=n,
            win_rate=self._wins / n if n else 0.0,
        )
