"""
TradingSession: the per-bar cycle shared by backtests and live trading.

For every closed bar of an instrument:
  1. store the bar (stale / duplicate / malformed bars are dropped and counted)
  2. let the adapter see it (the simulator fills orders created on earlier bars)
  3. book execution reports for the instrument
  4. update indicators, mark the tracker
  5. stop-loss / take-profit / trailing-stop checks on the bar close
  6. strategy decision, then the manager's reaction
  7. submit new orders, forward cancel requests, book immediate reports

Both modes drive this same method, so the same bars give the same decisions.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional

from trading_engine.analytics.tracker import PerformanceTracker
from trading_engine.core.context import RunContext
from trading_engine.core.errors import DataError
from trading_engine.core.types import Bar, ExecutionReport, Order, Signal, Trade
from trading_engine.data.feed import MarketDataNormalizer, RawEvent
from trading_engine.data.store import TimeSeriesStore
from trading_engine.execution.base import ExecutionAdapter
from trading_engine.indicators.engine import IndicatorEngine
from trading_engine.orders.manager import PositionManager
from trading_engine.risk.manager import RiskManager
from trading_engine.strategies.base import BaseStrategy

logger = logging.getLogger("trading_engine.session")


@dataclass
class CycleResult:
    """What one bar produced."""
    bar: Bar
    signal: Optional[Signal] = None
    orders: List[Order] = field(default_factory=list)
    reports: List[ExecutionReport] = field(default_factory=list)
    trades: List[Trade] = field(default_factory=list)


class TradingSession:
    def __init__(
        self,
        context: RunContext,
        strategy: BaseStrategy,
        adapter: ExecutionAdapter,
        risk: Optional[RiskManager] = None,
        tracker: Optional[PerformanceTracker] = None,
        history: Optional[int] = None,
    ):
        """history bounds closed trades and the equity curve (live runs); None keeps all."""
        self.context = context
        self.strategy = strategy
        self.adapter = adapter
        self.manager = PositionManager(context, risk, trade_history=history)
        self.tracker = tracker or PerformanceTracker(context.config.initial_capital, history=history)
        tf = context.config.timeframe_seconds
        self.stores: Dict[str, TimeSeriesStore] = {}
        self.indicators: Dict[str, IndicatorEngine] = {}
        self.normalizers: Dict[str, MarketDataNormalizer] = {}
        for inst in context.instruments:
            self.stores[inst] = TimeSeriesStore(inst)
            engine = IndicatorEngine(inst, timeframe_seconds=tf, stats=context.stats)
            for spec in strategy.indicator_specs():
                engine.register(spec)
            self.indicators[inst] = engine
            self.normalizers[inst] = MarketDataNormalizer(inst, tf)
        self._closed = False

    # --- inputs ---

    def _route(self, raw: RawEvent) -> str:
        if isinstance(raw, Bar):
            return raw.instrument
        if isinstance(raw, Mapping):
            symbol = raw.get("s") or raw.get("symbol") or raw.get("instrument")
            if symbol:
                return str(symbol).upper()
        if len(self.context.instruments) == 1:
            return self.context.instruments[0]
        raise DataError(f"cannot tell which instrument {raw!r} belongs to")

    def feed(self, raw: RawEvent, instrument: Optional[str] = None) -> List[CycleResult]:
        """Normalize a raw market event and run the cycle for every bar it closes."""
        try:
            inst = instrument or self._route(raw)
            self.context.require_instrument(inst)
            bars = self.normalizers[inst].feed(raw)
        except DataError as e:
            self.context.record(e, "bad_events")
            logger.warning("Dropped market event: %s", e)
            return []
        return [r for r in (self.on_bar(b) for b in bars) if r is not None]

    def warm_up(self, bars: Iterable[Bar]) -> int:
        """Load history into stores and indicators without trading on it."""
        n = 0
        for bar in bars:
            try:
                self.stores[bar.instrument].append(bar)
            except (DataError, KeyError) as e:
                logger.warning("Warm-up bar skipped: %s", e)
                continue
            self.indicators[bar.instrument].update(bar)
            n += 1
        return n

    def seed(self, history: Mapping[str, Iterable[Bar]]) -> int:
        """
        Backtest warm-up: bulk-load validated history that precedes the replay
        window. Unlike warm_up, a bad batch raises SimulationError.
        """
        n = 0
        for inst, bars in history.items():
            bars = list(bars)
            n += self.stores[inst].seed(bars)
            for bar in bars:
                self.indicators[inst].update(bar)
        return n

    # --- the cycle ---

    def on_bar(self, bar: Bar) -> Optional[CycleResult]:
        """Run one bar through the pipeline. Returns None if the bar was dropped."""
        try:
            self.context.require_instrument(bar.instrument)
            self.stores[bar.instrument].append(bar)
        except DataError as e:
            self.context.record(e, "stale_bars")
            logger.warning("Dropped bar: %s", e)
            return None
        self.context.stats["bars"] += 1
        result = CycleResult(bar=bar)

        self.adapter.on_market_data(bar)
        self._book_reports(self.adapter.poll(bar.instrument), result)

        engine = self.indicators[bar.instrument]
        engine.update(bar)
        self.tracker.on_mark(bar.instrument, bar.close, bar.open_time)

        equity = self.tracker.equity
        exits = self.manager.check_exits(bar, equity)
        self._submit(exits, result)

        position = self.manager.position(bar.instrument)
        signal = self.strategy.decide(bar, engine.snapshot(), position)
        result.signal = signal
        self._submit(self.manager.on_signal(signal, bar, equity), result)
        self._forward_cancels()
        self._book_reports(self.adapter.poll(bar.instrument), result)
        return result

    def _submit(self, orders: List[Order], result: CycleResult) -> None:
        for order in orders:
            self.adapter.submit(order)
            result.orders.append(order)

    def _forward_cancels(self) -> None:
        for order_id in self.manager.pop_cancel_requests():
            if not self.adapter.cancel(order_id):
                logger.info("Cancel of %s not accepted by adapter (already final?)", order_id)

    def _book_reports(self, reports: List[ExecutionReport], result: Optional[CycleResult] = None) -> List[Trade]:
        trades = []
        for report in reports:
            outcome = self.manager.on_report(report)
            if outcome.fill_applied and report.fill is not None:
                self.tracker.on_fill(report.fill)
            if outcome.trade is not None:
                self.tracker.on_trade(outcome.trade)
                trades.append(outcome.trade)
            if result is not None:
                result.reports.append(report)
        if result is not None:
            result.trades.extend(trades)
        return trades

    def process_reports(self, reports: List[ExecutionReport]) -> List[Trade]:
        """Book reports that arrived outside a bar cycle (live execution polling)."""
        return self._book_reports(reports)

    # --- shutdown and views ---

    def shutdown(self, reason: str = "shutdown") -> List[Order]:
        """Cancel every pending order through the adapter, then resolve leftovers internally."""
        if self._closed:
            return []
        self._closed = True
        for order in self.manager.pending_orders():
            self.adapter.cancel(order.id)
        self._book_reports(self.adapter.poll())
        leftovers = self.manager.resolve_pending(reason)
        if leftovers:
            logger.info("Resolved %d pending order(s) at %s", len(leftovers), reason)
        return leftovers

    def snapshot(self) -> Dict[str, Any]:
        return {
            "run_id": self.context.run_id,
            "positions": self.manager.positions(),
            "states": {inst: self.manager.state(inst) for inst in self.context.instruments},
            "pending_orders": self.manager.pending_orders(),
            "recent_signals": self.manager.recent_signals(),
            "performance": self.tracker.snapshot(),
            "stats": dict(self.context.stats),
        }
