"""
Backtest engine: no lookahead, closed bars only, slippage and fee simulation.
Bars of all instruments are replayed in time order through the same session
cycle as live trading; fills come from BacktestSimulator.
"""

from __future__ import annotations
import heapq
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from trading_engine.analytics.metrics import PerformanceMetrics, compute_metrics
from trading_engine.core.context import RunContext
from trading_engine.core.errors import SimulationError
from trading_engine.core.types import Bar, Position, Signal, Trade
from trading_engine.data.history import DateLike, filter_range
from trading_engine.data.store import check_bar
from trading_engine.execution.simulator import BacktestSimulator
from trading_engine.risk.manager import RiskManager
from trading_engine.runtime.session import TradingSession
from trading_engine.strategies import build_strategy
from trading_engine.strategies.base import BaseStrategy
from trading_engine.utils.timeframes import periods_per_year

logger = logging.getLogger("trading_engine.backtest")


@dataclass
class BacktestResult:
    """Backtest output: trades, equity curve, metrics and the final snapshot."""
    trades: List[Trade] = field(default_factory=list)
    equity_curve: List[Tuple[datetime, float]] = field(default_factory=list)
    metrics: Optional[PerformanceMetrics] = None
    positions: Dict[str, Position] = field(default_factory=dict)
    signals: List[Signal] = field(default_factory=list)
    stats: Dict[str, int] = field(default_factory=dict)
    snapshot: Dict[str, Any] = field(default_factory=dict)
    params: Dict[str, Any] = field(default_factory=dict)
    benchmark_return_pct: float = 0.0  # buy-and-hold, equal weight
    bars_processed: int = 0
    cancelled: bool = False


def validate_history(bars_by_instrument: Mapping[str, Iterable[Bar]], context: RunContext) -> Dict[str, List[Bar]]:
    """Malformed, non-monotonic or foreign history is a SimulationError."""
    out: Dict[str, List[Bar]] = {}
    for inst, bars in bars_by_instrument.items():
        if inst not in context.instruments:
            raise SimulationError(f"history for {inst} which is not in the universe", inst)
        bars = list(bars)
        last = None
        for bar in bars:
            if bar.instrument != inst:
                raise SimulationError(f"{bar.instrument} bar in {inst} history", inst)
            problem = check_bar(bar)
            if problem:
                raise SimulationError(f"malformed bar at {bar.open_time}: {problem}", inst)
            if last is not None and bar.open_time <= last:
                raise SimulationError(f"history not strictly increasing at {bar.open_time}", inst)
            last = bar.open_time
        out[inst] = bars
    return out


def buy_and_hold_pct(bars_by_instrument: Mapping[str, List[Bar]]) -> float:
    """Equal-weight buy-and-hold return from first open to last close."""
    rets = [
        (bars[-1].close / bars[0].open - 1.0) * 100.0
        for bars in bars_by_instrument.values() if bars and bars[0].open > 0
    ]
    return sum(rets) / len(rets) if rets else 0.0


class BacktestEngine:
    """
    Runs a strategy on historical bars. A decision on bar t can only fill on a
    bar after t; positions still open at the end stay open, marked at the last close.
    """

    def __init__(
        self,
        context: RunContext,
        strategy: Optional[BaseStrategy] = None,
        risk_manager: Optional[RiskManager] = None,
    ):
        self.context = context
        self.strategy = strategy or build_strategy(context.config.strategy, context.config.strategy_params)
        self.risk_manager = risk_manager or RiskManager.from_config(context.config)

    def run(
        self,
        bars_by_instrument: Mapping[str, Iterable[Bar]],
        start: DateLike = None,
        end: DateLike = None,
    ) -> BacktestResult:
        """Replay [start, end) of the history; SimulationError aborts the run."""
        cfg = self.context.config
        history = validate_history(bars_by_instrument, self.context)
        start = start if start is not None else cfg.backtest_start
        end = end if end is not None else cfg.backtest_end
        # bars before the window only prime stores and indicators
        lead_in = {inst: filter_range(bars, None, start) for inst, bars in history.items()} if start is not None else {}
        history = {inst: filter_range(bars, start, end) for inst, bars in history.items()}

        adapter = BacktestSimulator.from_context(self.context)
        session = TradingSession(self.context, self.strategy, adapter, risk=self.risk_manager)
        warmed = session.seed(lead_in)
        logger.info(
            "Backtest %s: %s on %s, %d bars (%d warm-up)",
            self.context.run_id, self.strategy, ", ".join(history), sum(len(b) for b in history.values()), warmed,
        )
        merged = heapq.merge(*history.values(), key=lambda b: (b.open_time, b.instrument))
        n = 0
        for bar in merged:
            if self.context.cancelled:
                logger.info("Backtest %s cancelled after %d bars", self.context.run_id, n)
                break
            session.on_bar(bar)
            n += 1
        session.shutdown("cancelled" if self.context.cancelled else "end of data")

        tracker = session.tracker
        curve = tracker.equity_by_period()
        metrics = compute_metrics(
            tracker.trade_pnls,
            [eq for _, eq in curve],
            initial_capital=cfg.initial_capital,
            periods_per_year=periods_per_year(cfg.timeframe),
        )
        result = BacktestResult(
            trades=list(session.manager.trades),
            equity_curve=curve,
            metrics=metrics,
            positions=session.manager.positions(),
            signals=session.manager.recent_signals(),
            stats=dict(self.context.stats),
            snapshot=session.snapshot(),
            params=dict(self.strategy.params),
            benchmark_return_pct=buy_and_hold_pct(history),
            bars_processed=n,
            cancelled=self.context.cancelled,
        )
        logger.info(
            "Backtest %s done: %d trades, return %.2f%% (buy&hold %.2f%%), max DD %.2f%%",
            self.context.run_id, metrics.total_trades, metrics.total_return_pct,
            result.benchmark_return_pct, metrics.max_drawdown_pct,
        )
        return result
