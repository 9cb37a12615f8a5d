"""
Optimization driver: one independent backtest per candidate parameter set.

Each candidate gets its own Config, RunContext, store, indicators and tracker,
built inside the worker, so nothing is shared between runs. Candidates run in a
process pool (sequentially with one worker); a failing candidate is kept in the
ranking, last, with its error.
"""

from __future__ import annotations
import logging
import os
from concurrent.futures import ProcessPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence

from trading_engine.analytics.metrics import PerformanceMetrics
from trading_engine.backtesting.engine import BacktestEngine, BacktestResult
from trading_engine.backtesting.walk_forward import WalkForwardWindow, bar_times, slice_bars, split_windows
from trading_engine.core.config import Config
from trading_engine.core.context import RunContext
from trading_engine.core.types import Bar
from trading_engine.data.history import DateLike
from trading_engine.optimization.objectives import check_objective, score

logger = logging.getLogger("trading_engine.optimize")


@dataclass
class CandidateResult:
    index: int
    params: Dict[str, Any]
    score: float = float("-inf")
    metrics: Optional[PerformanceMetrics] = None
    trades: int = 0
    stats: Dict[str, int] = field(default_factory=dict)
    error: Optional[str] = None
    rank: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class _Task:
    index: int
    config: Config
    params: Dict[str, Any]
    bars: Mapping[str, List[Bar]]
    objective: str
    start: DateLike = None
    end: DateLike = None


def run_candidate(task: _Task) -> CandidateResult:
    """Worker entry point (module level so it pickles)."""
    try:
        cfg = task.config.with_overrides(task.params)
        ctx = RunContext(cfg, run_id=f"opt-{task.index:04d}")
        result = BacktestEngine(ctx).run(task.bars, task.start, task.end)
        return CandidateResult(
            index=task.index,
            params=dict(task.params),
            score=score(result.metrics, task.objective),
            metrics=result.metrics,
            trades=len(result.trades),
            stats=result.stats,
        )
    except Exception as e:  # any failure ranks the candidate last; the sweep goes on
        logger.warning("Candidate %d %s failed: %s: %s", task.index, task.params, type(e).__name__, e)
        return CandidateResult(index=task.index, params=dict(task.params), error=f"{type(e).__name__}: {e}")


def rank_results(results: Sequence[CandidateResult]) -> List[CandidateResult]:
    """Successful first by score (desc), failures last; ties by candidate index."""
    ordered = sorted(results, key=lambda r: (not r.ok, -r.score, r.index))
    for i, r in enumerate(ordered, start=1):
        r.rank = i
    return ordered


class Optimizer:
    def __init__(self, config: Config, objective: Optional[str] = None, max_workers: Optional[int] = None):
        config.validate()
        self.config = config
        self.objective = check_objective(objective or config.objective)
        self.max_workers = max_workers if max_workers is not None else config.max_workers

    def _resolve_workers(self, n: int) -> int:
        cpu = os.cpu_count() or 1
        if self.max_workers is None:
            return max(1, min(cpu, n))
        return max(1, min(self.max_workers, n))

    def run(
        self,
        bars_by_instrument: Mapping[str, Sequence[Bar]],
        candidates: Sequence[Mapping[str, Any]],
        start: DateLike = None,
        end: DateLike = None,
    ) -> List[CandidateResult]:
        """Backtest every candidate; returns results ranked best first."""
        bars = {inst: list(b) for inst, b in bars_by_instrument.items()}
        tasks = [
            _Task(i, self.config, dict(params), bars, self.objective, start, end)
            for i, params in enumerate(candidates)
        ]
        if not tasks:
            logger.info("No candidates to evaluate")
            return []
        workers = self._resolve_workers(len(tasks))
        logger.info("Optimizing %d candidates on %s with %d worker(s)", len(tasks), self.objective, workers)
        if workers == 1:
            results = [run_candidate(t) for t in tasks]
        else:
            results = []
            with ProcessPoolExecutor(max_workers=workers) as pool:
                futures = {pool.submit(run_candidate, t): t for t in tasks}
                for fut in as_completed(futures):
                    t = futures[fut]
                    try:
                        results.append(fut.result())
                    except Exception as e:  # worker died or result did not unpickle
                        logger.error("Candidate %d lost: %s", t.index, e)
                        results.append(CandidateResult(index=t.index, params=t.params, error=f"{type(e).__name__}: {e}"))
        ranked = rank_results(results)
        best = ranked[0]
        if best.ok:
            logger.info("Best candidate #%d %s: %s=%.4f", best.index, best.params, self.objective, best.score)
        else:
            logger.warning("Every candidate failed; first error: %s", best.error)
        return ranked


@dataclass
class WalkForwardResult:
    window: WalkForwardWindow
    train_start: datetime
    test_start: datetime
    test_end: Optional[datetime]
    best: CandidateResult
    test: Optional[BacktestResult] = None


def walk_forward(
    config: Config,
    bars_by_instrument: Mapping[str, Sequence[Bar]],
    candidates: Sequence[Mapping[str, Any]],
    objective: Optional[str] = None,
    train_pct: Optional[float] = None,
    step_bars: Optional[int] = None,
    max_workers: Optional[int] = None,
) -> List[WalkForwardResult]:
    """Optimize on each train window, then run the winner on the window right after it."""
    train_pct = train_pct if train_pct is not None else config.walk_forward_train_pct
    step_bars = step_bars if step_bars is not None else config.walk_forward_step_bars
    times = bar_times(bars_by_instrument)
    optimizer = Optimizer(config, objective, max_workers)
    out: List[WalkForwardResult] = []
    for w in split_windows(len(times), train_pct, step_bars):
        train_start, test_start = times[w.train_start], times[w.test_start]
        test_end = times[w.test_end] if w.test_end < len(times) else None
        train = slice_bars(bars_by_instrument, train_start, test_start)
        best = optimizer.run(train, candidates, train_start, test_start)[0]
        wf = WalkForwardResult(w, train_start, test_start, test_end, best)
        if best.ok:
            ctx = RunContext(config.with_overrides(best.params), run_id=f"wf-{len(out):03d}")
            wf.test = BacktestEngine(ctx).run(
                slice_bars(bars_by_instrument, test_start, test_end), test_start, test_end
            )
            logger.info(
                "Walk-forward %s..%s: best %s, out-of-sample return %.2f%%",
                test_start, test_end or "end", best.params, wf.test.metrics.total_return_pct,
            )
        out.append(wf)
    return out
