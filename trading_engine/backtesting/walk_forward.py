"""
Walk-forward splits: in-sample (train) followed by out-of-sample (test) windows.
Windows are counted in bar times shared by all instruments, so one window
covers the same calendar span everywhere.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Mapping, Optional

from trading_engine.core.types import Bar


@dataclass
class WalkForwardWindow:
    """Single train/test window, as [start, end) indices into the bar times."""
    train_start: int
    train_end: int
    test_start: int
    test_end: int


def split_windows(
    n_bars: int,
    train_pct: float = 0.7,
    step_bars: Optional[int] = None,
) -> List[WalkForwardWindow]:
    """
    One split at train_pct when step_bars is None; otherwise a rolling train
    window of fixed length advanced by step_bars, each followed by step_bars of test.
    """
    train_len = int(n_bars * train_pct)
    if train_len < 1 or train_len >= n_bars:
        return []
    if step_bars is None:
        return [WalkForwardWindow(0, train_len, train_len, n_bars)]
    if step_bars < 1:
        raise ValueError(f"step_bars must be >= 1, got {step_bars}")
    windows = []
    start = 0
    while start + train_len < n_bars:
        test_end = min(start + train_len + step_bars, n_bars)
        windows.append(WalkForwardWindow(start, start + train_len, start + train_len, test_end))
        start += step_bars
    return windows


def bar_times(bars_by_instrument: Mapping[str, Iterable[Bar]]) -> List[datetime]:
    """Sorted distinct open times across instruments."""
    return sorted({b.open_time for bars in bars_by_instrument.values() for b in bars})


def slice_bars(
    bars_by_instrument: Mapping[str, Iterable[Bar]],
    start: datetime,
    end: Optional[datetime],
) -> Dict[str, List[Bar]]:
    """Bars with start <= open_time < end (end None = to the last bar)."""
    return {
        inst: [b for b in bars if b.open_time >= start and (end is None or b.open_time < end)]
        for inst, bars in bars_by_instrument.items()
    }
