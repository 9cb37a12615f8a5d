"""
Indicator engine: registered indicators updated once per bar (live) or folded
over a whole history (batch). Both paths run the same update code.
"""

from __future__ import annotations
import logging
import math
from collections import Counter
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Type, Union

import pandas as pd

from trading_engine.core.errors import ConfigError
from trading_engine.core.types import Bar, IndicatorSnapshot
from trading_engine.indicators.base import Indicator, IndicatorHandle, IndicatorSpec
from trading_engine.indicators.cumulative import CumReturn, CumSign, VWAP
from trading_engine.indicators.ewm import EMA
from trading_engine.indicators.rolling import ATR, RSI, SMA, RollingStd

logger = logging.getLogger("trading_engine.indicators")

INDICATORS: Dict[str, Type[Indicator]] = {
    cls.kind: cls for cls in (SMA, RollingStd, EMA, RSI, ATR, VWAP, CumReturn, CumSign)
}


def build_indicator(spec: IndicatorSpec) -> Indicator:
    try:
        cls = INDICATORS[spec.kind]
    except KeyError:
        raise ConfigError(f"unknown indicator kind {spec.kind!r}") from None
    try:
        return cls(**spec.kwargs())
    except TypeError as e:
        raise ConfigError(f"{spec.key}: {e}") from e


class IndicatorEngine:
    """Indicators for one instrument. Series stay index-aligned with the bars fed in."""

    def __init__(
        self,
        instrument: str,
        timeframe_seconds: Optional[int] = None,
        stats: Optional[Counter] = None,
    ):
        self.instrument = instrument
        self.timeframe_seconds = timeframe_seconds
        self.stats = stats if stats is not None else Counter()
        self._specs: Dict[str, IndicatorSpec] = {}  # key -> spec
        self._indicators: Dict[str, Indicator] = {}  # key -> live state
        self._names: Dict[str, str] = {}  # name -> key
        self._series: Dict[str, List[Optional[float]]] = {}  # key -> values
        self._current: Dict[str, Optional[float]] = {}
        self._previous: Dict[str, Optional[float]] = {}
        self._count = 0
        self._last_time: Optional[datetime] = None

    def __len__(self) -> int:
        return self._count

    def register(self, spec: IndicatorSpec) -> IndicatorHandle:
        """Register an indicator; identical specs share one state."""
        name = spec.label
        key = spec.key
        if name in self._names and self._names[name] != key:
            raise ConfigError(f"indicator name {name!r} already bound to {self._names[name]}")
        if key not in self._indicators:
            if self._count:
                raise ConfigError(f"cannot register {key} after {self._count} bars were processed")
            self._indicators[key] = build_indicator(spec)
            self._specs[key] = spec
            self._series[key] = []
        self._names[name] = key
        return IndicatorHandle(name=name, key=key)

    def _check_spacing(self, bar: Bar) -> None:
        if self._last_time is not None and self.timeframe_seconds:
            gap = (bar.open_time - self._last_time).total_seconds()
            if gap > self.timeframe_seconds:
                missing = int(gap // self.timeframe_seconds) - 1
                self.stats["bar_gaps"] += 1
                logger.info("%s: gap of %d bar(s) before %s", self.instrument, missing, bar.open_time)
        self._last_time = bar.open_time

    def update(self, bar: Bar) -> Dict[str, Optional[float]]:
        """Advance every indicator by one bar; returns values by name."""
        self._check_spacing(bar)
        values: Dict[str, Optional[float]] = {}
        for key, ind in self._indicators.items():
            values[key] = ind.update(bar)
            self._series[key].append(values[key])
        self._count += 1
        self._previous = self._current
        self._current = {name: values[key] for name, key in self._names.items()}
        return dict(self._current)

    def snapshot(self) -> IndicatorSnapshot:
        return IndicatorSnapshot(values=dict(self._current), previous=dict(self._previous))

    def series(self, handle: Union[IndicatorHandle, str]) -> List[Optional[float]]:
        name = handle.name if isinstance(handle, IndicatorHandle) else handle
        return list(self._series[self._names[name]])

    def compute_batch(self, bars: Iterable[Bar]) -> pd.DataFrame:
        """
        Batch mode: fresh state for every registered indicator, folded over the
        whole history. Columns: time + one per indicator name; NaN = no value.
        """
        fresh = {key: build_indicator(spec) for key, spec in self._specs.items()}
        times: List[datetime] = []
        cols: Dict[str, List[float]] = {key: [] for key in fresh}
        for bar in bars:
            times.append(bar.open_time)
            for key, ind in fresh.items():
                v = ind.update(bar)
                cols[key].append(math.nan if v is None else v)
        frame = pd.DataFrame({"time": times})
        for name, key in self._names.items():
            frame[name] = pd.Series(cols[key], dtype="float64")
        return frame
