"""
Append-only, time-ordered bar series per instrument.
"""

from __future__ import annotations
import bisect
import logging
import math
from datetime import datetime
from typing import Iterable, List, Optional

import pandas as pd

from trading_engine.core.errors import DataError, SimulationError
from trading_engine.core.types import Bar

logger = logging.getLogger("trading_engine.data.store")

FRAME_COLUMNS = ["time", "open", "high", "low", "close", "volume"]


def check_bar(bar: Bar) -> Optional[str]:
    """Return a reason if the bar is malformed, else None."""
    values = (bar.open, bar.high, bar.low, bar.close, bar.volume)
    if any(not math.isfinite(v) for v in values):
        return "non-finite price or volume"
    if bar.high < bar.low:
        return f"high {bar.high} < low {bar.low}"
    if not (bar.low <= bar.open <= bar.high and bar.low <= bar.close <= bar.high):
        return "open/close outside high-low range"
    if bar.volume < 0:
        return f"negative volume {bar.volume}"
    if bar.open_time.tzinfo is None:
        return "naive open_time (timezone required)"
    return None


class TimeSeriesStore:
    """
    Bars for one instrument. A bar whose open_time is not after the last stored
    one is rejected; gaps are kept as gaps.
    """

    def __init__(self, instrument: str):
        self.instrument = instrument
        self._bars: List[Bar] = []
        self._times: List[datetime] = []

    def __len__(self) -> int:
        return len(self._bars)

    @property
    def last(self) -> Optional[Bar]:
        return self._bars[-1] if self._bars else None

    def append(self, bar: Bar) -> None:
        """Append one closed bar. Raises DataError on stale, duplicate or malformed bars."""
        if bar.instrument != self.instrument:
            raise DataError(f"bar for {bar.instrument} sent to {self.instrument} store", bar.instrument)
        reason = check_bar(bar)
        if reason:
            raise DataError(f"malformed bar at {bar.open_time}: {reason}", bar.instrument)
        if self._times and bar.open_time <= self._times[-1]:
            kind = "duplicate" if bar.open_time == self._times[-1] else "stale"
            raise DataError(
                f"{kind} bar {bar.open_time} (last {self._times[-1]})", bar.instrument,
            )
        self._bars.append(bar)
        self._times.append(bar.open_time)

    def seed(self, bars: Iterable[Bar]) -> int:
        """
        Backtest seeding: load a whole historical batch at once. The batch must
        be strictly increasing and start after anything already stored.
        """
        batch = list(bars)
        prev = self._times[-1] if self._times else None
        for bar in batch:
            if bar.instrument != self.instrument:
                raise SimulationError(f"historical bar for {bar.instrument} in {self.instrument} batch", self.instrument)
            reason = check_bar(bar)
            if reason:
                raise SimulationError(f"malformed historical bar at {bar.open_time}: {reason}", self.instrument)
            if prev is not None and bar.open_time <= prev:
                raise SimulationError(
                    f"historical batch not monotonic at {bar.open_time} (previous {prev})", self.instrument,
                )
            prev = bar.open_time
        self._bars.extend(batch)
        self._times.extend(b.open_time for b in batch)
        logger.debug("Seeded %d bars for %s", len(batch), self.instrument)
        return len(batch)

    def latest(self, n: int) -> List[Bar]:
        """Last n bars, oldest first."""
        if n <= 0:
            return []
        return self._bars[-n:]

    def at(self, timestamp: datetime) -> Optional[Bar]:
        """Bar opened exactly at timestamp, or None."""
        i = bisect.bisect_left(self._times, timestamp)
        if i < len(self._times) and self._times[i] == timestamp:
            return self._bars[i]
        return None

    def bars(self) -> List[Bar]:
        return list(self._bars)

    def to_frame(self) -> pd.DataFrame:
        """OHLCV DataFrame with columns: time, open, high, low, close, volume."""
        return pd.DataFrame(
            [(b.open_time, b.open, b.high, b.low, b.close, b.volume) for b in self._bars],
            columns=FRAME_COLUMNS,
        )
