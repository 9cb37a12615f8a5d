"""
Historical bulk load: DataFrame / CSV to ordered Bar sequences, date filtering.
"""

from __future__ import annotations
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

import pandas as pd

from trading_engine.core.errors import SimulationError
from trading_engine.core.types import Bar

logger = logging.getLogger("trading_engine.data.history")

DateLike = Union[str, datetime, pd.Timestamp, None]


def to_utc(value: DateLike) -> Optional[datetime]:
    """Parse a date/time into a tz-aware UTC datetime (None passes through)."""
    if value is None:
        return None
    ts = pd.Timestamp(value)
    if ts.tzinfo is None:
        ts = ts.tz_localize(timezone.utc)
    else:
        ts = ts.tz_convert(timezone.utc)
    return ts.to_pydatetime()


def bars_from_frame(df: pd.DataFrame, instrument: str) -> List[Bar]:
    """
    Convert an OHLCV DataFrame (columns: time, open, high, low, close, volume)
    into bars sorted by time. Naive timestamps are taken as UTC.
    """
    missing = {"time", "open", "high", "low", "close", "volume"} - set(df.columns)
    if missing:
        raise SimulationError(f"historical frame missing columns: {sorted(missing)}", instrument)
    frame = df.copy()
    frame["time"] = pd.to_datetime(frame["time"], utc=True)
    frame = frame.sort_values("time", kind="mergesort")
    if frame["time"].duplicated().any():
        dup = frame.loc[frame["time"].duplicated(), "time"].iloc[0]
        raise SimulationError(f"duplicate historical bar at {dup}", instrument)
    cols = frame[["open", "high", "low", "close", "volume"]].astype(float)
    return [
        Bar(instrument, t.to_pydatetime(), o, h, l, c, v)
        for t, o, h, l, c, v in zip(
            frame["time"], cols["open"], cols["high"], cols["low"], cols["close"], cols["volume"]
        )
    ]


def load_csv(path: Path, instrument: Optional[str] = None) -> Dict[str, List[Bar]]:
    """
    Load bars from CSV. A 'symbol' column splits rows per instrument; otherwise
    every row belongs to `instrument`.
    """
    df = pd.read_csv(path)
    if "symbol" in df.columns:
        return {
            str(sym).upper(): bars_from_frame(group.drop(columns=["symbol"]), str(sym).upper())
            for sym, group in df.groupby("symbol", sort=True)
        }
    if not instrument:
        raise SimulationError(f"{path}: no symbol column and no instrument given")
    return {instrument: bars_from_frame(df, instrument)}


def filter_range(bars: Iterable[Bar], start: DateLike = None, end: DateLike = None) -> List[Bar]:
    """Bars with start <= open_time < end."""
    lo, hi = to_utc(start), to_utc(end)
    return [
        b for b in bars
        if (lo is None or b.open_time >= lo) and (hi is None or b.open_time < hi)
    ]
