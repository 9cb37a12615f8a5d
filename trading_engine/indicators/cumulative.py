"""Cumulative aggregates over the full history (or a trailing window for cum_sign)."""

from __future__ import annotations
from collections import deque
from typing import Deque, Optional

from trading_engine.core.types import Bar
from trading_engine.indicators.base import Indicator, require_window


class VWAP(Indicator):
    """Cumulative volume-weighted typical price. Undefined while cumulative volume is 0."""

    kind = "vwap"

    def __init__(self) -> None:
        super().__init__()
        self._pv = 0.0
        self._vol = 0.0

    def update(self, bar: Bar) -> Optional[float]:
        self._pv += bar.typical_price * bar.volume
        self._vol += bar.volume
        self.value = self._pv / self._vol if self._vol > 0 else None
        return self.value


class CumReturn(Indicator):
    """Return since the first close: close / first_close - 1."""

    kind = "cum_return"

    def __init__(self) -> None:
        super().__init__()
        self._first: Optional[float] = None

    def update(self, bar: Bar) -> Optional[float]:
        if self._first is None:
            self._first = bar.close
        self.value = bar.close / self._first - 1.0 if self._first else None
        return self.value


class CumSign(Indicator):
    """
    Sum of sign(close - previous close). Cumulative when window is None,
    otherwise over the last `window` changes.
    """

    kind = "cum_sign"

    def __init__(self, window: Optional[int] = None):
        super().__init__()
        self.window = require_window(window, self.kind) if window is not None else None
        self._prev: Optional[float] = None
        self._total = 0
        self._signs: Deque[int] = deque(maxlen=self.window) if self.window else deque()

    def update(self, bar: Bar) -> Optional[float]:
        if self._prev is None:
            self._prev = bar.close
            self.value = None if self.window else 0.0
            return self.value
        diff = bar.close - self._prev
        self._prev = bar.close
        sign = (diff > 0) - (diff < 0)
        if self.window is None:
            self._total += sign
            self.value = float(self._total)
            return self.value
        self._signs.append(sign)
        self.value = float(sum(self._signs)) if len(self._signs) == self.window else None
        return self.value
