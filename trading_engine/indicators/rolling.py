"""
Fixed-window indicators backed by ring buffers. Window sums use math.fsum
over the buffer so results do not depend on how many bars came before.
"""

from __future__ import annotations
import math
from collections import deque
from typing import Deque, Optional

from trading_engine.core.errors import ConfigError
from trading_engine.core.types import Bar
from trading_engine.indicators.base import Indicator, require_window, source_getter


class SMA(Indicator):
    """Simple moving average over the last `window` bars (current bar included)."""

    kind = "sma"

    def __init__(self, window: int, source: str = "close"):
        super().__init__()
        self.window = require_window(window, self.kind)
        self._get = source_getter(source)
        self._buf: Deque[float] = deque(maxlen=self.window)

    def update(self, bar: Bar) -> Optional[float]:
        self._buf.append(self._get(bar))
        if len(self._buf) < self.window:
            self.value = None
        else:
            self.value = math.fsum(self._buf) / self.window
        return self.value


class RollingStd(Indicator):
    """Rolling standard deviation, two-pass over the window. ddof=1 matches pandas."""

    kind = "rolling_std"

    def __init__(self, window: int, ddof: int = 1, source: str = "close"):
        super().__init__()
        self.window = require_window(window, self.kind)
        if ddof not in (0, 1) or self.window - ddof < 1:
            raise ConfigError(f"{self.kind}: invalid ddof {ddof} for window {window}")
        self.ddof = ddof
        self._get = source_getter(source)
        self._buf: Deque[float] = deque(maxlen=self.window)

    def update(self, bar: Bar) -> Optional[float]:
        self._buf.append(self._get(bar))
        if len(self._buf) < self.window:
            self.value = None
            return None
        mean = math.fsum(self._buf) / self.window
        var = math.fsum((x - mean) ** 2 for x in self._buf) / (self.window - self.ddof)
        self.value = math.sqrt(var)
        return self.value


class RSI(Indicator):
    """
    RSI from rolling means of gains and losses over `window` close changes.
    All-gain windows read 100, flat windows read 50.
    """

    kind = "rsi"

    def __init__(self, window: int = 14):
        super().__init__()
        self.window = require_window(window, self.kind)
        self._prev_close: Optional[float] = None
        self._gains: Deque[float] = deque(maxlen=self.window)
        self._losses: Deque[float] = deque(maxlen=self.window)

    def update(self, bar: Bar) -> Optional[float]:
        if self._prev_close is None:
            self._prev_close = bar.close
            self.value = None
            return None
        delta = bar.close - self._prev_close
        self._prev_close = bar.close
        self._gains.append(max(delta, 0.0))
        self._losses.append(max(-delta, 0.0))
        if len(self._gains) < self.window:
            self.value = None
            return None
        up = math.fsum(self._gains) / self.window
        down = math.fsum(self._losses) / self.window
        if down == 0.0:
            self.value = 50.0 if up == 0.0 else 100.0
        else:
            self.value = 100.0 - 100.0 / (1.0 + up / down)
        return self.value


class ATR(Indicator):
    """Average true range: rolling mean of true range. First bar's TR is high - low."""

    kind = "atr"

    def __init__(self, window: int = 14):
        super().__init__()
        self.window = require_window(window, self.kind)
        self._prev_close: Optional[float] = None
        self._tr: Deque[float] = deque(maxlen=self.window)

    def update(self, bar: Bar) -> Optional[float]:
        tr = bar.high - bar.low
        if self._prev_close is not None:
            tr = max(tr, abs(bar.high - self._prev_close), abs(bar.low - self._prev_close))
        self._prev_close = bar.close
        self._tr.append(tr)
        if len(self._tr) < self.window:
            self.value = None
        else:
            self.value = math.fsum(self._tr) / self.window
        return self.value
