"""
Exponentially weighted moving average, recursive form (pandas adjust=False):
y0 = x0, y_t = (1 - a) * y_{t-1} + a * x_t.
"""

from __future__ import annotations
import math
from datetime import datetime
from typing import Optional

from trading_engine.core.errors import ConfigError
from trading_engine.core.types import Bar
from trading_engine.indicators.base import Indicator, source_getter

LN_HALF = math.log(0.5)


class EMA(Indicator):
    """
    Decay from exactly one of:
      span              a = 2 / (span + 1), per bar
      halflife          a = 1 - 0.5 ** (1 / halflife), per bar
      halflife_seconds  a = 1 - 0.5 ** (dt / halflife_seconds), dt = time since previous bar,
                        so irregular spacing and gaps decay by elapsed time.
    Undefined until min_periods bars (default: ceil(span) or 1).
    """

    kind = "ema"

    def __init__(
        self,
        span: Optional[float] = None,
        halflife: Optional[float] = None,
        halflife_seconds: Optional[float] = None,
        min_periods: Optional[int] = None,
        source: str = "close",
    ):
        super().__init__()
        given = [p for p in (span, halflife, halflife_seconds) if p is not None]
        if len(given) != 1:
            raise ConfigError("ema: give exactly one of span, halflife, halflife_seconds")
        if given[0] <= 0 or (span is not None and span < 1):
            raise ConfigError(f"ema: decay parameter must be positive, got {given[0]}")
        self.halflife_seconds = halflife_seconds
        if span is not None:
            self.alpha: Optional[float] = 2.0 / (span + 1.0)
        elif halflife is not None:
            self.alpha = 1.0 - math.exp(LN_HALF / halflife)
        else:
            self.alpha = None
        if min_periods is None:
            min_periods = int(math.ceil(span)) if span is not None else 1
        if min_periods < 1:
            raise ConfigError(f"ema: min_periods must be >= 1, got {min_periods}")
        self.min_periods = min_periods
        self._get = source_getter(source)
        self._state: Optional[float] = None
        self._last_time: Optional[datetime] = None
        self._count = 0

    def _alpha_for(self, bar: Bar) -> float:
        if self.alpha is not None:
            return self.alpha
        dt = (bar.open_time - self._last_time).total_seconds()
        return 1.0 - math.exp(LN_HALF * dt / self.halflife_seconds)

    def update(self, bar: Bar) -> Optional[float]:
        x = self._get(bar)
        if self._state is None:
            self._state = x
        else:
            a = self._alpha_for(bar)
            self._state = (1.0 - a) * self._state + a * x
        self._last_time = bar.open_time
        self._count += 1
        self.value = self._state if self._count >= self.min_periods else None
        return self.value
