"""Close vs. moving average: Long while close is above its n-bar SMA."""

from __future__ import annotations
from typing import List, Optional

from trading_engine.core.errors import ConfigError
from trading_engine.core.types import Bar, Direction, IndicatorSnapshot, Position, Signal
from trading_engine.indicators.base import IndicatorSpec
from trading_engine.strategies.base import BaseStrategy


class CloseAboveMaStrategy(BaseStrategy):
    """
    Long when close > SMA(window) (window includes the current bar).
    Short when close < SMA and allow_short, else Flat. Flat until the SMA exists.
    """

    name = "close_above_ma"

    def __init__(self, window: int = 20, allow_short: bool = False):
        if window < 1:
            raise ConfigError(f"{self.name}: window must be >= 1")
        self.window = window
        self.allow_short = allow_short

    @property
    def params(self) -> dict:
        return {"window": self.window, "allow_short": self.allow_short}

    def indicator_specs(self) -> List[IndicatorSpec]:
        return [IndicatorSpec.of("sma", name="ma", window=self.window)]

    def decide(self, bar: Bar, indicators: IndicatorSnapshot, position: Optional[Position]) -> Signal:
        ma = indicators.get("ma")
        if ma is None:
            return self.signal(bar, Direction.FLAT, strength=0.0)
        strength = abs(bar.close - ma) / ma if ma else 0.0
        if bar.close > ma:
            return self.signal(bar, Direction.LONG, strength=strength, metadata={"ma": ma})
        if bar.close < ma and self.allow_short:
            return self.signal(bar, Direction.SHORT, strength=strength, metadata={"ma": ma})
        return self.signal(bar, Direction.FLAT, strength=0.0, metadata={"ma": ma})
