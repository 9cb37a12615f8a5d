"""
Trend following on a fast/slow EMA crossover.
Enters on the cross, holds until the opposite cross.
"""

from __future__ import annotations
from typing import List, Optional

from trading_engine.core.errors import ConfigError
from trading_engine.core.types import Bar, Direction, IndicatorSnapshot, Position, Signal
from trading_engine.indicators.base import IndicatorSpec
from trading_engine.strategies.base import BaseStrategy


class EmaCrossStrategy(BaseStrategy):
    """
    Long:  fast > slow now and fast <= slow on the previous bar.
    Short: fast < slow now and fast >= slow on the previous bar (Flat if shorts disabled).
    Otherwise keep whatever position is held.
    """

    name = "ema_cross"

    def __init__(self, fast_span: int = 9, slow_span: int = 21, allow_short: bool = True):
        if not 1 <= fast_span < slow_span:
            raise ConfigError(f"{self.name}: need 1 <= fast_span < slow_span, got {fast_span}/{slow_span}")
        self.fast_span = fast_span
        self.slow_span = slow_span
        self.allow_short = allow_short

    @property
    def params(self) -> dict:
        return {"fast_span": self.fast_span, "slow_span": self.slow_span, "allow_short": self.allow_short}

    def indicator_specs(self) -> List[IndicatorSpec]:
        return [
            IndicatorSpec.of("ema", name="fast_ema", span=self.fast_span, min_periods=self.slow_span),
            IndicatorSpec.of("ema", name="slow_ema", span=self.slow_span),
        ]

    def decide(self, bar: Bar, indicators: IndicatorSnapshot, position: Optional[Position]) -> Signal:
        held = self.holding(position)
        fast, slow = indicators.get("fast_ema"), indicators.get("slow_ema")
        prev_fast, prev_slow = indicators.prev("fast_ema"), indicators.prev("slow_ema")
        if None in (fast, slow, prev_fast, prev_slow):
            return self.signal(bar, held, strength=0.0)
        meta = {"fast_ema": fast, "slow_ema": slow}
        strength = abs(fast - slow) / slow if slow else 0.0
        if fast > slow and prev_slow >= prev_fast:
            return self.signal(bar, Direction.LONG, strength=strength, metadata=meta)
        if fast < slow and prev_slow <= prev_fast:
            direction = Direction.SHORT if self.allow_short else Direction.FLAT
            return self.signal(bar, direction, strength=strength, metadata=meta)
        return self.signal(bar, held, strength=strength, metadata=meta)
