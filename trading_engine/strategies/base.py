"""Abstract strategy: declares its indicators and decides one Signal per bar."""

from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Any, List, Optional

from trading_engine.core.types import Bar, Direction, IndicatorSnapshot, Position, Signal
from trading_engine.indicators.base import IndicatorSpec


class BaseStrategy(ABC):
    """
    decide() must be pure: the same (bar, indicators, position) always gives the
    same Signal, and nothing it receives is mutated.
    """

    name: str = ""

    @abstractmethod
    def indicator_specs(self) -> List[IndicatorSpec]:
        """Indicators this strategy reads, by name."""

    @abstractmethod
    def decide(self, bar: Bar, indicators: IndicatorSnapshot, position: Optional[Position]) -> Signal:
        """Signal for the bar that just closed."""

    @property
    def params(self) -> dict:
        return {}

    @property
    def warmup_bars(self) -> int:
        """Longest window/span/min_periods among the indicators; a lower bound on warm-up."""
        longest = 1
        for spec in self.indicator_specs():
            for key in ("window", "span", "min_periods"):
                v = spec.kwargs().get(key)
                if isinstance(v, (int, float)) and not isinstance(v, bool):
                    longest = max(longest, int(v))
        return longest

    @staticmethod
    def holding(position: Optional[Position]) -> Direction:
        """Direction of the current position (FLAT if none)."""
        return position.direction if position is not None else Direction.FLAT

    @staticmethod
    def signal(bar: Bar, direction: Direction, **kwargs: Any) -> Signal:
        return Signal(instrument=bar.instrument, timestamp=bar.open_time, direction=direction, **kwargs)

    def __repr__(self) -> str:
        args = ", ".join(f"{k}={v!r}" for k, v in self.params.items())
        return f"{type(self).__name__}({args})"
