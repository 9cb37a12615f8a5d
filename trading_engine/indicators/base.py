"""Indicator interface and spec."""

from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

from trading_engine.core.errors import ConfigError
from trading_engine.core.types import Bar

SOURCES: Dict[str, Callable[[Bar], float]] = {
    "open": lambda b: b.open,
    "high": lambda b: b.high,
    "low": lambda b: b.low,
    "close": lambda b: b.close,
    "volume": lambda b: b.volume,
    "typical": lambda b: b.typical_price,
}


@dataclass(frozen=True)
class IndicatorSpec:
    """What to compute: kind + parameters, optionally under a strategy-chosen name."""
    kind: str
    params: Tuple[Tuple[str, Any], ...] = ()
    name: Optional[str] = None

    @classmethod
    def of(cls, kind: str, name: Optional[str] = None, **params: Any) -> "IndicatorSpec":
        return cls(kind=kind, params=tuple(sorted(params.items())), name=name)

    @property
    def key(self) -> str:
        args = ",".join(f"{k}={v}" for k, v in self.params)
        return f"{self.kind}({args})"

    @property
    def label(self) -> str:
        return self.name or self.key

    def kwargs(self) -> Dict[str, Any]:
        return dict(self.params)


@dataclass(frozen=True)
class IndicatorHandle:
    """Returned by IndicatorEngine.register; names the value in snapshots."""
    name: str
    key: str


def source_getter(source: str) -> Callable[[Bar], float]:
    try:
        return SOURCES[source]
    except KeyError:
        raise ConfigError(f"unknown indicator source {source!r}") from None


def require_window(window: Any, kind: str) -> int:
    if not isinstance(window, int) or isinstance(window, bool) or window < 1:
        raise ConfigError(f"{kind}: window must be a positive int, got {window!r}")
    return window


class Indicator(ABC):
    """
    Incremental indicator: one update per closed bar, value None until warmed up.
    Batch computation folds the same update over a history, so both modes agree exactly.
    """

    kind: str = ""

    def __init__(self) -> None:
        self.value: Optional[float] = None

    @abstractmethod
    def update(self, bar: Bar) -> Optional[float]:
        """Consume the next bar and return the new value (None while warming up)."""
