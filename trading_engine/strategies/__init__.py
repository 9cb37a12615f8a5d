"""Strategies: base interface, implementations and the name registry."""

from __future__ import annotations
from typing import Any, Dict, Mapping, Optional, Type

from trading_engine.core.errors import ConfigError
from trading_engine.strategies.base import BaseStrategy
from trading_engine.strategies.ema_rsi_vwap import EmaRsiVwapStrategy
from trading_engine.strategies.moving_average import CloseAboveMaStrategy
from trading_engine.strategies.trend_follow import EmaCrossStrategy

STRATEGIES: Dict[str, Type[BaseStrategy]] = {
    cls.name: cls for cls in (CloseAboveMaStrategy, EmaCrossStrategy, EmaRsiVwapStrategy)
}


def build_strategy(name: str, params: Optional[Mapping[str, Any]] = None) -> BaseStrategy:
    """Instantiate a registered strategy; unknown names or parameters raise ConfigError."""
    try:
        cls = STRATEGIES[name]
    except KeyError:
        raise ConfigError(f"unknown strategy {name!r} (known: {sorted(STRATEGIES)})") from None
    try:
        return cls(**dict(params or {}))
    except TypeError as e:
        raise ConfigError(f"{name}: {e}") from e


__all__ = [
    "BaseStrategy",
    "CloseAboveMaStrategy",
    "EmaCrossStrategy",
    "EmaRsiVwapStrategy",
    "STRATEGIES",
    "build_strategy",
]
