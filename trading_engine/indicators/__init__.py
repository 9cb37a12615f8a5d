"""Indicators: incremental rolling, exponential and cumulative series."""

from trading_engine.indicators.base import Indicator, IndicatorHandle, IndicatorSpec
from trading_engine.indicators.engine import INDICATORS, IndicatorEngine, build_indicator

__all__ = [
    "Indicator",
    "IndicatorHandle",
    "IndicatorSpec",
    "IndicatorEngine",
    "INDICATORS",
    "build_indicator",
]
