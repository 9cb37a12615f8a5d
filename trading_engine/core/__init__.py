"""Core: config, run context, errors, types, logging."""

from trading_engine.core.config import Config, load_config
from trading_engine.core.context import RunContext
from trading_engine.core.errors import ConfigError, DataError, EngineError, OrderError, SimulationError, SizingError
from trading_engine.core.logger import setup_logging
from trading_engine.core.types import (
    Bar,
    Direction,
    ExecutionReport,
    Fill,
    IndicatorSnapshot,
    Order,
    OrderSide,
    OrderStatus,
    OrderType,
    Position,
    PositionState,
    Signal,
    Tick,
    Trade,
)

__all__ = [
    "Bar",
    "Config",
    "ConfigError",
    "DataError",
    "Direction",
    "EngineError",
    "ExecutionReport",
    "Fill",
    "IndicatorSnapshot",
    "Order",
    "OrderError",
    "OrderSide",
    "OrderStatus",
    "OrderType",
    "Position",
    "PositionState",
    "RunContext",
    "Signal",
    "SimulationError",
    "SizingError",
    "Tick",
    "Trade",
    "load_config",
    "setup_logging",
]
