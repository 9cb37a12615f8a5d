"""
Error taxonomy. DataError, SizingError and OrderError are recovered where they
happen (logged, counted, recorded on the RunContext). SimulationError and
ConfigError end the run that raised them.
"""

from __future__ import annotations
from typing import Optional


class EngineError(Exception):
    """Base for every error raised by the engine."""

    recoverable = False

    def __init__(self, message: str, instrument: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.instrument = instrument

    def __reduce__(self):
        return (self.__class__, (self.message, self.instrument))


class DataError(EngineError):
    """Stale, duplicate or malformed market data; unknown instrument."""

    recoverable = True


class SizingError(EngineError):
    """Risk limits would be exceeded. The signal is downgraded to no-trade."""

    recoverable = True


class OrderError(EngineError):
    """Order rejected or cancelled by the adapter, or an illegal status change."""

    recoverable = True


class SimulationError(EngineError):
    """Look-ahead violation or malformed historical data. Fatal to the backtest."""


class ConfigError(EngineError):
    """Invalid parameter combination. Raised before any data is processed."""
