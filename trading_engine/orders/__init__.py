"""Position & order manager."""

from trading_engine.orders.manager import PositionManager, ReportOutcome

__all__ = ["PositionManager", "ReportOutcome"]
