"""Abstract execution interface: order placement and execution reports."""

from __future__ import annotations
from abc import ABC, abstractmethod
from typing import List, Optional

from trading_engine.core.types import Bar, ExecutionReport, Order


class ExecutionAdapter(ABC):
    """
    Accepts orders and reports back asynchronously. The same interface serves the
    backtest simulator and live exchanges; callers never block on a fill.
    """

    @abstractmethod
    def submit(self, order: Order) -> None:
        """Queue an order. Acceptance, fills and rejections arrive through poll()."""
        pass

    @abstractmethod
    def cancel(self, order_id: str) -> bool:
        """Request cancellation. False if the order is unknown or already final."""
        pass

    @abstractmethod
    def poll(self, instrument: Optional[str] = None) -> List[ExecutionReport]:
        """Drain reports produced since the last poll (one instrument or all)."""
        pass

    def on_market_data(self, bar: Bar) -> None:
        """Called with every bar before the engine acts on it. Live adapters ignore it."""
        return None

    def close(self) -> None:
        """Release connections. Default no-op."""
        return None
