"""Runtime: the shared per-bar session and the asyncio live runner."""

from trading_engine.runtime.live import LiveRunner, poll_klines
from trading_engine.runtime.session import CycleResult, TradingSession
from trading_engine.runtime.startup import reconcile_account

__all__ = ["CycleResult", "LiveRunner", "TradingSession", "poll_klines", "reconcile_account"]
