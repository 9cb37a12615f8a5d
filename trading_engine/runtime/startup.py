"""
Account reconciliation before a live run: carry today's realized loss into the
risk manager and refuse to start on top of a position the engine did not open.
"""

from __future__ import annotations
import logging
from datetime import datetime, timezone
from typing import Iterable, Optional

from trading_engine.core.errors import EngineError
from trading_engine.risk.manager import RiskManager

logger = logging.getLogger("trading_engine.runtime")


def realized_since(trades: Iterable[dict], since_ms: int) -> float:
    """Sum realizedPnl of account trades at or after since_ms."""
    return sum(float(t.get("realizedPnl", 0)) for t in trades if int(t.get("time", 0)) >= since_ms)


def reconcile_account(adapter, risk: RiskManager, instruments: Iterable[str],
                      now: Optional[datetime] = None, trade_limit: int = 500) -> float:
    """
    Check every instrument for an open exchange position (EngineError if one
    exists) and seed the daily loss from today's account trades. Returns the
    seeded loss.
    """
    now = now or datetime.now(timezone.utc)
    instruments = list(instruments)
    for inst in instruments:
        pos = adapter.get_open_position(inst)
        if pos is not None and pos.quantity != 0:
            raise EngineError(
                f"open position on exchange: {pos.quantity:g} @ {pos.entry_price:g}; close it before starting",
                instrument=inst,
            )

    day_start = datetime(now.year, now.month, now.day, tzinfo=timezone.utc)
    since_ms = int(day_start.timestamp() * 1000)
    realized = sum(realized_since(adapter.fetch_recent_trades(inst, limit=trade_limit), since_ms)
                   for inst in instruments)
    loss = max(0.0, -realized)
    risk.set_daily_loss(loss, now.date())
    logger.info("Daily realized P&L so far: %.2f (loss carried: %.2f)", realized, loss)
    return loss
