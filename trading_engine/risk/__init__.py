"""Risk management: position sizing, exposure and leverage caps, daily loss, drawdown."""

from trading_engine.risk.manager import RiskManager, RiskResult

__all__ = ["RiskManager", "RiskResult"]
