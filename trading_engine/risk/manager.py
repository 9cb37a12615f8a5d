"""
Risk manager: position sizing, leverage and exposure caps, daily loss cap, max drawdown.
Position size = risk_amount / stop_distance (lose risk_amount if the stop is hit).
A signal that breaks a limit is refused, never clipped to fit.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass
from datetime import date
from typing import Mapping, Optional

from trading_engine.core.config import Config
from trading_engine.utils.exchange_filters import parse_symbol_filters

logger = logging.getLogger("trading_engine.risk")


@dataclass
class RiskResult:
    """Result of sizing: allowed with a quantity, or refused with a reason."""
    allowed: bool
    quantity: float = 0.0
    notional: float = 0.0
    leverage: float = 0.0
    reason: str = ""


class RiskManager:
    """
    Enforces: risk per trade (dollar loss at stop), min notional, min reward/risk,
    leverage (notional / equity), total exposure, daily loss cap, max drawdown.
    """

    def __init__(
        self,
        risk_per_trade_pct: float = 1.0,
        risk_per_trade_usd: float = 0.0,
        leverage: float = 1.0,
        max_exposure_pct: float = 100.0,
        max_daily_loss_usd: float = 0.0,
        max_drawdown_pct: float = 0.0,
        min_notional: float = 0.0,
        min_risk_reward: float = 0.0,
        symbol_info: Optional[Mapping] = None,
    ):
        self.risk_per_trade_pct = risk_per_trade_pct
        self.risk_per_trade_usd = risk_per_trade_usd
        self.leverage = leverage
        self.max_exposure_pct = max_exposure_pct
        self.max_daily_loss_usd = max_daily_loss_usd
        self.max_drawdown_pct = max_drawdown_pct
        self.min_notional = min_notional
        self.min_risk_reward = min_risk_reward
        self.filters = parse_symbol_filters(symbol_info)
        self._daily_loss: float = 0.0
        self._day: Optional[date] = None
        self._peak_equity: float = 0.0
        self._current_equity: float = 0.0
        self._consecutive_losses: int = 0

    @classmethod
    def from_config(cls, config: Config) -> "RiskManager":
        return cls(
            risk_per_trade_pct=config.risk_per_trade_pct,
            risk_per_trade_usd=config.risk_per_trade_usd,
            leverage=config.leverage,
            max_exposure_pct=config.max_exposure_pct,
            max_daily_loss_usd=config.max_daily_loss_usd,
            max_drawdown_pct=config.max_drawdown_pct,
            min_notional=config.min_notional,
            min_risk_reward=config.min_risk_reward,
            symbol_info=config.symbol_info,
        )

    @property
    def consecutive_losses(self) -> int:
        return self._consecutive_losses

    def set_equity(self, equity: float) -> None:
        """Update current equity for the drawdown check."""
        self._current_equity = equity
        if equity > self._peak_equity:
            self._peak_equity = equity

    def roll_day(self, day: date) -> None:
        """Reset the daily loss when the calendar day (of the data) moves forward."""
        if self._day is None or day > self._day:
            if self._day is not None and self._daily_loss:
                logger.debug("New day %s: daily loss reset from %.2f", day, self._daily_loss)
            self._day = day
            self._daily_loss = 0.0

    def set_daily_loss(self, loss_usd: float, as_of: date) -> None:
        """Set daily realized loss (e.g. from exchange trade history)."""
        self.roll_day(as_of)
        self._daily_loss = max(0.0, loss_usd)

    def record_trade_pnl(self, pnl: float) -> None:
        """Record closed trade PnL for daily loss and consecutive loss count."""
        if pnl < 0:
            self._daily_loss += -pnl
            self._consecutive_losses += 1
        else:
            self._consecutive_losses = 0

    def check_daily_loss(self) -> bool:
        """Return False if the daily loss cap is reached."""
        if self.max_daily_loss_usd > 0 and self._daily_loss >= self.max_daily_loss_usd:
            logger.warning("Daily loss cap reached: %.2f >= %.2f", self._daily_loss, self.max_daily_loss_usd)
            return False
        return True

    def check_drawdown(self) -> bool:
        """Return False if max drawdown is exceeded."""
        if self.max_drawdown_pct <= 0 or self._peak_equity <= 0:
            return True
        dd_pct = (self._peak_equity - self._current_equity) / self._peak_equity * 100
        if dd_pct >= self.max_drawdown_pct:
            logger.warning("Max drawdown exceeded: %.2f%% >= %.2f%%", dd_pct, self.max_drawdown_pct)
            return False
        return True

    def risk_amount(self, equity: float) -> float:
        if self.risk_per_trade_usd > 0:
            return self.risk_per_trade_usd
        return equity * self.risk_per_trade_pct / 100.0

    def max_exposure(self, equity: float) -> float:
        return equity * self.max_exposure_pct / 100.0

    def size_entry(
        self,
        entry_price: float,
        stop_price: Optional[float],
        take_profit_price: Optional[float],
        equity: float,
        exposure: float = 0.0,
    ) -> RiskResult:
        """
        Size a new entry. exposure is the notional already open or pending across
        all instruments; the new order must keep the total within the cap.
        """
        if equity <= 0:
            return RiskResult(allowed=False, reason="no equity")
        if stop_price is None:
            return RiskResult(allowed=False, reason="no stop price")
        dist = abs(entry_price - stop_price)
        if dist <= 0:
            return RiskResult(allowed=False, reason="zero stop distance")

        if take_profit_price is not None and self.min_risk_reward > 0:
            rr = abs(take_profit_price - entry_price) / dist
            if rr < self.min_risk_reward:
                return RiskResult(allowed=False, reason=f"risk_reward {rr:.2f} < {self.min_risk_reward}")

        # Quantity: lose exactly the risk amount if the stop is hit
        qty = self.filters.quantity(self.risk_amount(equity) / dist)
        if qty <= 0:
            return RiskResult(allowed=False, reason="qty rounded to 0")

        notional = qty * entry_price
        if notional < self.min_notional:
            return RiskResult(allowed=False, reason=f"notional {notional:.2f} < min {self.min_notional}")

        used_leverage = notional / equity
        if used_leverage > self.leverage:
            return RiskResult(
                allowed=False, notional=notional, leverage=used_leverage,
                reason=f"leverage {used_leverage:.2f}x > {self.leverage:g}x",
            )
        cap = self.max_exposure(equity)
        if exposure + notional > cap:
            return RiskResult(
                allowed=False, notional=notional, leverage=used_leverage,
                reason=f"exposure {exposure + notional:.2f} > max {cap:.2f}",
            )

        if not self.check_daily_loss():
            return RiskResult(allowed=False, reason="daily loss cap")
        if not self.check_drawdown():
            return RiskResult(allowed=False, reason="max drawdown")

        return RiskResult(allowed=True, quantity=qty, notional=notional, leverage=used_leverage)

    def update_symbol_info(self, symbol_info: Optional[Mapping]) -> None:
        """Update lot/price filters when symbol or exchange info changes."""
        self.filters = parse_symbol_filters(symbol_info)
