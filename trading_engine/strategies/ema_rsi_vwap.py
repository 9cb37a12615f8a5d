"""
EMA + RSI + VWAP + volume spike strategy (scalper logic).
Decides on the bar that just closed; stop and target come from ATR multiples.
"""

from __future__ import annotations
from typing import List, Optional

from trading_engine.core.errors import ConfigError
from trading_engine.core.types import Bar, Direction, IndicatorSnapshot, Position, Signal
from trading_engine.indicators.base import IndicatorSpec
from trading_engine.strategies.base import BaseStrategy


class EmaRsiVwapStrategy(BaseStrategy):
    """
    Long: EMA_fast > EMA_slow, close > VWAP, RSI > rsi_long_min, volume spike, ATR > 0.
    Short: EMA_fast < EMA_slow, close < VWAP, RSI < rsi_short_max, volume spike, ATR > 0.
    SL/TP from ATR multiples. While a position is open the held direction is repeated;
    exits come from the stop/target levels.
    """

    name = "ema_rsi_vwap"

    def __init__(
        self,
        ema_fast: int = 9,
        ema_slow: int = 21,
        rsi_len: int = 7,
        atr_len: int = 14,
        atr_stop_mult: float = 0.8,
        atr_tp_mult: float = 1.6,
        vol_mult: float = 1.5,
        vol_ma_len: int = 20,
        rsi_long_min: float = 48,
        rsi_short_max: float = 52,
    ):
        if not 1 <= ema_fast < ema_slow:
            raise ConfigError(f"{self.name}: need 1 <= ema_fast < ema_slow, got {ema_fast}/{ema_slow}")
        if atr_stop_mult <= 0 or atr_tp_mult <= 0:
            raise ConfigError(f"{self.name}: ATR multiples must be positive")
        self.ema_fast = ema_fast
        self.ema_slow = ema_slow
        self.rsi_len = rsi_len
        self.atr_len = atr_len
        self.atr_stop_mult = atr_stop_mult
        self.atr_tp_mult = atr_tp_mult
        self.vol_mult = vol_mult
        self.vol_ma_len = vol_ma_len
        self.rsi_long_min = rsi_long_min
        self.rsi_short_max = rsi_short_max

    @property
    def params(self) -> dict:
        return {
            "ema_fast": self.ema_fast, "ema_slow": self.ema_slow, "rsi_len": self.rsi_len,
            "atr_len": self.atr_len, "atr_stop_mult": self.atr_stop_mult, "atr_tp_mult": self.atr_tp_mult,
            "vol_mult": self.vol_mult, "vol_ma_len": self.vol_ma_len,
            "rsi_long_min": self.rsi_long_min, "rsi_short_max": self.rsi_short_max,
        }

    def indicator_specs(self) -> List[IndicatorSpec]:
        return [
            IndicatorSpec.of("ema", name="ema_fast", span=self.ema_fast),
            IndicatorSpec.of("ema", name="ema_slow", span=self.ema_slow),
            IndicatorSpec.of("rsi", name="rsi", window=self.rsi_len),
            IndicatorSpec.of("atr", name="atr", window=self.atr_len),
            IndicatorSpec.of("vwap", name="vwap"),
            IndicatorSpec.of("sma", name="vol_ma", window=self.vol_ma_len, source="volume"),
        ]

    def decide(self, bar: Bar, indicators: IndicatorSnapshot, position: Optional[Position]) -> Signal:
        held = self.holding(position)
        if held is not Direction.FLAT:
            return self.signal(bar, held)
        if not indicators.ready("ema_fast", "ema_slow", "rsi", "atr", "vwap", "vol_ma"):
            return self.signal(bar, Direction.FLAT, strength=0.0)
        close = bar.close
        ema_f, ema_s = indicators.get("ema_fast"), indicators.get("ema_slow")
        rsi, atr = indicators.get("rsi"), indicators.get("atr")
        vwap, vol_ma = indicators.get("vwap"), indicators.get("vol_ma")
        vol_spike = bar.volume > vol_ma * self.vol_mult
        if atr <= 0 or not vol_spike:
            return self.signal(bar, Direction.FLAT, strength=0.0)
        long_ok = ema_f > ema_s and close > vwap and rsi > self.rsi_long_min
        short_ok = ema_f < ema_s and close < vwap and rsi < self.rsi_short_max
        if not (long_ok or short_ok):
            return self.signal(bar, Direction.FLAT, strength=0.0)
        if long_ok:
            side = Direction.LONG
            stop = close - atr * self.atr_stop_mult
            tp = close + atr * self.atr_tp_mult
        else:
            side = Direction.SHORT
            stop = close + atr * self.atr_stop_mult
            tp = close - atr * self.atr_tp_mult
        return self.signal(
            bar,
            side,
            strength=min(1.0, bar.volume / (vol_ma * self.vol_mult)) if vol_ma else 1.0,
            stop_price=stop,
            take_profit_price=tp,
            metadata={"atr": atr, "rsi": rsi, "vwap": vwap},
        )
