"""
Normalize raw market events into closed Bars.

Accepted events:
  - bar dicts: {"type": "bar", "symbol", "time", "open", "high", "low", "close", "volume"}
  - Binance REST kline rows: [open_time_ms, open, high, low, close, volume, ...]
  - Binance websocket klines: {"e": "kline", "s": ..., "k": {"t", "o", "h", "l", "c", "v", "x"}}
  - trades: {"type": "trade", "symbol", "time", "price", "quantity", "side"}
    or Binance aggTrade {"e": "aggTrade", "s", "T", "p", "q", "m"}; aggregated into
    bars of the configured timeframe.
"""

from __future__ import annotations
import logging
from datetime import datetime, timezone
from typing import Any, List, Mapping, Optional, Sequence, Union

from trading_engine.core.errors import DataError
from trading_engine.core.types import Bar, OrderSide, Tick

logger = logging.getLogger("trading_engine.data.feed")

RawEvent = Union[Mapping[str, Any], Sequence[Any]]


def ms_to_datetime(ms: Union[int, float, str]) -> datetime:
    return datetime.fromtimestamp(int(ms) / 1000.0, tz=timezone.utc)


def _as_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)) or (isinstance(value, str) and value.isdigit()):
        return ms_to_datetime(value)
    if isinstance(value, str):
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
        return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)
    raise DataError(f"unparseable timestamp {value!r}")


def kline_row_to_bar(row: Sequence[Any], instrument: str) -> Bar:
    """Binance REST kline row to Bar."""
    if len(row) < 6:
        raise DataError(f"kline row too short: {row!r}", instrument)
    return Bar(
        instrument=instrument,
        open_time=ms_to_datetime(row[0]),
        open=float(row[1]),
        high=float(row[2]),
        low=float(row[3]),
        close=float(row[4]),
        volume=float(row[5]),
    )


class TradeAggregator:
    """Builds time-bucketed bars from trades; a bar is emitted when a later bucket starts."""

    def __init__(self, instrument: str, timeframe_seconds: int):
        self.instrument = instrument
        self.period = timeframe_seconds
        self._bucket: Optional[int] = None
        self._ohlcv: Optional[List[float]] = None

    def _bucket_of(self, ts: datetime) -> int:
        epoch = int(ts.timestamp())
        return epoch - epoch % self.period

    def _emit(self) -> Bar:
        o, h, l, c, v = self._ohlcv
        return Bar(self.instrument, datetime.fromtimestamp(self._bucket, tz=timezone.utc), o, h, l, c, v)

    def add(self, tick: Tick) -> List[Bar]:
        bucket = self._bucket_of(tick.timestamp)
        if self._bucket is not None and bucket < self._bucket:
            raise DataError(f"stale trade at {tick.timestamp}", self.instrument)
        out: List[Bar] = []
        if self._bucket is not None and bucket > self._bucket:
            out.append(self._emit())
            self._ohlcv = None
        self._bucket = bucket
        if self._ohlcv is None:
            self._ohlcv = [tick.price, tick.price, tick.price, tick.price, tick.quantity]
        else:
            ohlcv = self._ohlcv
            ohlcv[1] = max(ohlcv[1], tick.price)
            ohlcv[2] = min(ohlcv[2], tick.price)
            ohlcv[3] = tick.price
            ohlcv[4] += tick.quantity
        return out

    def flush(self) -> List[Bar]:
        """Emit the in-progress bar (end of stream)."""
        if self._ohlcv is None:
            return []
        bar = self._emit()
        self._ohlcv = None
        return [bar]


class MarketDataNormalizer:
    """Per-instrument entry point: feed(raw) -> closed bars, oldest first."""

    def __init__(self, instrument: str, timeframe_seconds: int):
        self.instrument = instrument
        self._trades = TradeAggregator(instrument, timeframe_seconds)

    def _check_symbol(self, symbol: Optional[str]) -> None:
        if symbol is not None and str(symbol).upper() != self.instrument:
            raise DataError(f"event for {symbol} routed to {self.instrument}", self.instrument)

    def feed(self, raw: RawEvent) -> List[Bar]:
        try:
            if isinstance(raw, Bar):
                self._check_symbol(raw.instrument)
                return [raw]
            if isinstance(raw, (list, tuple)):
                return [kline_row_to_bar(raw, self.instrument)]
            kind = raw.get("type") or raw.get("e")
            if kind == "kline":
                self._check_symbol(raw.get("s"))
                k = raw["k"]
                if not k.get("x", False):
                    return []  # candle still forming
                return [kline_row_to_bar([k["t"], k["o"], k["h"], k["l"], k["c"], k["v"]], self.instrument)]
            if kind == "bar":
                self._check_symbol(raw.get("symbol") or raw.get("instrument"))
                return [Bar(
                    instrument=self.instrument,
                    open_time=_as_datetime(raw.get("time", raw.get("open_time"))),
                    open=float(raw["open"]),
                    high=float(raw["high"]),
                    low=float(raw["low"]),
                    close=float(raw["close"]),
                    volume=float(raw.get("volume", 0.0)),
                )]
            if kind in ("trade", "aggTrade"):
                return self._trades.add(self._to_tick(raw))
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise DataError(f"malformed market event {raw!r}: {e}", self.instrument) from e
        raise DataError(f"unknown market event type {kind!r}", self.instrument)

    def _to_tick(self, raw: Mapping[str, Any]) -> Tick:
        if raw.get("e") == "aggTrade":
            self._check_symbol(raw.get("s"))
            # m = buyer is maker, so the aggressor sold
            side = OrderSide.SELL if raw.get("m") else OrderSide.BUY
            return Tick(self.instrument, ms_to_datetime(raw["T"]), float(raw["p"]), float(raw["q"]), side)
        self._check_symbol(raw.get("symbol") or raw.get("instrument"))
        return Tick(
            self.instrument,
            _as_datetime(raw["time"]),
            float(raw["price"]),
            float(raw["quantity"]),
            OrderSide(str(raw.get("side", "BUY")).upper()),
        )

    def flush(self) -> List[Bar]:
        return self._trades.flush()
