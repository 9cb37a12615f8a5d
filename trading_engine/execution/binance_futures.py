"""
Binance Futures execution adapter with retry and rate-limit handling.
Orders carry our id as newClientOrderId; fills are discovered by polling.
"""

from __future__ import annotations
import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional

from binance.client import Client
from binance.exceptions import BinanceAPIException

from trading_engine.core.types import (
    QTY_EPSILON,
    Bar,
    ExecutionReport,
    Fill,
    Order,
    OrderStatus,
    OrderType,
    Position,
)
from trading_engine.data.feed import kline_row_to_bar, ms_to_datetime
from trading_engine.execution.base import ExecutionAdapter
from trading_engine.utils.exchange_filters import parse_symbol_filters

logger = logging.getLogger("trading_engine.execution.binance")

TESTNET_URL = "https://testnet.binancefuture.com/fapi"

_STATUS = {
    "NEW": OrderStatus.PENDING,
    "PARTIALLY_FILLED": OrderStatus.PARTIALLY_FILLED,
    "FILLED": OrderStatus.FILLED,
    "CANCELED": OrderStatus.CANCELLED,
    "EXPIRED": OrderStatus.CANCELLED,
    "REJECTED": OrderStatus.REJECTED,
}


def retry_on_rate_limit(max_retries: int = 3, base_delay: float = 1.0):
    """Decorator: retry with exponential backoff on 429 or 418 (rate limit)."""
    def decorator(f):
        def wrapped(*args, **kwargs):
            last_exc = None
            for attempt in range(max_retries):
                try:
                    return f(*args, **kwargs)
                except BinanceAPIException as e:
                    last_exc = e
                    if e.status_code in (429, 418) and attempt < max_retries - 1:
                        delay = base_delay * (2 ** attempt)
                        logger.warning("Rate limited, retry in %.1fs (attempt %d)", delay, attempt + 1)
                        time.sleep(delay)
                    else:
                        raise
            raise last_exc
        return wrapped
    return decorator


@dataclass
class _Tracked:
    order: Order
    executed: float = 0.0
    avg_price: float = 0.0


def _ts(payload: dict) -> datetime:
    ms = payload.get("updateTime") or payload.get("transactTime")
    return ms_to_datetime(ms) if ms else datetime.now(timezone.utc)


class BinanceFuturesAdapter(ExecutionAdapter):
    """Binance USDT-M Futures (testnet and live) behind the ExecutionAdapter interface."""

    def __init__(
        self,
        api_key: str,
        api_secret: str,
        testnet: bool = True,
        fee_bps: float = 4.0,
        client: Optional[Client] = None,
    ):
        self._client = client if client is not None else Client(api_key, api_secret)
        if testnet:
            self._client.API_URL = TESTNET_URL
            logger.info("Binance Futures: using TESTNET")
        else:
            logger.info("Binance Futures: using LIVE")
        self.fee_bps = fee_bps
        self._tracked: Dict[str, _Tracked] = {}
        self._reports: List[ExecutionReport] = []
        self._symbol_info: Dict[str, Optional[dict]] = {}
        self._lock = threading.Lock()

    # --- market data and account ---

    @retry_on_rate_limit(max_retries=3, base_delay=1.0)
    def get_klines(self, symbol: str, interval: str, limit: int = 300, closed_only: bool = True) -> List[Bar]:
        """Recent klines as Bars; the still-forming last kline is dropped unless closed_only=False."""
        raw = self._client.futures_klines(symbol=symbol, interval=interval, limit=limit)
        now_ms = time.time() * 1000
        return [
            kline_row_to_bar(row, symbol) for row in raw
            if not closed_only or len(row) < 7 or float(row[6]) < now_ms
        ]

    @retry_on_rate_limit(max_retries=2)
    def get_symbol_info(self, symbol: str) -> Optional[dict]:
        if symbol not in self._symbol_info:
            info = self._client.futures_exchange_info()
            for s in info.get("symbols", []):
                self._symbol_info[s.get("symbol")] = s
            self._symbol_info.setdefault(symbol, None)
        return self._symbol_info[symbol]

    @retry_on_rate_limit(max_retries=2)
    def get_open_position(self, symbol: str) -> Optional[Position]:
        for p in self._client.futures_position_information(symbol=symbol):
            amt = float(p.get("positionAmt", 0.0))
            if amt != 0:
                return Position(
                    instrument=symbol,
                    quantity=amt,
                    entry_price=float(p.get("entryPrice", 0)),
                    unrealized_pnl=float(p.get("unRealizedProfit", 0)),
                    leverage=float(p.get("leverage", 1)),
                )
        return None

    def set_leverage(self, symbol: str, leverage: int) -> None:
        try:
            self._client.futures_change_leverage(symbol=symbol, leverage=leverage)
            logger.info("Leverage set to %sx for %s", leverage, symbol)
        except BinanceAPIException as e:
            logger.warning("Could not set leverage: %s", e)

    # --- orders ---

    def _order_params(self, order: Order) -> dict:
        filters = parse_symbol_filters(self.get_symbol_info(order.instrument))
        params = {
            "symbol": order.instrument,
            "side": order.side.value,
            "quantity": str(filters.quantity(order.quantity)),
            "newClientOrderId": order.id,
        }
        if order.order_type is not OrderType.MARKET:
            price = str(filters.price(order.price))
            if order.order_type is OrderType.LIMIT:
                params.update(type="LIMIT", timeInForce="GTC", price=price)
            else:
                params.update(type="STOP_MARKET", stopPrice=price)
        else:
            params["type"] = "MARKET"
        if order.reduce_only:
            params["reduceOnly"] = True
        return params

    @retry_on_rate_limit(max_retries=2)
    def _create(self, params: dict) -> dict:
        return self._client.futures_create_order(**params)

    def submit(self, order: Order) -> None:
        try:
            res = self._create(self._order_params(order))
        except BinanceAPIException as e:
            logger.error("Binance rejected %s (%s): %s", order.id, order.instrument, e)
            with self._lock:
                self._reports.append(ExecutionReport(
                    order_id=order.id, instrument=order.instrument, status=OrderStatus.REJECTED,
                    timestamp=datetime.now(timezone.utc), reason=str(e),
                ))
            return
        logger.info("Placed %s %s %s %s", order.id, order.instrument, order.side.value, order.quantity)
        with self._lock:
            tracked = _Tracked(order=order)
            self._tracked[order.id] = tracked
            self._absorb(tracked, res)

    def _absorb(self, tracked: _Tracked, payload: dict) -> None:
        """Turn an exchange order payload into reports for what changed. Caller holds the lock."""
        order = tracked.order
        status = _STATUS.get(payload.get("status", "NEW"), OrderStatus.PENDING)
        executed = float(payload.get("executedQty") or 0.0)
        avg = float(payload.get("avgPrice") or 0.0)
        ts = _ts(payload)
        delta = executed - tracked.executed
        fill = None
        if delta > QTY_EPSILON and avg > 0:
            # avgPrice is cumulative: back out the price of the new slice
            price = (avg * executed - tracked.avg_price * tracked.executed) / delta
            fill = Fill(
                order_id=order.id, instrument=order.instrument, side=order.side, price=price,
                quantity=delta, fee=price * delta * self.fee_bps / 1e4, timestamp=ts,
            )
            tracked.executed, tracked.avg_price = executed, avg
        if fill is not None or status.is_terminal:
            if fill is not None and not status.is_terminal:
                status = OrderStatus.PARTIALLY_FILLED
            self._reports.append(ExecutionReport(
                order_id=order.id, instrument=order.instrument, status=status, timestamp=ts,
                fill=fill, reason=payload.get("status", "") if status.is_terminal else "",
            ))
        if status.is_terminal:
            self._tracked.pop(order.id, None)

    def cancel(self, order_id: str) -> bool:
        with self._lock:
            tracked = self._tracked.get(order_id)
        if tracked is None:
            return False
        try:
            res = self._client.futures_cancel_order(symbol=tracked.order.instrument, origClientOrderId=order_id)
        except BinanceAPIException as e:
            logger.warning("Cancel %s failed: %s", order_id, e)
            return False
        with self._lock:
            if order_id in self._tracked:
                self._absorb(tracked, res)
        return True

    def poll(self, instrument: Optional[str] = None) -> List[ExecutionReport]:
        with self._lock:
            watching = [
                t for t in self._tracked.values()
                if instrument is None or t.order.instrument == instrument
            ]
        for tracked in watching:
            try:
                res = self._client.futures_get_order(
                    symbol=tracked.order.instrument, origClientOrderId=tracked.order.id
                )
            except BinanceAPIException as e:
                logger.warning("Order status %s unavailable: %s", tracked.order.id, e)
                continue
            with self._lock:
                if tracked.order.id in self._tracked:
                    self._absorb(tracked, res)
        with self._lock:
            out = [r for r in self._reports if instrument is None or r.instrument == instrument]
            self._reports = [r for r in self._reports if not (instrument is None or r.instrument == instrument)]
        return out

    def open_order_ids(self) -> List[str]:
        with self._lock:
            return list(self._tracked)

    def fetch_recent_trades(self, symbol: str, limit: int = 100) -> List[dict]:
        try:
            return self._client.futures_account_trades(symbol=symbol, limit=limit)
        except BinanceAPIException as e:
            logger.warning("fetch_recent_trades: %s", e)
            return []
