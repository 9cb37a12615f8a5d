"""Execution: adapter interface, backtest simulator and Binance Futures implementation."""

from trading_engine.execution.base import ExecutionAdapter
from trading_engine.execution.binance_futures import BinanceFuturesAdapter, retry_on_rate_limit
from trading_engine.execution.simulator import BacktestSimulator

__all__ = ["ExecutionAdapter", "BacktestSimulator", "BinanceFuturesAdapter", "retry_on_rate_limit"]
