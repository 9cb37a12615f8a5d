#!/usr/bin/env python3
"""
Trading Engine CLI: backtest | optimize | live
Usage:
  python main.py backtest [--config config.yaml] [--csv data.csv] [--start 2024-01-01] [--end 2024-02-01]
  python main.py optimize [--config config.yaml] [--csv data.csv] [--walk-forward]
  python main.py live [--config config.yaml]
"""

from __future__ import annotations
import argparse
import asyncio
import logging
import sys
from functools import partial
from pathlib import Path
from typing import Dict, List, Optional

# Project root
ROOT = Path(__file__).resolve().parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from trading_engine.backtesting.engine import BacktestEngine, BacktestResult
from trading_engine.core.config import Config, load_config
from trading_engine.core.context import RunContext
from trading_engine.core.errors import EngineError
from trading_engine.core.logger import setup_logging
from trading_engine.core.types import Bar
from trading_engine.data.history import load_csv
from trading_engine.execution.binance_futures import BinanceFuturesAdapter
from trading_engine.optimization.optimizer import Optimizer, walk_forward
from trading_engine.optimization.spaces import build_candidates
from trading_engine.risk.manager import RiskManager
from trading_engine.runtime.live import LiveRunner, poll_klines
from trading_engine.runtime.session import TradingSession
from trading_engine.runtime.startup import reconcile_account
from trading_engine.strategies import build_strategy
from trading_engine.utils.telegram import notifier_from_config

logger = logging.getLogger("trading_engine")


def load_history(config: Config, csv_path: Optional[str], limit: int) -> Dict[str, List[Bar]]:
    """Bars per instrument from CSV, or recent klines from Binance (public endpoint)."""
    path = csv_path or config.csv_path
    if path:
        bars = load_csv(Path(path), config.instruments[0] if len(config.instruments) == 1 else None)
        return {inst: bars.get(inst, []) for inst in config.instruments}
    adapter = BinanceFuturesAdapter(
        config.binance_api_key, config.binance_api_secret, testnet=config.use_testnet, fee_bps=config.fee_bps,
    )
    return {inst: adapter.get_klines(inst, config.timeframe, limit=limit) for inst in config.instruments}


def print_result(result: BacktestResult) -> None:
    m = result.metrics
    if not m:
        return
    print("\n--- Backtest Results ---")
    print(f"Bars processed: {result.bars_processed}{' (cancelled)' if result.cancelled else ''}")
    print(f"Total trades: {m.total_trades} (wins: {m.winning_trades}, losses: {m.losing_trades})")
    print(f"Total return: {m.total_return_pct:.2f}% (buy & hold {result.benchmark_return_pct:.2f}%)")
    print(f"Final equity: {m.final_equity:.2f}")
    print(f"Sharpe ratio: {m.sharpe_ratio:.2f}")
    print(f"Sortino ratio: {m.sortino_ratio:.2f}")
    print(f"Max drawdown: {m.max_drawdown_pct:.2f}% ({m.max_drawdown:.2f})")
    print(f"Win rate: {m.win_rate*100:.1f}%")
    print(f"Profit factor: {m.profit_factor:.2f}")
    print(f"Expectancy: {m.expectancy:.2f} USD/trade")
    for inst, pos in result.positions.items():
        if not pos.is_flat:
            print(f"Open at end: {inst} {pos.quantity} @ {pos.entry_price:.6g} (unrealized {pos.unrealized_pnl:.2f})")


def run_backtest(args: argparse.Namespace) -> int:
    """Run one backtest over the configured (or given) date range."""
    config = load_config(args.config, ROOT)
    setup_logging(config.log_level, config.log_dir, config.log_file)
    history = load_history(config, args.csv, args.limit)
    ctx = RunContext(config)
    result = BacktestEngine(ctx).run(history, args.start, args.end)
    print_result(result)
    return 0


def run_optimize(args: argparse.Namespace) -> int:
    """Sweep the configured parameter space (optionally walk-forward)."""
    config = load_config(args.config, ROOT)
    setup_logging(config.log_level, config.log_dir, config.log_file)
    history = load_history(config, args.csv, args.limit)
    candidates = build_candidates(
        config.optimize_mode, config.optimize_params, config.optimize_samples, config.optimize_seed,
    )
    if args.walk_forward:
        for wf in walk_forward(config, history, candidates):
            oos = f"{wf.test.metrics.total_return_pct:.2f}%" if wf.test else "n/a"
            print(f"{wf.test_start} -> {wf.test_end or 'end'}: {wf.best.params} | out-of-sample {oos}")
        return 0
    ranked = Optimizer(config).run(history, candidates, args.start, args.end)
    print(f"\n--- Optimization ({config.objective}) ---")
    for r in ranked[: args.top]:
        if r.ok:
            print(f"#{r.rank} score={r.score:.4f} trades={r.trades} {r.params}")
        else:
            print(f"#{r.rank} FAILED {r.params}: {r.error}")
    return 0


def run_live(args: argparse.Namespace) -> int:
    """Run the asyncio live runner against Binance Futures until interrupted."""
    config = load_config(args.config, ROOT)
    setup_logging(config.log_level, config.log_dir, config.log_file)
    if not config.binance_api_key or not config.binance_api_secret:
        logger.error("Missing BINANCE_API_KEY or BINANCE_API_SECRET in .env")
        return 1
    adapter = BinanceFuturesAdapter(
        config.binance_api_key, config.binance_api_secret, testnet=config.use_testnet, fee_bps=config.fee_bps,
    )
    for inst in config.instruments:
        adapter.set_leverage(inst, int(config.leverage))
    # Lot filters follow the first instrument
    risk = RiskManager.from_config(config)
    risk.update_symbol_info(adapter.get_symbol_info(config.instruments[0]))
    reconcile_account(adapter, risk, config.instruments)

    ctx = RunContext(config)
    session = TradingSession(
        ctx, build_strategy(config.strategy, config.strategy_params), adapter, risk=risk, history=config.live_history,
    )
    for inst in config.instruments:
        session.warm_up(adapter.get_klines(inst, config.timeframe, limit=args.limit))
    sources = {
        inst: poll_klines(
            partial(adapter.get_klines, inst, config.timeframe, 3),
            interval_seconds=max(1.0, config.poll_interval_s),
            after=session.stores[inst].last.open_time if session.stores[inst].last else None,
        )
        for inst in config.instruments
    }
    notifier = notifier_from_config(config, prefix=f"[{ctx.run_id}] ")
    if notifier:
        notifier(f"Live run starting | {', '.join(config.instruments)} | testnet={config.use_testnet}")
    runner = LiveRunner(session, sources, notifier=notifier)
    try:
        asyncio.run(runner.run())
    except KeyboardInterrupt:
        logger.info("Shutdown by user")
    leftover = adapter.open_order_ids()
    if leftover:
        logger.warning("Orders still tracked at exit: %s", ", ".join(leftover))
    if notifier:
        notifier("Live run stopped.")
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Trading Engine CLI")
    parser.add_argument("mode", choices=["backtest", "optimize", "live"], help="Run mode")
    parser.add_argument("--config", type=Path, default=None, help="Path to config.yaml")
    parser.add_argument("--csv", default=None, help="OHLCV CSV (overrides backtest.csv_path)")
    parser.add_argument("--start", default=None, help="Start date (inclusive)")
    parser.add_argument("--end", default=None, help="End date (exclusive)")
    parser.add_argument("--limit", type=int, default=500, help="Klines to fetch when no CSV is given")
    parser.add_argument("--top", type=int, default=10, help="Optimization results to print")
    parser.add_argument("--walk-forward", action="store_true", help="Walk-forward optimization")
    args = parser.parse_args()
    try:
        if args.mode == "backtest":
            return run_backtest(args)
        if args.mode == "optimize":
            return run_optimize(args)
        return run_live(args)
    except EngineError as e:
        logger.error("%s: %s", type(e).__name__, e)
        return 2


if __name__ == "__main__":
    sys.exit(main())
