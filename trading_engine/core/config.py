"""
Load configuration from config.yaml and .env. API keys only from env.
The resulting Config is frozen; the engine never re-reads it mid-run.
"""

from __future__ import annotations
import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping, Optional, Tuple

import yaml
from dotenv import load_dotenv

from trading_engine.core.errors import ConfigError
from trading_engine.utils.timeframes import timeframe_seconds


def _env_path(project_root: Optional[Path] = None) -> Path:
    root = project_root or Path(__file__).resolve().parents[2]
    return root / ".env"


def load_dotenv_if_exists(project_root: Optional[Path] = None) -> None:
    """Load .env from project root if present."""
    path = _env_path(project_root)
    if path.exists():
        load_dotenv(path)


def load_config(config_path: Optional[Path] = None, project_root: Optional[Path] = None) -> "Config":
    """Load config.yaml and overlay with env. Returns a validated Config."""
    load_dotenv_if_exists(project_root)
    root = project_root or Path(__file__).resolve().parents[2]
    path = config_path or root / "config.yaml"
    data: dict[str, Any] = {}
    if path.exists():
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

    # Env overrides (for secrets and overrides)
    def env(key: str, default: str = "") -> str:
        return os.getenv(key, default).strip()

    def env_bool(key: str, default: bool = False) -> bool:
        return os.getenv(key, str(default)).lower() in ("true", "1", "yes")

    def env_int(key: str, default: int = 0) -> int:
        try:
            return int(os.getenv(key, str(default)))
        except ValueError:
            return default

    def env_float(key: str, default: float = 0.0) -> float:
        try:
            return float(os.getenv(key, str(default)))
        except ValueError:
            return default

    api = data.get("api", {})
    strategy = data.get("strategy", {})
    risk = data.get("risk", {})
    execution = data.get("execution", {})
    live = data.get("live", {})
    telegram = data.get("telegram", {})
    logging_cfg = data.get("logging", {})
    backtest = data.get("backtest", {})
    optimization = data.get("optimization", {})

    use_testnet = env_bool("USE_TESTNET", api.get("use_testnet", True))
    # Prefer dedicated testnet/mainnet keys so both can live in .env and USE_TESTNET switches
    if use_testnet:
        binance_api_key = env("BINANCE_TESTNET_API_KEY") or env("BINANCE_API_KEY")
        binance_api_secret = env("BINANCE_TESTNET_API_SECRET") or env("BINANCE_API_SECRET")
    else:
        binance_api_key = env("BINANCE_MAINNET_API_KEY") or env("BINANCE_API_KEY")
        binance_api_secret = env("BINANCE_MAINNET_API_SECRET") or env("BINANCE_API_SECRET")

    symbols = env("SYMBOLS")
    if symbols:
        instruments = tuple(s.strip().upper() for s in symbols.split(",") if s.strip())
    else:
        raw = strategy.get("symbols") or [strategy.get("symbol", "ZECUSDT")]
        instruments = tuple(str(s).upper() for s in raw)

    config = Config(
        binance_api_key=binance_api_key,
        binance_api_secret=binance_api_secret,
        use_testnet=use_testnet,
        instruments=instruments,
        timeframe=env("TIMEFRAME", strategy.get("timeframe", "5m")),
        # Strategy
        strategy=env("STRATEGY", strategy.get("name", "ema_rsi_vwap")),
        strategy_params=dict(strategy.get("params", {}) or {}),
        # Risk
        leverage=env_float("LEVERAGE", execution.get("leverage", 5.0)),
        max_leverage=env_float("MAX_LEVERAGE", risk.get("max_leverage", 20.0)),
        risk_per_trade_pct=env_float("RISK_PER_TRADE_PCT", risk.get("risk_per_trade_pct", 1.0)),
        risk_per_trade_usd=env_float("RISK_PER_TRADE_USD", risk.get("risk_per_trade_usd", 0.0)),
        max_exposure_pct=env_float("MAX_EXPOSURE_PCT", risk.get("max_exposure_pct", 300.0)),
        max_daily_loss_usd=env_float("MAX_DAILY_LOSS_USD", risk.get("max_daily_loss_usd", 0.0)),
        max_drawdown_pct=env_float("MAX_DRAWDOWN_PCT", risk.get("max_drawdown_pct", 0.0)),
        min_notional=env_float("MIN_NOTIONAL", risk.get("min_notional", 5.0)),
        min_risk_reward=env_float("MIN_RISK_REWARD", risk.get("min_risk_reward", 1.0)),
        stop_loss_pct=env_float("STOP_LOSS_PCT", risk.get("stop_loss_pct", 2.0)),
        take_profit_pct=env_float("TAKE_PROFIT_PCT", risk.get("take_profit_pct", 0.0)),
        trailing_stop_pct=env_float("TRAILING_STOP_PCT", risk.get("trailing_stop_pct", 0.0)),  # 0 = off
        cooldown_bars=env_int("COOLDOWN_BARS", risk.get("cooldown_bars", 0)),
        # Execution
        slippage_bps=env_float("SLIPPAGE_BPS", execution.get("slippage_bps", 5.0)),
        fee_bps=env_float("FEE_BPS", execution.get("fee_bps", 4.0)),
        volume_participation=float(execution.get("volume_participation", 0.0)),
        # Live
        queue_size=int(live.get("queue_size", 64)),
        poll_interval_s=float(live.get("poll_interval_s", 1.0)),
        live_history=int(live.get("history", 5000)),
        # Telegram
        telegram_bot_token=env("TELEGRAM_BOT_TOKEN", telegram.get("bot_token", "")),
        telegram_chat_id=env("TELEGRAM_CHAT_ID", telegram.get("chat_id", "")),
        # Logging
        log_level=logging_cfg.get("level", "INFO"),
        log_dir=Path(logging_cfg.get("log_dir", "logs")),
        log_file=logging_cfg.get("log_file", "trading_engine.log"),
        # Backtest
        backtest_start=backtest.get("start_date"),
        backtest_end=backtest.get("end_date"),
        initial_capital=float(backtest.get("initial_capital", 10000.0)),
        csv_path=backtest.get("csv_path"),
        # Optimization
        optimize_mode=optimization.get("mode", "grid"),
        optimize_params=dict(optimization.get("params", {}) or {}),
        optimize_samples=int(optimization.get("samples", 20)),
        optimize_seed=optimization.get("seed"),
        objective=optimization.get("objective", "sharpe"),
        max_workers=optimization.get("max_workers"),
        walk_forward_train_pct=float(optimization.get("walk_forward_train_pct", 0.7)),
        walk_forward_step_bars=optimization.get("walk_forward_step_bars"),
    )
    config.validate()
    return config


_PARAM_FIELDS = ("strategy_params", "optimize_params")


@dataclass(frozen=True)
class Config:
    """Unified configuration. Immutable after load."""

    binance_api_key: str = field(default="", repr=False)
    binance_api_secret: str = field(default="", repr=False)
    use_testnet: bool = True
    instruments: Tuple[str, ...] = ("ZECUSDT",)
    timeframe: str = "5m"
    strategy: str = "ema_rsi_vwap"
    strategy_params: Mapping[str, Any] = field(default_factory=dict)
    leverage: float = 5.0
    max_leverage: float = 20.0
    risk_per_trade_pct: float = 1.0
    risk_per_trade_usd: float = 0.0  # > 0 overrides the percentage
    max_exposure_pct: float = 300.0
    max_daily_loss_usd: float = 0.0  # 0 = off
    max_drawdown_pct: float = 0.0  # 0 = off
    min_notional: float = 5.0
    min_risk_reward: float = 1.0
    stop_loss_pct: float = 2.0
    take_profit_pct: float = 0.0
    trailing_stop_pct: float = 0.0
    cooldown_bars: int = 0
    symbol_info: Optional[Mapping[str, Any]] = None
    slippage_bps: float = 5.0
    fee_bps: float = 4.0
    volume_participation: float = 0.0  # 0 = fill any size
    queue_size: int = 64
    poll_interval_s: float = 1.0
    live_history: int = 5000  # cycles, closed trades and equity points kept in live runs
    telegram_bot_token: str = field(default="", repr=False)
    telegram_chat_id: str = field(default="", repr=False)
    log_level: str = "INFO"
    log_dir: Path = Path("logs")
    log_file: str = "trading_engine.log"
    backtest_start: Optional[str] = None
    backtest_end: Optional[str] = None
    initial_capital: float = 10000.0
    csv_path: Optional[str] = None
    optimize_mode: str = "grid"
    optimize_params: Mapping[str, Any] = field(default_factory=dict)
    optimize_samples: int = 20
    optimize_seed: Optional[int] = None
    objective: str = "sharpe"
    max_workers: Optional[int] = None
    walk_forward_train_pct: float = 0.7
    walk_forward_step_bars: Optional[int] = None

    def __post_init__(self):
        # parameter maps are read-only views over private copies
        for name in _PARAM_FIELDS:
            object.__setattr__(self, name, MappingProxyType(dict(getattr(self, name) or {})))

    def __getstate__(self):
        state = dict(self.__dict__)
        for name in _PARAM_FIELDS:
            state[name] = dict(state[name])
        return state

    def __setstate__(self, state):
        for name, value in state.items():
            object.__setattr__(self, name, value)
        self.__post_init__()

    @property
    def timeframe_seconds(self) -> int:
        return timeframe_seconds(self.timeframe)

    def validate(self) -> None:
        """Fail fast on parameter combinations the engine cannot run with."""
        if not self.instruments:
            raise ConfigError("instrument universe is empty")
        if len(set(self.instruments)) != len(self.instruments):
            raise ConfigError(f"duplicate instruments: {self.instruments}")
        try:
            self.timeframe_seconds
        except ValueError as e:
            raise ConfigError(str(e)) from e
        if not self.strategy:
            raise ConfigError("no strategy configured")
        if self.max_leverage <= 0 or self.leverage <= 0:
            raise ConfigError("leverage must be positive")
        if self.leverage > self.max_leverage:
            raise ConfigError(f"leverage {self.leverage} > max_leverage {self.max_leverage}")
        if self.risk_per_trade_usd < 0:
            raise ConfigError("risk_per_trade_usd must be >= 0")
        if self.risk_per_trade_usd == 0 and not 0 < self.risk_per_trade_pct <= 100:
            raise ConfigError(f"risk_per_trade_pct {self.risk_per_trade_pct} outside (0, 100]")
        if self.max_exposure_pct <= 0:
            raise ConfigError("max_exposure_pct must be positive")
        for name in ("stop_loss_pct", "take_profit_pct", "trailing_stop_pct", "slippage_bps", "fee_bps",
                     "min_notional", "min_risk_reward", "max_daily_loss_usd", "max_drawdown_pct"):
            if getattr(self, name) < 0:
                raise ConfigError(f"{name} must be >= 0")
        if self.cooldown_bars < 0:
            raise ConfigError("cooldown_bars must be >= 0")
        if not 0 <= self.volume_participation <= 1:
            raise ConfigError("volume_participation must be within [0, 1]")
        if self.initial_capital <= 0:
            raise ConfigError("initial_capital must be positive")
        if self.queue_size < 1:
            raise ConfigError("queue_size must be >= 1")
        if self.live_history < 1:
            raise ConfigError("live_history must be >= 1")
        if not 0 < self.walk_forward_train_pct < 1:
            raise ConfigError("walk_forward_train_pct must be within (0, 1)")

    def with_overrides(self, params: Mapping[str, Any]) -> "Config":
        """
        New Config with params applied: keys naming a Config field replace it,
        everything else is merged into strategy_params.
        """
        names = {f.name for f in fields(self)}
        top = {k: v for k, v in params.items() if k in names and k != "strategy_params"}
        strat = {k: v for k, v in params.items() if k not in names}
        if "instruments" in top:
            top["instruments"] = tuple(top["instruments"])
        return replace(self, strategy_params={**self.strategy_params, **strat}, **top)
