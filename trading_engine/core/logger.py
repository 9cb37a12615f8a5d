"""
Logging setup for the "trading_engine" logger tree: console always, file when
log_dir and log_file are both set. Library chatter (urllib3, python-binance)
is held at WARNING so run output stays readable.
"""

from __future__ import annotations
import logging
import sys
from pathlib import Path
from typing import Iterable, Optional

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
NOISY_LOGGERS = ("urllib3", "binance", "asyncio")


def _attach(logger: logging.Logger, handler: logging.Handler) -> None:
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    logger.addHandler(handler)


def setup_logging(
    level: str = "INFO",
    log_dir: Optional[Path] = None,
    log_file: Optional[str] = None,
    quiet: Iterable[str] = NOISY_LOGGERS,
) -> logging.Logger:
    """
    Configure and return the trading_engine logger. Safe to call again: old
    handlers are replaced. Never log API keys or secrets.
    """
    engine_logger = logging.getLogger("trading_engine")
    engine_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    for handler in list(engine_logger.handlers):
        engine_logger.removeHandler(handler)
        handler.close()

    _attach(engine_logger, logging.StreamHandler(sys.stdout))
    if log_dir and log_file:
        path = Path(log_dir)
        path.mkdir(parents=True, exist_ok=True)
        _attach(engine_logger, logging.FileHandler(path / log_file, encoding="utf-8"))

    for name in quiet:
        logging.getLogger(name).setLevel(logging.WARNING)
    return engine_logger
