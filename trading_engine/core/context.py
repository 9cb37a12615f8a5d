"""
RunContext: everything scoped to one live or simulated run.
"""

from __future__ import annotations
import logging
import threading
import uuid
from collections import Counter, deque
from typing import Deque, Optional, Tuple

from trading_engine.core.config import Config
from trading_engine.core.errors import DataError, EngineError

logger = logging.getLogger("trading_engine.run")


class RunContext:
    """
    Holds the immutable config, the instrument universe, run counters and
    the cancellation flag. Created at run start; each optimization worker
    builds its own.
    """

    def __init__(self, config: Config, run_id: Optional[str] = None, max_errors: int = 200):
        config.validate()
        self.config = config
        self.run_id = run_id or uuid.uuid4().hex[:12]
        self.instruments: Tuple[str, ...] = tuple(config.instruments)
        self.stats: Counter = Counter()
        self.errors: Deque[EngineError] = deque(maxlen=max_errors)
        self._cancel = threading.Event()
        self._order_seq = 0

    def require_instrument(self, instrument: str) -> None:
        if instrument not in self.instruments:
            raise DataError(f"instrument {instrument} not in universe {self.instruments}", instrument)

    def record(self, error: EngineError, counter: str) -> None:
        """Count and keep a recovered error."""
        self.stats[counter] += 1
        self.errors.append(error)

    def next_order_id(self) -> str:
        self._order_seq += 1
        return f"{self.run_id}-{self._order_seq:06d}"

    def cancel(self) -> None:
        """Request cooperative cancellation."""
        if not self._cancel.is_set():
            logger.info("Run %s: cancellation requested", self.run_id)
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()
