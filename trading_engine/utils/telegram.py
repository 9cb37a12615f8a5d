"""Telegram notifications for live runs. Never log token or chat_id."""

from __future__ import annotations
import logging
from typing import TYPE_CHECKING, Optional

import requests

if TYPE_CHECKING:
    from trading_engine.core.config import Config

logger = logging.getLogger("trading_engine.utils.telegram")

API_URL = "https://api.telegram.org/bot{token}/sendMessage"


def send_telegram(text: str, bot_token: str = "", chat_id: str = "") -> bool:
    """Send a message. Returns True on success; False (never raises) when unconfigured or failing."""
    if not bot_token or not chat_id:
        logger.debug("Telegram not configured, skipping message (len=%d)", len(text))
        return False
    try:
        r = requests.post(API_URL.format(token=bot_token), json={"chat_id": chat_id, "text": text}, timeout=10)
    except requests.RequestException as e:
        logger.warning("Telegram error: %s", type(e).__name__)
        return False
    if r.status_code != 200:
        logger.warning("Telegram send failed: %s %s", r.status_code, r.text[:200])
        return False
    return True


class TelegramNotifier:
    """Callable notifier (text -> bool) bound to one bot and chat, with an optional prefix."""

    def __init__(self, bot_token: str, chat_id: str, prefix: str = ""):
        self._token = bot_token
        self._chat_id = chat_id
        self.prefix = prefix

    @property
    def enabled(self) -> bool:
        return bool(self._token and self._chat_id)

    def __call__(self, text: str) -> bool:
        return send_telegram(f"{self.prefix}{text}", self._token, self._chat_id)

    def __repr__(self) -> str:
        return f"TelegramNotifier(enabled={self.enabled}, prefix={self.prefix!r})"


def notifier_from_config(config: Config, prefix: str = "") -> Optional[TelegramNotifier]:
    """A notifier when both token and chat id are configured, else None."""
    notifier = TelegramNotifier(config.telegram_bot_token, config.telegram_chat_id, prefix)
    return notifier if notifier.enabled else None
