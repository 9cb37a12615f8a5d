"""Tests for utils.telegram (requests is monkeypatched; nothing leaves the machine)."""

from types import SimpleNamespace

import pytest
import requests
from trading_engine.utils import telegram
from trading_engine.utils.telegram import TelegramNotifier, notifier_from_config, send_telegram


@pytest.fixture
def posts(monkeypatch):
    sent = []

    def fake_post(url, json=None, timeout=None):
        sent.append((url, json))
        return SimpleNamespace(status_code=200, text="ok")

    monkeypatch.setattr(telegram.requests, "post", fake_post)
    return sent


def test_send_telegram(posts):
    assert send_telegram("hello", "TOKEN", "42") is True
    url, body = posts[0]
    assert url == "https://api.telegram.org/botTOKEN/sendMessage"
    assert body == {"chat_id": "42", "text": "hello"}


def test_unconfigured_sends_nothing(posts):
    assert send_telegram("hello") is False
    assert send_telegram("hello", "TOKEN", "") is False
    assert posts == []


def test_network_error_returns_false(monkeypatch):
    def boom(*args, **kwargs):
        raise requests.ConnectionError("down")

    monkeypatch.setattr(telegram.requests, "post", boom)
    assert send_telegram("hello", "TOKEN", "42") is False


def test_bad_status_returns_false(monkeypatch):
    monkeypatch.setattr(
        telegram.requests, "post", lambda *a, **kw: SimpleNamespace(status_code=401, text="Unauthorized")
    )
    assert send_telegram("hello", "TOKEN", "42") is False


def test_notifier_prefix_and_repr(posts):
    notifier = TelegramNotifier("TOKEN", "42", prefix="[live] ")
    assert notifier.enabled
    assert notifier("FILL BTCUSDT") is True
    assert posts[0][1]["text"] == "[live] FILL BTCUSDT"
    assert "TOKEN" not in repr(notifier)


def test_notifier_from_config(make_config):
    assert notifier_from_config(make_config()) is None
    cfg = make_config(telegram_bot_token="TOKEN", telegram_chat_id="42")
    notifier = notifier_from_config(cfg, prefix="x ")
    assert isinstance(notifier, TelegramNotifier)
    assert notifier.prefix == "x "
