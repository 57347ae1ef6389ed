"""
Telegram delivery and the non-blocking dispatcher.
"""

import threading
from unittest import mock

import requests

from pipewatch.local.supervisor.notifier import (
    NotificationDispatcher,
    NullNotifier,
    TelegramNotifier,
    build_notifier,
)


def response(status_code: int, text: str = "") -> mock.MagicMock:
    resp = mock.MagicMock()
    resp.status_code = status_code
    resp.text = text
    return resp


class TestTelegramNotifier:

    def test_posts_markdown_payload(self):
        session = mock.MagicMock()
        session.post.return_value = response(200)
        notifier = TelegramNotifier("TOKEN", "123", timeout=4, api_url="https://api.example/", session=session)

        assert notifier.send("*hello*") is True
        session.post.assert_called_once_with(
            "https://api.example/botTOKEN/sendMessage",
            json={"chat_id": "123", "text": "*hello*", "parse_mode": "Markdown"},
            timeout=4,
        )

    def test_non_2xx_is_logged_not_raised(self, caplog):
        session = mock.MagicMock()
        session.post.return_value = response(400, "Bad Request: can't parse entities")
        notifier = TelegramNotifier("TOKEN", "123", session=session)
        assert notifier.send("oops") is False
        assert "Telegram API error: 400" in caplog.text

    def test_network_failure_is_swallowed(self, caplog):
        session = mock.MagicMock()
        session.post.side_effect = requests.ConnectionError("connection refused")
        assert TelegramNotifier("TOKEN", "123", session=session).send("x") is False
        assert "Telegram request failed" in caplog.text

    def test_timeout_is_swallowed(self, caplog):
        session = mock.MagicMock()
        session.post.side_effect = requests.exceptions.Timeout()
        assert TelegramNotifier("TOKEN", "123", timeout=2, session=session).send("x") is False
        assert "timed out after 2s" in caplog.text


class TestBuildNotifier:

    def test_missing_credentials_disable_notifications(self):
        assert isinstance(build_notifier("", "123", 10), NullNotifier)
        assert isinstance(build_notifier("TOKEN", "", 10), NullNotifier)

    def test_credentials_enable_telegram(self):
        assert isinstance(build_notifier("TOKEN", "123", 10), TelegramNotifier)


class TestNotificationDispatcher:

    def test_delivers_in_order(self):
        sent = []
        notifier = mock.MagicMock()
        notifier.send.side_effect = sent.append
        dispatcher = NotificationDispatcher(notifier)
        for text in ("one", "two", "three"):
            dispatcher.notify(text)
        assert dispatcher.flush(timeout=5)
        assert sent == ["one", "two", "three"]

    def test_notify_does_not_block_on_slow_sink(self):
        release = threading.Event()
        notifier = mock.MagicMock()
        notifier.send.side_effect = lambda text: release.wait(5)
        dispatcher = NotificationDispatcher(notifier)

        dispatcher.notify("slow")
        assert dispatcher.pending == 1
        assert dispatcher.flush(timeout=0.1) is False
        release.set()
        assert dispatcher.flush(timeout=5)

    def test_sink_exception_is_contained(self):
        notifier = mock.MagicMock()
        notifier.send.side_effect = [RuntimeError("boom"), True]
        dispatcher = NotificationDispatcher(notifier)
        dispatcher.notify("first")
        dispatcher.notify("second")
        assert dispatcher.flush(timeout=5)
        assert notifier.send.call_count == 2

    def test_disabled_notifier_queues_nothing(self):
        dispatcher = NotificationDispatcher(NullNotifier())
        dispatcher.notify("dropped")
        assert dispatcher.pending == 0
