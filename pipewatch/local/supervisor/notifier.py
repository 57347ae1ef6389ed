import time
import queue
import logging
import requests
import threading
from typing import Optional

import pipewatch.settings as default_settings
from pipewatch.local.errors import NotificationError

log = logging.getLogger(__name__)


class NullNotifier:
    """Sink used when no credentials are configured. Drops every message."""

    enabled = False

    def send(self, text: str) -> bool:
        log.debug("Notifications disabled, message dropped.")
        return False


class TelegramNotifier:
    """
    Posts Markdown messages to a Telegram chat through the Bot API.
    Delivery is best-effort: failures are logged and reported as False.
    """

    enabled = True

    def __init__(
        self,
        bot_token: str,
        chat_id: str,
        timeout: float = default_settings.NOTIFICATION_TIMEOUT_SECONDS,
        api_url: str = default_settings.TELEGRAM_API_URL,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.chat_id = chat_id
        self.timeout = timeout
        self.url = f"{api_url.rstrip('/')}/bot{bot_token}/sendMessage"
        self.session = session or requests.Session()

    def build_payload(self, text: str) -> dict:
        return {"chat_id": self.chat_id, "text": text, "parse_mode": "Markdown"}

    def _post(self, text: str) -> None:
        """Raises NotificationError on any delivery failure."""
        try:
            response = self.session.post(self.url, json=self.build_payload(text), timeout=self.timeout)
        except requests.exceptions.Timeout as e:
            raise NotificationError(f"Telegram request timed out after {self.timeout}s") from e
        except requests.RequestException as e:
            raise NotificationError(f"Telegram request failed: {e}") from e

        if not 200 <= response.status_code < 300:
            raise NotificationError(f"Telegram API error: {response.status_code} {response.text}")

    def send(self, text: str) -> bool:
        try:
            self._post(text)
        except NotificationError as e:
            log.error(str(e))
            return False
        log.info("Telegram notification sent")
        return True


def build_notifier(bot_token: str, chat_id: str, timeout: float, api_url: str = default_settings.TELEGRAM_API_URL):
    """Returns a TelegramNotifier when credentials are present, otherwise a NullNotifier."""
    if not bot_token or not chat_id:
        log.info("Telegram credentials not configured, notifications disabled.")
        return NullNotifier()
    return TelegramNotifier(bot_token, chat_id, timeout=timeout, api_url=api_url)


class NotificationDispatcher:
    """
    Delivers messages on a detached daemon worker so a slow endpoint never
    delays the reconciliation loop. Messages go out in the order they were
    queued. `flush()` waits for pending deliveries before a one-shot command exits.
    """

    def __init__(self, notifier) -> None:
        self.notifier = notifier
        self._queue: "queue.Queue[str]" = queue.Queue()
        self._worker: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    def _run(self) -> None:
        while True:
            text = self._queue.get()
            try:
                self.notifier.send(text)
            except Exception as e:
                log.error(f"Unexpected error while delivering notification: {e}", exc_info=True)
            finally:
                self._queue.task_done()

    def _ensure_worker(self) -> None:
        with self._lock:
            if self._worker is None or not self._worker.is_alive():
                self._worker = threading.Thread(target=self._run, daemon=True, name="NotificationThread")
                self._worker.start()

    def notify(self, text: str) -> None:
        if not getattr(self.notifier, "enabled", True):
            return
        self._queue.put(text)
        self._ensure_worker()

    @property
    def pending(self) -> int:
        return self._queue.unfinished_tasks

    def flush(self, timeout: float = default_settings.NOTIFICATION_TIMEOUT_SECONDS) -> bool:
        """
        Waits up to `timeout` seconds for queued messages to be delivered.
        Returns True if nothing is left pending.
        """
        deadline = time.monotonic() + timeout
        while self._queue.unfinished_tasks and time.monotonic() < deadline:
            time.sleep(0.05)
        if self._queue.unfinished_tasks:
            log.warning(f"{self._queue.unfinished_tasks} notification(s) still pending after {timeout}s.")
            return False
        return True
