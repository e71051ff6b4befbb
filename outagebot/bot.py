"""Telegram long-polling runtime."""

from __future__ import annotations

import logging
import threading

import httpx

from outagebot.commands import BOT_COMMANDS, CommandHandler
from outagebot.telegram_notifier import delete_webhook, get_updates, set_my_commands

logger = logging.getLogger(__name__)


class TelegramPoller:
    def __init__(
        self,
        bot_token: str,
        handler: CommandHandler,
        *,
        long_poll_timeout: int = 25,
        sleep_on_error: float = 3.0,
    ) -> None:
        self.bot_token = bot_token
        self.handler = handler
        self.long_poll_timeout = long_poll_timeout
        self.sleep_on_error = sleep_on_error
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def prepare(self) -> None:
        # Both best-effort: the bot still works without the "/" menu.
        try:
            set_my_commands(bot_token=self.bot_token, commands=BOT_COMMANDS)
        except Exception:
            logger.warning("Failed to register bot commands", exc_info=True)
        # A leftover webhook makes getUpdates fail with 409.
        try:
            delete_webhook(bot_token=self.bot_token)
        except Exception:
            logger.warning("Failed to delete webhook; continuing with long polling", exc_info=True)

    def handle_update(self, update: dict) -> None:
        msg = update.get("message") or {}
        chat = msg.get("chat") or {}
        chat_id = chat.get("id")
        text = msg.get("text") or ""
        if not chat_id or not text:
            return
        self.handler.handle(str(chat_id), text)

    def poll_forever(self) -> None:
        logger.info("Telegram long polling started")
        offset: int | None = None
        fail_streak = 0
        while not self._stop.is_set():
            try:
                updates = get_updates(bot_token=self.bot_token, offset=offset, long_poll_timeout=self.long_poll_timeout)
                fail_streak = 0
            except (httpx.HTTPError, RuntimeError, ValueError) as e:
                fail_streak += 1
                backoff = min(60.0, self.sleep_on_error * (2 ** min(fail_streak, 3)))
                logger.warning("Long polling failed (%s: %s), retrying in %.0f s", type(e).__name__, e, backoff)
                self._stop.wait(backoff)
                continue

            for upd in updates:
                offset = int(upd.get("update_id", 0)) + 1
                if self._stop.is_set():
                    # Stop accepting triggers; the update is dropped.
                    break
                try:
                    self.handle_update(upd)
                except Exception:
                    logger.error("Failed to handle update %s", upd.get("update_id"), exc_info=True)
        logger.info("Telegram long polling stopped")

    def start(self) -> threading.Thread:
        self._thread = threading.Thread(target=self.poll_forever, name="telegram-poller", daemon=True)
        self._thread.start()
        return self._thread

    def stop(self) -> None:
        self._stop.set()
