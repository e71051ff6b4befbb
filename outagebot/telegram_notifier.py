from __future__ import annotations

import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)

API_BASE = "https://api.telegram.org"


def _call(bot_token: str, method: str, payload: dict[str, Any], *, timeout_seconds: float = 20.0) -> Any:
    url = f"{API_BASE}/bot{bot_token}/{method}"
    with httpx.Client(timeout=timeout_seconds) as client:
        r = client.post(url, json=payload)
        r.raise_for_status()
        data = r.json()
        if not data.get("ok", False):
            raise RuntimeError(f"Telegram API error: {data}")
        return data.get("result")


def send_telegram_message(*, bot_token: str, chat_id: str, text: str, timeout_seconds: float = 20.0) -> None:
    payload = {
        "chat_id": chat_id,
        "text": text,
        "disable_web_page_preview": True,
    }
    _call(bot_token, "sendMessage", payload, timeout_seconds=timeout_seconds)


def get_updates(*, bot_token: str, offset: int | None, long_poll_timeout: int = 25) -> list[dict[str, Any]]:
    payload: dict[str, Any] = {"timeout": long_poll_timeout, "allowed_updates": ["message"]}
    if offset is not None:
        payload["offset"] = offset
    result = _call(bot_token, "getUpdates", payload, timeout_seconds=long_poll_timeout + 5)
    return result if isinstance(result, list) else []


def set_my_commands(*, bot_token: str, commands: list[tuple[str, str]]) -> None:
    payload = {"commands": [{"command": c, "description": d} for c, d in commands]}
    _call(bot_token, "setMyCommands", payload)


def delete_webhook(*, bot_token: str) -> None:
    _call(bot_token, "deleteWebhook", {"drop_pending_updates": True})


class Dispatcher:
    """Best-effort delivery: a failed send is logged and dropped."""

    def __init__(self, bot_token: str) -> None:
        self.bot_token = bot_token

    def __call__(self, chat_id: str, text: str) -> bool:
        try:
            send_telegram_message(bot_token=self.bot_token, chat_id=chat_id, text=text)
        except Exception as e:
            logger.warning("Failed to send telegram message to chat_id=%s (%s: %s)", chat_id, type(e).__name__, e)
            return False
        return True
