from __future__ import annotations

import os
from dataclasses import dataclass
from urllib.parse import quote

from dotenv import load_dotenv

DEFAULT_MENU_TYPE = "photo-grafic"
DEFAULT_MEDIA_BASE_URL = "https://api.loe.lviv.ua"


def _parse_admin_chat_id(raw: str | None) -> str | None:
    # TELEGRAM_ADMIN_CHAT_ID is optional; it only receives startup/shutdown notices.
    if raw is None or not raw.strip():
        return None
    value = raw.strip()
    try:
        int(value)
    except ValueError as e:
        raise RuntimeError(f"Invalid TELEGRAM_ADMIN_CHAT_ID value: {value!r}. Expected integer chat id.") from e
    if value == "0":
        raise RuntimeError("Invalid TELEGRAM_ADMIN_CHAT_ID value: '0' is not a valid chat id")
    return value


def _float_env(name: str, default: str | None = None) -> float | None:
    raw = os.getenv(name, default)
    if raw is None or not raw.strip():
        return None
    try:
        return float(raw)
    except ValueError as e:
        raise RuntimeError(f"{name} must be a number, got {raw!r}") from e


@dataclass(frozen=True)
class Settings:
    telegram_bot_token: str
    telegram_admin_chat_id: str | None = None

    menus_url: str = f"{DEFAULT_MEDIA_BASE_URL}/api/menus?page=1&type={DEFAULT_MENU_TYPE}"
    media_base_url: str = DEFAULT_MEDIA_BASE_URL

    # Fixed interval, used unless a [min, max] range is configured.
    check_interval_seconds: float = 900.0
    check_interval_min_seconds: float | None = None
    check_interval_max_seconds: float | None = None
    initial_check_delay_seconds: float = 2.0

    fetch_timeout_seconds: float = 20.0
    # How many times a failed upstream fetch is attempted before it counts as an error.
    fetch_retry_attempts: int = 2

    # Where we store subscribers and their baselines
    state_file: str = "state.json"
    log_level: str = "INFO"

    @property
    def interval_range(self) -> tuple[float, float] | None:
        if self.check_interval_min_seconds is None or self.check_interval_max_seconds is None:
            return None
        return self.check_interval_min_seconds, self.check_interval_max_seconds

    @property
    def jittered(self) -> bool:
        return self.interval_range is not None


def _require(name: str) -> str:
    value = os.getenv(name)
    if not value:
        raise RuntimeError(f"Missing required environment variable: {name}")
    return value


def load_settings(dotenv_path: str | None = None) -> Settings:
    # Prefer .env in repo root; dotenv_path allows overriding in tests.
    load_dotenv(dotenv_path=dotenv_path, override=False)

    menu_type = os.getenv("LOE_MENU_TYPE", DEFAULT_MENU_TYPE)
    menus_url = os.getenv("LOE_MENUS_URL") or (
        f"{DEFAULT_MEDIA_BASE_URL}/api/menus?page=1&type={quote(menu_type, safe='')}"
    )
    media_base_url = os.getenv("LOE_MEDIA_BASE_URL", DEFAULT_MEDIA_BASE_URL).rstrip("/")

    check_interval_seconds = _float_env("CHECK_INTERVAL_SECONDS", "900")
    if check_interval_seconds is None or check_interval_seconds <= 0:
        raise RuntimeError("CHECK_INTERVAL_SECONDS must be a positive number")

    min_seconds = _float_env("CHECK_INTERVAL_MIN_SECONDS")
    max_seconds = _float_env("CHECK_INTERVAL_MAX_SECONDS")
    if (min_seconds is None) != (max_seconds is None):
        raise RuntimeError("CHECK_INTERVAL_MIN_SECONDS and CHECK_INTERVAL_MAX_SECONDS must be set together")
    if min_seconds is not None and max_seconds is not None:
        if min_seconds <= 0 or max_seconds <= 0:
            raise RuntimeError("CHECK_INTERVAL_MIN_SECONDS and CHECK_INTERVAL_MAX_SECONDS must be positive")
        if min_seconds > max_seconds:
            raise RuntimeError("CHECK_INTERVAL_MIN_SECONDS must be <= CHECK_INTERVAL_MAX_SECONDS")

    initial_check_delay_seconds = _float_env("INITIAL_CHECK_DELAY_SECONDS", "2")
    if initial_check_delay_seconds is None or initial_check_delay_seconds < 0:
        raise RuntimeError("INITIAL_CHECK_DELAY_SECONDS must be >= 0")

    fetch_timeout_seconds = _float_env("FETCH_TIMEOUT_SECONDS", "20")
    if fetch_timeout_seconds is None or fetch_timeout_seconds <= 0:
        raise RuntimeError("FETCH_TIMEOUT_SECONDS must be a positive number")

    fetch_retry_attempts = int(os.getenv("FETCH_RETRY_ATTEMPTS", "2"))
    if fetch_retry_attempts < 1:
        raise RuntimeError("FETCH_RETRY_ATTEMPTS must be >= 1")

    state_file = os.getenv("STATE_FILE", "state.json")
    log_level = os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO"

    return Settings(
        telegram_bot_token=_require("TELEGRAM_BOT_TOKEN"),
        telegram_admin_chat_id=_parse_admin_chat_id(os.getenv("TELEGRAM_ADMIN_CHAT_ID")),
        menus_url=menus_url,
        media_base_url=media_base_url,
        check_interval_seconds=check_interval_seconds,
        check_interval_min_seconds=min_seconds,
        check_interval_max_seconds=max_seconds,
        initial_check_delay_seconds=initial_check_delay_seconds,
        fetch_timeout_seconds=fetch_timeout_seconds,
        fetch_retry_attempts=fetch_retry_attempts,
        state_file=state_file,
        log_level=log_level,
    )
