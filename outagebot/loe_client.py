from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any

import httpx
from tenacity import RetryCallState, retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from outagebot.config import Settings
from outagebot.domain import FetchFailure, MalformedUpstreamData
from outagebot.schedule import text_from_html

logger = logging.getLogger(__name__)

_HEADERS = {
    "accept": "application/ld+json,application/json;q=0.9,*/*;q=0.8",
    "user-agent": (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120 Safari/537.36"
    ),
}

TODAY_ITEM = "today"
TOMORROW_ITEM = "tomorrow"


@dataclass(frozen=True)
class DaySource:
    """One menu item of the upstream: schedule text and its image."""

    name: str
    text: str
    image_url: str


@dataclass(frozen=True)
class UpstreamSchedules:
    menu_name: str
    today: DaySource
    tomorrow: DaySource | None
    source_url: str


def absolute_media_url(pathname: str, base_url: str) -> str:
    if not pathname:
        return ""
    if re.match(r"^https?://", pathname, re.IGNORECASE):
        return pathname
    p = pathname if pathname.startswith("/") else f"/{pathname}"
    return f"{base_url.rstrip('/')}{p}"


def _day_source(item: dict[str, Any], base_url: str) -> DaySource:
    raw_html = item.get("rawMobileHtml") or item.get("rawHtml") or ""
    if not isinstance(raw_html, str):
        raise MalformedUpstreamData(f"Menu item {item.get('name')!r} has no HTML body")
    image = item.get("imageUrl") or item.get("slug") or ""
    return DaySource(
        name=str(item.get("name", "")),
        text=text_from_html(raw_html),
        image_url=absolute_media_url(image if isinstance(image, str) else "", base_url),
    )


def parse_menus(data: Any, *, base_url: str, source_url: str = "") -> UpstreamSchedules:
    members = data.get("hydra:member") if isinstance(data, dict) else None
    if not isinstance(members, list) or not members or not isinstance(members[0], dict):
        raise MalformedUpstreamData("Upstream response did not contain hydra:member[0]")

    menu = members[0]
    items = menu.get("menuItems")
    if not isinstance(items, list):
        raise MalformedUpstreamData("Upstream menu has no menuItems")

    by_name: dict[str, dict[str, Any]] = {}
    for item in items:
        if isinstance(item, dict) and isinstance(item.get("name"), str):
            by_name.setdefault(item["name"].strip().lower(), item)

    if TODAY_ITEM not in by_name:
        raise MalformedUpstreamData("Upstream menu has no 'Today' item")

    tomorrow = by_name.get(TOMORROW_ITEM)
    return UpstreamSchedules(
        menu_name=str(menu.get("name", "")),
        today=_day_source(by_name[TODAY_ITEM], base_url),
        tomorrow=_day_source(tomorrow, base_url) if tomorrow is not None else None,
        source_url=source_url,
    )


def _short_exc(retry_state: RetryCallState) -> str | None:
    if retry_state.outcome is None or not retry_state.outcome.failed:
        return None
    exc = retry_state.outcome.exception()
    if exc is None:
        return None
    # No traceback between attempts: type and message only.
    msg = str(exc).strip()
    return f"{type(exc).__name__}: {msg}" if msg else type(exc).__name__


def _log_after_attempt(retry_state: RetryCallState) -> None:
    if retry_state.outcome is not None and retry_state.outcome.failed:
        reason = _short_exc(retry_state)
        logger.warning("Fetch attempt %s failed (%s)", retry_state.attempt_number, reason or "unknown error")


def _log_before_sleep(retry_state: RetryCallState) -> None:
    sleep_seconds = getattr(retry_state.next_action, "sleep", None)
    if sleep_seconds is None:
        logger.info("Waiting before fetch attempt %s", retry_state.attempt_number + 1)
        return
    logger.info("Waiting %.0f s before fetch attempt %s", sleep_seconds, retry_state.attempt_number + 1)


def _fetch_once(settings: Settings, client: httpx.Client) -> UpstreamSchedules:
    try:
        r = client.get(settings.menus_url, headers=_HEADERS)
    except httpx.HTTPError as e:
        raise FetchFailure(f"Upstream request failed ({type(e).__name__}: {e})") from e

    if not r.is_success:
        raise FetchFailure(f"HTTP {r.status_code} when calling LOE API")

    try:
        data = r.json()
    except ValueError as e:
        raise MalformedUpstreamData("LOE API did not return JSON") from e

    return parse_menus(data, base_url=settings.media_base_url, source_url=settings.menus_url)


def fetch_schedules(settings: Settings, client: httpx.Client | None = None) -> UpstreamSchedules:
    """Fetch today's (and, if published, tomorrow's) schedule.

    Transport errors and non-2xx answers are retried up to
    ``settings.fetch_retry_attempts`` times; malformed data is not.
    """
    decorated = retry(
        stop=stop_after_attempt(settings.fetch_retry_attempts),
        wait=wait_exponential(multiplier=2, min=2, max=8),
        retry=retry_if_exception_type(FetchFailure),
        after=_log_after_attempt,
        before_sleep=_log_before_sleep,
        reraise=True,
    )(_fetch_once)

    if client is not None:
        return decorated(settings, client)
    with httpx.Client(timeout=settings.fetch_timeout_seconds, follow_redirects=True) as own_client:
        return decorated(settings, own_client)
