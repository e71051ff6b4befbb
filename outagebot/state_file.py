from __future__ import annotations

import json
import logging
import os
import tempfile
from datetime import datetime
from typing import Any, Mapping

from outagebot.domain import (
    POSSIBLE_SUBGROUPS,
    DayState,
    PendingInput,
    PersistenceFailure,
    SubscriberRecord,
    TomorrowStatus,
    normalize_subgroup_id,
)

logger = logging.getLogger(__name__)

# Pending steps as written by earlier releases of the bot.
_LEGACY_PENDING = {
    "groups": PendingInput.COLLECTING_INITIAL_SET,
    "groups_add": PendingInput.COLLECTING_ADDITIONS,
    "groups_remove": PendingInput.COLLECTING_REMOVALS,
}


def _str_or_none(value: Any) -> str | None:
    return value if isinstance(value, str) else None


def _dt_or_none(value: Any) -> datetime | None:
    if not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def _dt_to_str(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _coerce_subgroups(raw: Any) -> list[str]:
    if not isinstance(raw, list):
        return []
    out: list[str] = []
    for item in raw:
        if not isinstance(item, str):
            continue
        sg = normalize_subgroup_id(item)
        if sg in POSSIBLE_SUBGROUPS and sg not in out:
            out.append(sg)
    return out


def _coerce_pending(raw: Any) -> PendingInput | None:
    if not isinstance(raw, str):
        return None
    if raw in _LEGACY_PENDING:
        return _LEGACY_PENDING[raw]
    try:
        return PendingInput(raw)
    except ValueError:
        return None


def _coerce_day(raw: Any) -> DayState:
    if not isinstance(raw, Mapping):
        return DayState()
    return DayState(
        last_checked_at=_dt_or_none(raw.get("lastCheckedAt")),
        last_notified_at=_dt_or_none(raw.get("lastNotifiedAt")),
        last_watched_text=_str_or_none(raw.get("lastWatchedText")),
        last_error=_str_or_none(raw.get("lastError")),
    )


def record_from_json(raw: Any) -> SubscriberRecord:
    """Build a record from whatever is on disk; unknown or mistyped fields fall back to defaults."""
    u = raw if isinstance(raw, Mapping) else {}

    today = _coerce_day(u.get("today"))
    if "today" not in u:
        # Single-day layout: lastLoeCheckedAt, lastLoeWatchedText, ...
        today = DayState(
            last_checked_at=_dt_or_none(u.get("lastLoeCheckedAt")),
            last_notified_at=_dt_or_none(u.get("lastLoeNotifiedAt")),
            last_watched_text=_str_or_none(u.get("lastLoeWatchedText")),
            last_error=_str_or_none(u.get("lastLoeError")),
        )

    try:
        tomorrow_status = TomorrowStatus(u.get("tomorrowStatus"))
    except ValueError:
        tomorrow_status = TomorrowStatus.MISSING

    watch = u.get("watchEnabled", u.get("watching"))
    return SubscriberRecord(
        subgroups=_coerce_subgroups(u.get("subgroups", u.get("groups"))),
        pending_input=_coerce_pending(u.get("pendingInput", u.get("pendingStep"))),
        watch_enabled=watch if isinstance(watch, bool) else False,
        today=today,
        tomorrow=_coerce_day(u.get("tomorrow")),
        tomorrow_status=tomorrow_status,
    )


def _day_to_json(state: DayState) -> dict[str, Any]:
    return {
        "lastCheckedAt": _dt_to_str(state.last_checked_at),
        "lastNotifiedAt": _dt_to_str(state.last_notified_at),
        "lastWatchedText": state.last_watched_text,
        "lastError": state.last_error,
    }


def record_to_json(record: SubscriberRecord) -> dict[str, Any]:
    return {
        "subgroups": list(record.subgroups),
        "pendingInput": record.pending_input.value if record.pending_input else None,
        "watchEnabled": record.watch_enabled,
        "today": _day_to_json(record.today),
        "tomorrow": _day_to_json(record.tomorrow),
        "tomorrowStatus": record.tomorrow_status.value,
    }


def load_records(path: str) -> dict[str, SubscriberRecord]:
    if not os.path.exists(path):
        return {}

    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
    except (OSError, ValueError):
        # Corrupted state shouldn't brick the bot; start fresh.
        logger.warning("State file %s is unreadable, starting with an empty store", path, exc_info=True)
        return {}

    users = raw.get("users") if isinstance(raw, dict) else None
    if not isinstance(users, dict):
        return {}
    return {str(chat_id): record_from_json(item) for chat_id, item in users.items()}


def save_records(path: str, records: Mapping[str, SubscriberRecord]) -> None:
    data = {
        "users": {chat_id: record_to_json(r) for chat_id, r in records.items()},
    }

    folder = os.path.dirname(os.path.abspath(path))
    tmp_name: str | None = None
    try:
        if folder and not os.path.exists(folder):
            os.makedirs(folder, exist_ok=True)

        # Atomic write
        with tempfile.NamedTemporaryFile("w", delete=False, encoding="utf-8", dir=folder, suffix=".tmp") as tf:
            tmp_name = tf.name
            json.dump(data, tf, ensure_ascii=False, indent=2)
            tf.flush()
            os.fsync(tf.fileno())

        os.replace(tmp_name, path)
    except OSError as e:
        if tmp_name and os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise PersistenceFailure(f"Could not write state file {path}: {e}") from e
