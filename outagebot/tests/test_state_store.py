from __future__ import annotations

import json
import os
from datetime import datetime
from unittest.mock import patch

import pytest

from outagebot.domain import (
    DayState,
    PendingInput,
    PersistenceFailure,
    SubscriberRecord,
    TomorrowStatus,
)
from outagebot.state_file import load_records, save_records
from outagebot.store import SubscriberStore


def _record() -> SubscriberRecord:
    return SubscriberRecord(
        subgroups=["3.2", "1.1"],
        pending_input=PendingInput.COLLECTING_ADDITIONS,
        watch_enabled=True,
        today=DayState(
            last_checked_at=datetime(2026, 10, 17, 12, 0).astimezone(),
            last_notified_at=datetime(2026, 10, 17, 9, 30).astimezone(),
            last_watched_text="Graphic\n\nSubgroup 3.2. No power.",
            last_error=None,
        ),
        tomorrow=DayState(last_error="HTTP 502 when calling LOE API"),
        tomorrow_status=TomorrowStatus.PRESENT,
    )


def test_save_and_load_round_trip(tmp_path) -> None:
    path = str(tmp_path / "state" / "state.json")
    records = {"123": _record(), "-100": SubscriberRecord()}

    save_records(path, records)

    assert load_records(path) == records
    # Only the canonical file is left behind.
    assert os.listdir(tmp_path / "state") == ["state.json"]


def test_missing_or_corrupt_file_loads_empty(tmp_path) -> None:
    assert load_records(str(tmp_path / "nope.json")) == {}

    corrupt = tmp_path / "state.json"
    corrupt.write_text("{not json", encoding="utf-8")
    assert load_records(str(corrupt)) == {}

    corrupt.write_text(json.dumps(["not", "a", "dict"]), encoding="utf-8")
    assert load_records(str(corrupt)) == {}


def test_legacy_and_mistyped_fields_are_coerced(tmp_path) -> None:
    path = tmp_path / "state.json"
    path.write_text(
        json.dumps(
            {
                "users": {
                    "1": {
                        "groups": ["1,1", "1.1", "9.9", 42, "3.2"],
                        "pendingStep": "groups_remove",
                        "watching": True,
                        "lastLoeCheckedAt": "2025-11-03T10:00:00.000Z",
                        "lastLoeWatchedText": "Графік\n\nГрупа 1.1. Електроенергії немає.",
                        "lastLoeError": 17,
                    },
                    "2": {
                        "subgroups": "1.1",
                        "pendingInput": "dancing",
                        "watchEnabled": "yes",
                        "today": [],
                        "tomorrowStatus": "sometimes",
                    },
                    "3": None,
                }
            }
        ),
        encoding="utf-8",
    )

    records = load_records(str(path))

    legacy = records["1"]
    assert legacy.subgroups == ["1.1", "3.2"]
    assert legacy.pending_input is PendingInput.COLLECTING_REMOVALS
    assert legacy.watch_enabled is True
    assert legacy.today.last_checked_at is not None
    assert legacy.today.last_checked_at.year == 2025
    assert legacy.today.last_watched_text == "Графік\n\nГрупа 1.1. Електроенергії немає."
    assert legacy.today.last_error is None
    assert legacy.tomorrow == DayState()

    assert records["2"] == SubscriberRecord()
    assert records["3"] == SubscriberRecord()


def test_store_creates_records_lazily(tmp_path) -> None:
    store = SubscriberStore(str(tmp_path / "state.json"))
    store.load()

    assert store.get("5") is None
    record = store.get_or_create("5")
    assert record.watch_enabled is False
    assert record.subgroups == []
    assert store.get_or_create(5) is record


def test_store_mutate_persists(tmp_path) -> None:
    path = str(tmp_path / "state.json")
    store = SubscriberStore(path)

    store.mutate("7", lambda r: setattr(r, "subgroups", ["2.2"]))

    reloaded = SubscriberStore(path)
    reloaded.load()
    assert reloaded.get("7") is not None
    assert reloaded.get("7").subgroups == ["2.2"]


def test_store_mutate_rolls_back_when_save_fails(tmp_path) -> None:
    store = SubscriberStore(str(tmp_path / "state.json"))
    record = store.get_or_create("7")
    record.today.last_watched_text = "old"

    def apply(r: SubscriberRecord) -> None:
        r.today.last_watched_text = "new"

    with patch("outagebot.store.save_records", side_effect=PersistenceFailure("disk full")):
        with pytest.raises(PersistenceFailure):
            store.mutate("7", apply)
        with pytest.raises(PersistenceFailure):
            store.mutate("8", apply)

    assert record.today.last_watched_text == "old"
    assert store.get("7") is record
    assert store.get("8") is None


def test_save_failure_raises_persistence_failure(tmp_path) -> None:
    with patch("outagebot.state_file.os.replace", side_effect=OSError("read-only")):
        with pytest.raises(PersistenceFailure):
            save_records(str(tmp_path / "state.json"), {"1": SubscriberRecord()})

    assert os.listdir(tmp_path) == []
