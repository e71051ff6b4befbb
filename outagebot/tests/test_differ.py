from __future__ import annotations

from datetime import datetime, timedelta

from outagebot.differ import Reason, decide_today, decide_tomorrow, render_watched_text
from outagebot.domain import TomorrowStatus
from outagebot.schedule import normalize_schedule

NOW = datetime(2026, 10, 17, 12, 0).astimezone()

TODAY_RAW = "\n".join(
    [
        "Graphic as of 12:00",
        "Info for 17.10",
        "Subgroup 3.2. No power 10:00–12:00.",
        "Subgroup 1.1. No power 05:30–09:00.",
        "Subgroup 2.1. No power 13:00–15:00.",
    ]
)


def _today(raw: str = TODAY_RAW, **kwargs):
    params = dict(last_watched_text=None, last_notified_at=None, force_check=False, now=NOW)
    params.update(kwargs)
    return decide_today(["1.1", "3.2"], normalize_schedule(raw), **params)


def test_render_follows_subscriber_order_and_uses_placeholder() -> None:
    snapshot = normalize_schedule(TODAY_RAW)

    assert render_watched_text(["1.1", "3.2"], snapshot) == "\n".join(
        [
            "Graphic as of 12:00",
            "Info for 17.10",
            "",
            "Subgroup 1.1. No power 05:30–09:00.",
            "Subgroup 3.2. No power 10:00–12:00.",
        ]
    )
    assert render_watched_text(["6.2"], snapshot).endswith("Subgroup 6.2. (not found in this update)")
    assert render_watched_text(["1.1", "3.2"], snapshot) == render_watched_text(["1.1", "3.2"], snapshot)


def test_first_observation_is_silent_unless_forced() -> None:
    verdict = _today()
    assert verdict.reason is Reason.BASELINE
    assert not verdict.notify
    assert verdict.watched_text is not None

    forced = _today(force_check=True)
    assert forced.notify
    assert forced.reason is Reason.FORCED
    assert "Subgroup 1.1. No power 05:30–09:00." in (forced.message or "")


def test_identical_lines_on_same_day_do_not_notify() -> None:
    baseline = _today().watched_text
    verdict = _today(last_watched_text=baseline, last_notified_at=NOW - timedelta(minutes=30))

    assert verdict.reason is Reason.UNCHANGED
    assert not verdict.notify
    assert verdict.watched_text is None


def test_header_only_change_does_not_notify_today() -> None:
    baseline = _today().watched_text
    verdict = _today(TODAY_RAW.replace("as of 12:00", "as of 13:00"), last_watched_text=baseline)
    assert not verdict.notify


def test_change_in_untracked_subgroup_does_not_notify() -> None:
    baseline = _today().watched_text
    changed = TODAY_RAW.replace("13:00–15:00", "13:00–18:00")
    verdict = _today(changed, last_watched_text=baseline)
    assert not verdict.notify


def test_change_in_tracked_subgroup_notifies() -> None:
    baseline = _today().watched_text
    changed = TODAY_RAW.replace("05:30–09:00.", "05:30–09:00, 16:00–19:30.")
    verdict = _today(changed, last_watched_text=baseline)

    assert verdict.notify
    assert verdict.reason is Reason.CHANGED
    assert "Today's outage schedule has changed" in (verdict.message or "")
    assert "Subgroup 1.1. No power 05:30–09:00, 16:00–19:30." in (verdict.message or "")


def test_day_rollover_reannounces_unchanged_schedule() -> None:
    baseline = _today().watched_text
    verdict = _today(last_watched_text=baseline, last_notified_at=NOW - timedelta(days=1))

    assert verdict.notify
    assert verdict.reason is Reason.ROLLOVER
    assert "Today's outage schedule is here" in (verdict.message or "")


def test_forced_check_reports_unchanged_schedule() -> None:
    baseline = _today().watched_text
    verdict = _today(last_watched_text=baseline, last_notified_at=NOW, force_check=True, now=NOW)
    assert verdict.notify
    assert verdict.reason is Reason.FORCED


def test_message_carries_image_url() -> None:
    verdict = _today(force_check=True, image_url="https://api.loe.lviv.ua/media/today.png")
    assert (verdict.message or "").endswith("Outage schedule image: https://api.loe.lviv.ua/media/today.png")


TOMORROW_RAW = "\n".join(
    [
        "Graphic for 18.10",
        "Info as of 20:00",
        "Subgroup 1.1. No power 08:00–10:00.",
    ]
)


def _tomorrow(raw: str | None = TOMORROW_RAW, **kwargs):
    params = dict(last_watched_text=None, tomorrow_status=TomorrowStatus.PRESENT, force_check=False)
    params.update(kwargs)
    snapshot = normalize_schedule(raw) if raw is not None else None
    return decide_tomorrow(["1.1"], snapshot, **params)


def test_tomorrow_absent_marks_missing_silently() -> None:
    verdict = _tomorrow(None, tomorrow_status=TomorrowStatus.PRESENT)
    assert not verdict.notify
    assert verdict.tomorrow_status is TomorrowStatus.MISSING
    assert verdict.watched_text is None


def test_tomorrow_without_tracked_subgroups_stores_baseline_only() -> None:
    raw = "Graphic for 18.10\nInfo\nSubgroup 5.1. No power 08:00–10:00."
    verdict = _tomorrow(raw, tomorrow_status=TomorrowStatus.MISSING)

    assert not verdict.notify
    assert verdict.reason is Reason.NOTHING_TRACKED
    assert verdict.tomorrow_status is None
    assert verdict.watched_text is not None


def test_tomorrow_first_appearance_notifies() -> None:
    verdict = _tomorrow(tomorrow_status=TomorrowStatus.MISSING)

    assert verdict.notify
    assert verdict.reason is Reason.APPEARED
    assert verdict.tomorrow_status is TomorrowStatus.PRESENT
    assert "Tomorrow's outage schedule has appeared" in (verdict.message or "")


def test_tomorrow_change_requires_both_lines_and_header() -> None:
    baseline = _tomorrow(tomorrow_status=TomorrowStatus.MISSING).watched_text

    lines_only = TOMORROW_RAW.replace("08:00–10:00", "08:00–12:00")
    assert not _tomorrow(lines_only, last_watched_text=baseline).notify

    header_only = TOMORROW_RAW.replace("as of 20:00", "as of 21:00")
    assert not _tomorrow(header_only, last_watched_text=baseline).notify

    both = lines_only.replace("as of 20:00", "as of 21:00")
    verdict = _tomorrow(both, last_watched_text=baseline)
    assert verdict.notify
    assert verdict.reason is Reason.CHANGED
    assert "Tomorrow's outage schedule has changed" in (verdict.message or "")


def test_tomorrow_unchanged_stays_silent_and_forced_reports() -> None:
    baseline = _tomorrow(tomorrow_status=TomorrowStatus.MISSING).watched_text

    verdict = _tomorrow(last_watched_text=baseline)
    assert not verdict.notify
    assert verdict.reason is Reason.UNCHANGED

    forced = _tomorrow(last_watched_text=baseline, force_check=True)
    assert forced.notify
    assert forced.reason is Reason.FORCED


def test_tomorrow_reset_baseline_while_present_is_silent() -> None:
    verdict = _tomorrow(last_watched_text=None, tomorrow_status=TomorrowStatus.PRESENT)
    assert not verdict.notify
    assert verdict.reason is Reason.BASELINE
