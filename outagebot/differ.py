"""Change detection for one subscriber and one day-context.

The functions here are pure: they look at the subscriber's stored baseline and
the current snapshot and return a Verdict. Applying the verdict to the record,
persisting it and sending the message is the worker's job.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from outagebot.domain import TomorrowStatus
from outagebot.schedule import (
    ScheduleSnapshot,
    extract_header_lines,
    extract_subgroup_lines,
    placeholder_line,
)

EMPTY_TEXT = "(could not read the schedule text)"


class Reason(str, Enum):
    BASELINE = "baseline"
    UNCHANGED = "unchanged"
    FORCED = "forced"
    ROLLOVER = "rollover"
    CHANGED = "changed"
    APPEARED = "appeared"
    TOMORROW_MISSING = "tomorrow-missing"
    NOTHING_TRACKED = "nothing-tracked"


TITLES = {
    ("today", Reason.FORCED): "🔥 Schedule checked!",
    ("today", Reason.ROLLOVER): "📅 Today's outage schedule is here!",
    ("today", Reason.CHANGED): "🔥 Today's outage schedule has changed!",
    ("tomorrow", Reason.FORCED): "🔎 Tomorrow's schedule checked!",
    ("tomorrow", Reason.APPEARED): "📅 Tomorrow's outage schedule has appeared!",
    ("tomorrow", Reason.CHANGED): "🔥 Tomorrow's outage schedule has changed!",
}


@dataclass(frozen=True)
class Verdict:
    reason: Reason
    notify: bool
    # New baseline to store; None keeps the old one.
    watched_text: str | None = None
    message: str | None = None
    tomorrow_status: TomorrowStatus | None = None


def render_watched_text(subgroups: list[str], snapshot: ScheduleSnapshot) -> str:
    """Header, blank line, then one line per subgroup in the subscriber's order."""
    selected = [snapshot.lines_by_subgroup.get(sg) or placeholder_line(sg) for sg in subgroups]
    return "\n".join([*snapshot.header_lines, "", *selected]).strip()


def format_message(title: str, watched_text: str, image_url: str | None = None) -> str:
    parts = [title, "", watched_text or EMPTY_TEXT]
    if image_url:
        parts += ["", f"Outage schedule image: {image_url}"]
    return "\n".join(parts)


def _is_rollover(last_notified_at: datetime | None, now: datetime) -> bool:
    if last_notified_at is None:
        return False
    # Calendar days in the process' local time zone.
    return last_notified_at.astimezone().date() != now.astimezone().date()


def decide_today(
    subgroups: list[str],
    snapshot: ScheduleSnapshot,
    *,
    last_watched_text: str | None,
    last_notified_at: datetime | None,
    force_check: bool,
    now: datetime,
    image_url: str | None = None,
) -> Verdict:
    watched = render_watched_text(subgroups, snapshot)
    previous = extract_subgroup_lines(last_watched_text)
    current = extract_subgroup_lines(watched)

    if not last_watched_text:
        if force_check:
            return Verdict(
                Reason.FORCED,
                notify=True,
                watched_text=watched,
                message=format_message(TITLES[("today", Reason.FORCED)], watched, image_url),
            )
        return Verdict(Reason.BASELINE, notify=False, watched_text=watched)

    if force_check:
        reason = Reason.FORCED
    elif _is_rollover(last_notified_at, now):
        reason = Reason.ROLLOVER
    elif previous != current:
        reason = Reason.CHANGED
    else:
        return Verdict(Reason.UNCHANGED, notify=False)

    return Verdict(
        reason,
        notify=True,
        watched_text=watched,
        message=format_message(TITLES[("today", reason)], watched, image_url),
    )


def decide_tomorrow(
    subgroups: list[str],
    snapshot: ScheduleSnapshot | None,
    *,
    last_watched_text: str | None,
    tomorrow_status: TomorrowStatus,
    force_check: bool,
    image_url: str | None = None,
) -> Verdict:
    if snapshot is None:
        return Verdict(Reason.TOMORROW_MISSING, notify=False, tomorrow_status=TomorrowStatus.MISSING)

    watched = render_watched_text(subgroups, snapshot)

    if not snapshot.has_any(subgroups):
        # Keep a baseline for later comparison, but never announce an empty schedule.
        return Verdict(Reason.NOTHING_TRACKED, notify=False, watched_text=watched)

    if tomorrow_status is TomorrowStatus.MISSING:
        return Verdict(
            Reason.APPEARED,
            notify=True,
            watched_text=watched,
            message=format_message(TITLES[("tomorrow", Reason.APPEARED)], watched, image_url),
            tomorrow_status=TomorrowStatus.PRESENT,
        )

    if last_watched_text:
        groups_changed = extract_subgroup_lines(last_watched_text) != extract_subgroup_lines(watched)
        header_changed = extract_header_lines(last_watched_text) != snapshot.header_lines
        # Both must differ: the header carries the publication stamp.
        if groups_changed and header_changed:
            return Verdict(
                Reason.CHANGED,
                notify=True,
                watched_text=watched,
                message=format_message(TITLES[("tomorrow", Reason.CHANGED)], watched, image_url),
            )

    if force_check:
        return Verdict(
            Reason.FORCED,
            notify=True,
            watched_text=watched,
            message=format_message(TITLES[("tomorrow", Reason.FORCED)], watched, image_url),
        )
    if not last_watched_text:
        return Verdict(Reason.BASELINE, notify=False, watched_text=watched)
    return Verdict(Reason.UNCHANGED, notify=False)
