from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

POSSIBLE_SUBGROUPS: tuple[str, ...] = (
    "1.1",
    "1.2",
    "2.1",
    "2.2",
    "3.1",
    "3.2",
    "4.1",
    "4.2",
    "5.1",
    "5.2",
    "6.1",
    "6.2",
)

_SUBGROUP_ID_RE = re.compile(r"^(\d+)[.,](\d+)$")
_SUBGROUP_TOKEN_RE = re.compile(r"(\d+)[.,](\d+)")


def normalize_subgroup_id(raw: str) -> str | None:
    """Canonical dotted form of a subgroup id: ``"01,1"`` -> ``"1.1"``.

    Returns None for anything that is not two numbers joined by ``.`` or ``,``.
    The result is not checked against POSSIBLE_SUBGROUPS.
    """
    m = _SUBGROUP_ID_RE.match(raw.strip())
    if not m:
        return None
    return f"{int(m.group(1))}.{int(m.group(2))}"


def parse_subgroups(raw: str) -> list[str]:
    # Free-form user input: "1,1; 3.2", "1.1 and 4,2", ...
    out: list[str] = []
    for m in _SUBGROUP_TOKEN_RE.finditer(raw):
        sg = normalize_subgroup_id(f"{m.group(1)}.{m.group(2)}")
        if sg and sg not in out:
            out.append(sg)
    return [sg for sg in out if sg in POSSIBLE_SUBGROUPS]


class PendingInput(str, Enum):
    """What the next free-text message of a chat is interpreted as."""

    COLLECTING_INITIAL_SET = "collecting-initial-set"
    COLLECTING_ADDITIONS = "collecting-additions"
    COLLECTING_REMOVALS = "collecting-removals"


class TomorrowStatus(str, Enum):
    MISSING = "missing"
    PRESENT = "present"


@dataclass
class DayState:
    last_checked_at: datetime | None = None
    last_notified_at: datetime | None = None
    last_watched_text: str | None = None
    last_error: str | None = None


@dataclass
class SubscriberRecord:
    subgroups: list[str] = field(default_factory=list)
    pending_input: PendingInput | None = None
    watch_enabled: bool = False
    today: DayState = field(default_factory=DayState)
    tomorrow: DayState = field(default_factory=DayState)
    tomorrow_status: TomorrowStatus = TomorrowStatus.MISSING

    def reset_baselines(self) -> None:
        # A changed subgroup set makes the stored renderings meaningless.
        for state in (self.today, self.tomorrow):
            state.last_watched_text = None
            state.last_error = None


class OutageBotError(RuntimeError):
    """Base class for errors recorded on a subscriber's check."""


class FetchFailure(OutageBotError):
    """Upstream answered with a non-2xx status or could not be reached."""


class MalformedUpstreamData(OutageBotError):
    """Upstream answered, but without the menus/items we expect."""


class NoSubgroupsConfigured(OutageBotError):
    pass


class PersistenceFailure(OutageBotError):
    """Writing or replacing the state file failed."""
