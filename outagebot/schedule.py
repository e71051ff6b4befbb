from __future__ import annotations

import re
from dataclasses import dataclass, field

from bs4 import BeautifulSoup

from outagebot.domain import normalize_subgroup_id

HEADER_LINES = 2

# "Група 1.1. Електроенергії немає з 05:30 до 09:00." upstream, "Subgroup 1.1. ..." in English feeds.
SUBGROUP_LINE_RE = re.compile(r"^(?:subgroup|група)\s+(\d+[.,]\d+)\.", re.IGNORECASE)

PLACEHOLDER_SUFFIX = "(not found in this update)"

_BLOCK_TAGS = ["p", "div", "li", "tr", "h1", "h2", "h3", "h4", "h5", "h6"]


@dataclass(frozen=True)
class ScheduleSnapshot:
    """Normalized schedule of one day-context."""

    header_lines: tuple[str, ...] = ()
    lines_by_subgroup: dict[str, str] = field(default_factory=dict)

    def has_any(self, subgroups: list[str]) -> bool:
        return any(sg in self.lines_by_subgroup for sg in subgroups)


def normalize_multiline_text(raw: str) -> str:
    lines = [line.strip() for line in raw.replace("\r\n", "\n").split("\n")]
    return "\n".join(line for line in lines if line)


def text_from_html(raw_html: str) -> str:
    if not raw_html:
        return ""
    soup = BeautifulSoup(raw_html, "html.parser")
    # Line breaks only at block boundaries: "<p><b>Група 1.1.</b> ...</p>" must stay one line.
    for br in soup.find_all("br"):
        br.replace_with("\n")
    for tag in soup.find_all(_BLOCK_TAGS):
        tag.append("\n")
    return normalize_multiline_text(soup.get_text())


def subgroup_of_line(line: str) -> str | None:
    m = SUBGROUP_LINE_RE.match(line)
    if not m:
        return None
    return normalize_subgroup_id(m.group(1))


def is_placeholder_line(line: str) -> bool:
    return line.endswith(PLACEHOLDER_SUFFIX)


def placeholder_line(subgroup: str) -> str:
    return f"Subgroup {subgroup}. {PLACEHOLDER_SUFFIX}"


def normalize_schedule(raw_text: str) -> ScheduleSnapshot:
    lines = [line for line in normalize_multiline_text(raw_text).split("\n") if line]

    # Header: leading publication lines, at most two, never a subgroup line.
    header: list[str] = []
    for line in lines[:HEADER_LINES]:
        if subgroup_of_line(line) is not None:
            break
        header.append(line)

    mapping: dict[str, str] = {}
    for line in lines[len(header):]:
        sg = subgroup_of_line(line)
        if sg is None:
            continue
        # Last occurrence wins.
        mapping[sg] = line
    return ScheduleSnapshot(header_lines=tuple(header), lines_by_subgroup=mapping)


def extract_subgroup_lines(text: str | None) -> str:
    """Only the real subgroup lines of a watched text, header and placeholders dropped."""
    if not text:
        return ""
    return "\n".join(
        line
        for line in normalize_multiline_text(text).split("\n")
        if subgroup_of_line(line) is not None and not is_placeholder_line(line)
    )


def extract_header_lines(text: str | None) -> tuple[str, ...]:
    # Watched text is "header\n\nsubgroup lines"; without a header there is no blank separator.
    if not text or "\n\n" not in text:
        return ()
    head = text.split("\n\n", 1)[0]
    return tuple(line.strip() for line in head.split("\n") if line.strip())
