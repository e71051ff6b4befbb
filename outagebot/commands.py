"""Chat commands and the per-chat input mode state machine.

A chat is either idle (``pending_input is None``) or collecting a subgroup
list for one of three purposes. Commands with inline arguments skip the
collecting step entirely.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Callable

from outagebot.config import Settings
from outagebot.domain import PendingInput, PersistenceFailure, SubscriberRecord, parse_subgroups
from outagebot.scheduler import describe_interval
from outagebot.serial_queue import SerialQueue
from outagebot.store import SubscriberStore
from outagebot.worker import Watcher

logger = logging.getLogger(__name__)

Reply = Callable[[str, str], Any]

BOT_COMMANDS: list[tuple[str, str]] = [
    ("start", "Get started"),
    ("groups_list", "Show selected subgroups"),
    ("add_group", "Add subgroups"),
    ("remove_group", "Remove subgroups"),
    ("check", "Check now"),
    ("watch", "Turn notifications on"),
    ("stop", "Turn notifications off"),
]

_COMMAND_RE = re.compile(r"^/([A-Za-z0-9_]+)(?:@\w+)?(?:\s+(.*))?$", re.DOTALL)

GREETING = (
    "Hi!\n"
    "I track the hourly power outage schedule for the subgroups you pick "
    "and let you know when it changes."
)


def possible_subgroups_text() -> str:
    return "\n".join(
        [
            "Available subgroups:",
            "1.1, 1.2",
            "2.1, 2.2",
            "3.1, 3.2",
            "4.1, 4.2",
            "5.1, 5.2",
            "6.1, 6.2",
        ]
    )


def invalid_input_text(example: str) -> str:
    return "\n".join(["That doesn't look like a list of subgroups.", "", possible_subgroups_text(), "", example])


def prompt_text(step: PendingInput, current: list[str] | None = None) -> str:
    if step is PendingInput.COLLECTING_INITIAL_SET:
        return "\n".join(
            [
                "Which outage subgroups are you interested in?",
                "You can send one or several subgroups in one message (separated by ;).",
                "Subgroup format: 1.1 or 1,1",
                "",
                possible_subgroups_text(),
                "",
                "Example:",
                "1,1; 3.2; 4,2",
            ]
        )
    if step is PendingInput.COLLECTING_ADDITIONS:
        return "\n".join(
            ["Which subgroups should I add?", "Format: 1.1 or 1,1", "", possible_subgroups_text(), "", "Example: 1,1; 3.2"]
        )
    return "\n".join(
        [
            "Which subgroups should I remove?",
            "",
            "Currently selected: " + ", ".join(current or []),
            "",
            "Example: 1,1; 3.2",
        ]
    )


def apply_subgroups(record: SubscriberRecord, step: PendingInput, subgroups: list[str]) -> list[str]:
    """Apply a parsed subgroup list to the record and return to idle.

    Replace for the initial set, union for additions, difference for
    removals. The stored baselines are dropped so the next check compares
    from scratch.
    """
    if step is PendingInput.COLLECTING_INITIAL_SET:
        record.subgroups = list(subgroups)
        # Setting the initial list turns notifications on.
        record.watch_enabled = True
    elif step is PendingInput.COLLECTING_ADDITIONS:
        record.subgroups = record.subgroups + [sg for sg in subgroups if sg not in record.subgroups]
    elif step is PendingInput.COLLECTING_REMOVALS:
        record.subgroups = [sg for sg in record.subgroups if sg not in subgroups]
    else:  # pragma: no cover - exhaustive over PendingInput
        raise ValueError(f"Unknown input step: {step!r}")

    record.pending_input = None
    record.reset_baselines()
    return list(record.subgroups)


class CommandHandler:
    def __init__(
        self,
        settings: Settings,
        store: SubscriberStore,
        queue: SerialQueue,
        watcher: Watcher,
        reply: Reply,
    ) -> None:
        self.settings = settings
        self.store = store
        self.queue = queue
        self.watcher = watcher
        self.reply = reply

    def handle(self, chat_id: str, text: str) -> None:
        chat_id = str(chat_id)
        msg = (text or "").strip()
        if not msg:
            return
        try:
            if msg.startswith("/"):
                self._handle_command(chat_id, msg)
            else:
                self._handle_free_text(chat_id, msg)
        except PersistenceFailure:
            logger.warning("Could not save state for chat_id=%s", chat_id, exc_info=True)
            self.reply(chat_id, "❌ Could not save your settings. Please try again later.")

    # Serialized helpers

    def _mutate(self, chat_id: str, fn: Callable[[SubscriberRecord], Any]) -> Any:
        return self.queue.call(self.store.mutate, chat_id, fn)

    def _read(self, chat_id: str, fn: Callable[[SubscriberRecord], Any]) -> Any:
        return self.queue.call(lambda: fn(self.store.get_or_create(chat_id)))

    def _set_pending(self, chat_id: str, step: PendingInput) -> list[str]:
        def apply(r: SubscriberRecord) -> list[str]:
            r.pending_input = step
            return list(r.subgroups)

        return self._mutate(chat_id, apply)

    def _forced_check(self, chat_id: str) -> None:
        self.reply(chat_id, "Checking…")
        self.queue.submit(self.watcher.check_chat, chat_id, force=True)

    # Commands

    def _handle_command(self, chat_id: str, msg: str) -> None:
        m = _COMMAND_RE.match(msg)
        if not m:
            return
        command = m.group(1).lower()
        tail = (m.group(2) or "").strip()

        if command == "start":
            current = self._set_pending(chat_id, PendingInput.COLLECTING_INITIAL_SET)
            self.reply(chat_id, GREETING)
            self.reply(chat_id, prompt_text(PendingInput.COLLECTING_INITIAL_SET))
            if current:
                self._forced_check(chat_id)
        elif command == "groups":
            self._step_command(chat_id, PendingInput.COLLECTING_INITIAL_SET, tail, "/groups")
        elif command in ("add_group", "groups_add"):
            self._step_command(chat_id, PendingInput.COLLECTING_ADDITIONS, tail, "/add_group")
        elif command in ("remove_group", "groups_remove"):
            self._step_command(chat_id, PendingInput.COLLECTING_REMOVALS, tail, "/remove_group")
        elif command == "groups_list":
            groups = self._read(chat_id, lambda r: list(r.subgroups))
            if groups:
                self.reply(chat_id, f"Your subgroups: {', '.join(groups)}")
            else:
                self.reply(chat_id, "No subgroups selected. Use /groups (e.g. 1.1, 3.2)")
        elif command == "check":
            self._forced_check(chat_id)
        elif command == "watch":
            self._watch(chat_id)
        elif command == "stop":
            self._mutate(chat_id, lambda r: setattr(r, "watch_enabled", False))
            self.reply(chat_id, "Notifications are off. Use /watch to turn them back on.")
        else:
            self.reply(chat_id, "Unknown command. Available: " + ", ".join(f"/{c}" for c, _ in BOT_COMMANDS))

    def _step_command(self, chat_id: str, step: PendingInput, tail: str, command: str) -> None:
        if not tail:
            current = self._set_pending(chat_id, step)
            self.reply(chat_id, prompt_text(step, current))
            return

        subgroups = parse_subgroups(tail)
        if not subgroups:
            self.reply(chat_id, invalid_input_text(f"Example: {command} 1,1; 3.2"))
            return
        self._apply(chat_id, step, subgroups)

    def _watch(self, chat_id: str) -> None:
        self._mutate(chat_id, lambda r: setattr(r, "watch_enabled", True))
        self.reply(
            chat_id,
            "Power outage tracking is on ✅\n"
            f"I will check every {describe_interval(self.settings)} "
            "and let you know when the outage schedule changes.",
        )
        # Immediate baseline: silent on the first snapshot.
        self.queue.submit(self.watcher.check_chat, chat_id)

    # Free text

    def _handle_free_text(self, chat_id: str, msg: str) -> None:
        pending = self._read(chat_id, lambda r: r.pending_input)
        if pending is None:
            return

        subgroups = parse_subgroups(msg)
        if not subgroups:
            current = self._read(chat_id, lambda r: list(r.subgroups))
            self.reply(chat_id, invalid_input_text("Example: 1.1, 3.2"))
            self.reply(chat_id, prompt_text(pending, current))
            return
        self._apply(chat_id, pending, subgroups)

    def _apply(self, chat_id: str, step: PendingInput, subgroups: list[str]) -> None:
        groups = self._mutate(chat_id, lambda r: apply_subgroups(r, step, subgroups))

        if step is PendingInput.COLLECTING_INITIAL_SET:
            self.reply(
                chat_id,
                "\n".join(
                    [
                        "Saved ✅",
                        f"Subgroups: {', '.join(groups)}",
                        "",
                        f"Notifications: ON (checking every {describe_interval(self.settings)})",
                    ]
                ),
            )
        elif step is PendingInput.COLLECTING_ADDITIONS:
            self.reply(chat_id, f"Added ✅\nYou are tracking these subgroups: {', '.join(groups)}")
        elif groups:
            self.reply(chat_id, f"Removed ✅\nSubgroups now: {', '.join(groups)}")
        else:
            self.reply(chat_id, "Removed ✅\nNo subgroups left. Use /groups")
        self._forced_check(chat_id)
