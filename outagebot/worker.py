from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable

from outagebot.differ import Verdict, decide_today, decide_tomorrow
from outagebot.domain import NoSubgroupsConfigured, PersistenceFailure, SubscriberRecord
from outagebot.loe_client import UpstreamSchedules
from outagebot.schedule import normalize_schedule
from outagebot.store import SubscriberStore

logger = logging.getLogger(__name__)

NO_SUBGROUPS_MESSAGE = "No subgroups selected. Use /groups and send, for example: 1.1, 3.2"

Fetch = Callable[[], UpstreamSchedules]
Send = Callable[[str, str], Any]


def local_now() -> datetime:
    return datetime.now().astimezone()


class Watcher:
    """Runs the today/tomorrow checks of subscribers against the upstream schedule.

    Every public method must run inside a SerialQueue unit: it reads and
    writes the shared store and sends messages in the same step.
    """

    def __init__(
        self,
        store: SubscriberStore,
        fetch: Fetch,
        send: Send,
        now: Callable[[], datetime] = local_now,
    ) -> None:
        self.store = store
        self.fetch = fetch
        self.send = send
        self.now = now

    def check_chat(
        self,
        chat_id: str,
        *,
        force: bool = False,
        upstream: UpstreamSchedules | None = None,
        fetch_error: Exception | None = None,
    ) -> int:
        """Check one chat; returns the number of notifications sent.

        Errors never escape: they end up in the record's ``last_error`` and,
        for a forced check, in a reply to the user.
        """
        record = self.store.get_or_create(chat_id)
        if not record.watch_enabled and not force:
            return 0

        now = self.now()
        try:
            if not record.subgroups:
                raise NoSubgroupsConfigured(NO_SUBGROUPS_MESSAGE)
            if fetch_error is not None:
                raise fetch_error
            if upstream is None:
                upstream = self.fetch()
            sent = self._check_today(chat_id, record, upstream, force=force, now=now)
            sent += self._check_tomorrow(chat_id, record, upstream, force=force, now=now)
            return sent
        except Exception as e:
            self._record_error(chat_id, e, now=now, force=force)
            return 0

    def check_all(self) -> int:
        """One background pass over every watching chat, sequentially."""
        watching = [chat_id for chat_id, record in self.store.records() if record.watch_enabled]
        if not watching:
            logger.info("No watching chats, skipping upstream fetch")
            return 0

        upstream: UpstreamSchedules | None = None
        fetch_error: Exception | None = None
        try:
            upstream = self.fetch()
        except Exception as e:
            logger.error("Upstream fetch failed (%s: %s)", type(e).__name__, e)
            fetch_error = e

        sent = 0
        for chat_id in watching:
            sent += self.check_chat(chat_id, upstream=upstream, fetch_error=fetch_error)
        logger.info("Checked %d watching chat(s), sent %d notification(s)", len(watching), sent)
        return sent

    def _deliver(self, chat_id: str, verdict: Verdict) -> int:
        if not verdict.notify or not verdict.message:
            return 0
        self.send(chat_id, verdict.message)
        logger.info("Notified chat_id=%s (%s)", chat_id, verdict.reason.value)
        return 1

    def _check_today(
        self,
        chat_id: str,
        record: SubscriberRecord,
        upstream: UpstreamSchedules,
        *,
        force: bool,
        now: datetime,
    ) -> int:
        verdict = decide_today(
            record.subgroups,
            normalize_schedule(upstream.today.text),
            last_watched_text=record.today.last_watched_text,
            last_notified_at=record.today.last_notified_at,
            force_check=force,
            now=now,
            image_url=upstream.today.image_url,
        )

        def apply(r: SubscriberRecord) -> None:
            r.today.last_checked_at = now
            r.today.last_error = None
            if verdict.watched_text is not None:
                r.today.last_watched_text = verdict.watched_text
            if verdict.notify:
                r.today.last_notified_at = now

        # Persist first: a notification is only sent for a baseline that is on disk.
        self.store.mutate(chat_id, apply)
        return self._deliver(chat_id, verdict)

    def _check_tomorrow(
        self,
        chat_id: str,
        record: SubscriberRecord,
        upstream: UpstreamSchedules,
        *,
        force: bool,
        now: datetime,
    ) -> int:
        tomorrow = upstream.tomorrow
        verdict = decide_tomorrow(
            record.subgroups,
            normalize_schedule(tomorrow.text) if tomorrow is not None else None,
            last_watched_text=record.tomorrow.last_watched_text,
            tomorrow_status=record.tomorrow_status,
            force_check=force,
            image_url=tomorrow.image_url if tomorrow is not None else None,
        )

        def apply(r: SubscriberRecord) -> None:
            r.tomorrow.last_checked_at = now
            r.tomorrow.last_error = None
            if verdict.tomorrow_status is not None:
                r.tomorrow_status = verdict.tomorrow_status
            if verdict.watched_text is not None:
                r.tomorrow.last_watched_text = verdict.watched_text
            if verdict.notify:
                r.tomorrow.last_notified_at = now

        self.store.mutate(chat_id, apply)
        return self._deliver(chat_id, verdict)

    def _record_error(self, chat_id: str, error: Exception, *, now: datetime, force: bool) -> None:
        message = str(error).strip() or type(error).__name__
        logger.error("Check failed for chat_id=%s (%s: %s)", chat_id, type(error).__name__, message)

        record = self.store.get_or_create(chat_id)
        for state in (record.today, record.tomorrow):
            state.last_checked_at = now
            state.last_error = message

        try:
            self.store.save()
        except PersistenceFailure:
            # Memory stays authoritative until the next successful write.
            logger.warning("Could not persist error state for chat_id=%s", chat_id, exc_info=True)

        if force:
            self.send(chat_id, message if isinstance(error, NoSubgroupsConfigured) else f"❌ Error: {message}")
