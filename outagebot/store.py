from __future__ import annotations

import copy
import dataclasses
import logging
from typing import Callable, Iterator, TypeVar

from outagebot.domain import PersistenceFailure, SubscriberRecord
from outagebot.state_file import load_records, save_records

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SubscriberStore:
    """All subscriber records of one deployment, backed by a single JSON file.

    The store does no locking of its own: every call is expected to run inside
    a unit of the SerialQueue.
    """

    def __init__(self, path: str) -> None:
        self.path = path
        self._records: dict[str, SubscriberRecord] = {}

    def load(self) -> None:
        self._records = load_records(self.path)
        logger.info("Loaded %d subscriber(s) from %s", len(self._records), self.path)

    def save(self) -> None:
        save_records(self.path, self._records)

    def get(self, chat_id: str) -> SubscriberRecord | None:
        return self._records.get(str(chat_id))

    def get_or_create(self, chat_id: str) -> SubscriberRecord:
        key = str(chat_id)
        record = self._records.get(key)
        if record is None:
            record = SubscriberRecord()
            self._records[key] = record
        return record

    def records(self) -> Iterator[tuple[str, SubscriberRecord]]:
        # Snapshot of the keys: a unit may create records while we iterate.
        for chat_id in list(self._records):
            yield chat_id, self._records[chat_id]

    def mutate(self, chat_id: str, fn: Callable[[SubscriberRecord], T]) -> T:
        """Apply ``fn`` to the chat's record and persist the store.

        If the write fails the record is put back the way it was and
        PersistenceFailure propagates, so nothing unsaved is kept in memory.
        """
        key = str(chat_id)
        existed = key in self._records
        record = self.get_or_create(key)
        before = copy.deepcopy(record)

        result = fn(record)
        try:
            self.save()
        except PersistenceFailure:
            if existed:
                # Restore in place: callers may still hold this record.
                for f in dataclasses.fields(record):
                    setattr(record, f.name, getattr(before, f.name))
            else:
                del self._records[key]
            raise
        return result
