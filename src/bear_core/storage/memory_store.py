"""Thread-safe in-memory note store."""

import bisect
import datetime
import logging
import threading
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from bear_core.exceptions import RecordNotFoundError
from bear_core.models.schema import (
    Record,
    StoreFilter,
    ensure_timezone_aware,
    utc_now,
)

logger = logging.getLogger(__name__)

_MIN_TICK = datetime.timedelta(microseconds=1)
# Distinct filters whose matching ids are remembered between batches
_MAX_CACHED_FILTERS = 32


def matches_store_filter(store_filter: StoreFilter, record: Record) -> bool:
    """Whether a record passes the pushed-down structural filters."""
    if record.trashed and not store_filter.include_trashed:
        return False
    if record.archived and not store_filter.include_archived:
        return False
    if record.encrypted and not store_filter.include_encrypted:
        return False
    if store_filter.created_from and record.created_at < store_filter.created_from:
        return False
    if store_filter.created_to and record.created_at > store_filter.created_to:
        return False
    if store_filter.modified_after and record.modified_at < store_filter.modified_after:
        return False
    if store_filter.modified_before and record.modified_at > store_filter.modified_before:
        return False
    return True


class InMemoryNoteStore:
    """A dictionary-backed store for tests, fixtures and embedding.

    Records are returned in ascending id order. Every mutation stamps a
    modification time strictly later than the previous one for that record,
    even when the clock has not advanced.

    Ids are kept sorted as records are added, and the ids passing each
    recently used filter are remembered until the next change, so paging
    through a scan does not re-sort or re-filter the whole store.
    """

    def __init__(
        self,
        records: Optional[Iterable[Record]] = None,
        clock: Callable[[], datetime.datetime] = utc_now,
        apply_filters: bool = True,
    ):
        """Initialize the store.

        Args:
            records: Initial records.
            clock: Source of modification timestamps.
            apply_filters: Push structural filters down into fetch_batch.
        """
        self._records: Dict[int, Record] = {}
        self._ids: List[int] = []
        self._filtered: Dict[StoreFilter, List[int]] = {}
        self._lock = threading.Lock()
        self.clock = clock
        self.apply_filters = apply_filters
        for record in records or ():
            self.add(record)

    def add(self, record: Record) -> Record:
        """Insert or replace a record."""
        with self._lock:
            if record.id not in self._records:
                bisect.insort(self._ids, record.id)
            self._records[record.id] = record
            self._filtered.clear()
        return record

    def get(self, record_id: int) -> Record:
        """Return a record by id."""
        with self._lock:
            record = self._records.get(record_id)
        if record is None:
            raise RecordNotFoundError(record_id)
        return record

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def fetch_batch(
        self, store_filter: StoreFilter, offset: int, limit: int
    ) -> Sequence[Record]:
        with self._lock:
            ids = self._ids
            if self.apply_filters:
                ids = self._matching_ids(store_filter)
            return [self._records[i] for i in ids[offset:offset + limit]]

    def _matching_ids(self, store_filter: StoreFilter) -> List[int]:
        """Sorted ids passing a filter; caller holds the lock."""
        ids = self._filtered.get(store_filter)
        if ids is None:
            if len(self._filtered) >= _MAX_CACHED_FILTERS:
                self._filtered.clear()
            ids = [
                i for i in self._ids
                if matches_store_filter(store_filter, self._records[i])
            ]
            self._filtered[store_filter] = ids
        return ids

    def get_modification_timestamp(self, record_id: int) -> datetime.datetime:
        return self.get(record_id).modified_at

    def apply_mutation(
        self, record_id: int, changes: Dict[str, Any]
    ) -> datetime.datetime:
        with self._lock:
            current = self._records.get(record_id)
            if current is None:
                raise RecordNotFoundError(record_id)

            modified_at = ensure_timezone_aware(self.clock())
            if modified_at <= current.modified_at:
                modified_at = current.modified_at + _MIN_TICK

            update: Dict[str, Any] = dict(changes)
            if "tags" in update:
                update["tags"] = tuple(update["tags"])
            update["modified_at"] = modified_at
            # model_copy skips validation; rebuild to keep timestamps normalized
            updated = Record(**{**current.model_dump(), **update})
            self._records[record_id] = updated
            self._filtered.clear()

        logger.debug(f"Applied mutation to record {record_id}: {sorted(changes)}")
        return updated.modified_at

    def records(self) -> List[Record]:
        """Snapshot of all records in id order."""
        with self._lock:
            return [self._records[i] for i in self._ids]
