"""Optimistic concurrency control for record mutations."""

import datetime
import logging
import threading
import weakref
from typing import Callable, Union

from bear_core.models.schema import (
    ConflictResult,
    MutationApplied,
    MutationIntent,
    ensure_timezone_aware,
)

logger = logging.getLogger(__name__)

MutationResult = Union[MutationApplied, ConflictResult]


class ConcurrencyGuard:
    """Serializes check-then-apply per record.

    Each record id gets its own re-entrant lock, held only while the current
    modification timestamp is read, compared and the write applied. Writers
    to different records never wait on each other.
    """

    def __init__(self):
        # Locks are garbage collected once no caller holds them
        self._record_locks: weakref.WeakValueDictionary[int, threading.RLock] = (
            weakref.WeakValueDictionary()
        )
        self._locks_lock = threading.Lock()

    def _get_record_lock(self, record_id: int) -> threading.RLock:
        """Get or create the lock for a specific record.

        Args:
            record_id: The ID of the record to lock.

        Returns:
            A reentrant lock for the specified record.
        """
        with self._locks_lock:
            lock = self._record_locks.get(record_id)
            if lock is None:
                lock = threading.RLock()
                self._record_locks[record_id] = lock
            return lock

    def check_and_apply(
        self,
        intent: MutationIntent,
        read_current: Callable[[], datetime.datetime],
        apply_fn: Callable[[], datetime.datetime],
    ) -> MutationResult:
        """Apply a mutation only if the record is unchanged since the caller read it.

        Without an expected timestamp the write is applied unconditionally
        (last write wins).

        Args:
            intent: The mutation, carrying the expected modification timestamp.
            read_current: Returns the store's current modification timestamp.
            apply_fn: Performs the write and returns the new timestamp.

        Returns:
            MutationApplied on success, ConflictResult if the record changed.
            apply_fn is never called when a conflict is returned.
        """
        lock = self._get_record_lock(intent.record_id)
        with lock:
            if intent.expected_modified_at is not None:
                expected = ensure_timezone_aware(intent.expected_modified_at)
                actual = ensure_timezone_aware(read_current())
                if actual != expected:
                    logger.info(
                        f"Conflict on record {intent.record_id}: expected "
                        f"{expected.isoformat()}, found {actual.isoformat()}"
                    )
                    return ConflictResult(
                        status="conflict",
                        record_id=intent.record_id,
                        expected_modified_at=expected,
                        actual_modified_at=actual,
                        message=(
                            f"Record {intent.record_id} was modified by another "
                            f"writer. Expected {expected.isoformat()}, "
                            f"found {actual.isoformat()}"
                        ),
                    )

            modified_at = ensure_timezone_aware(apply_fn())

        return MutationApplied(
            status="applied",
            record_id=intent.record_id,
            modified_at=modified_at,
        )
