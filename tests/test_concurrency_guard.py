"""Tests for optimistic concurrency control of mutations."""

import datetime
import threading
import time
from datetime import timedelta, timezone

from bear_core.models.schema import (
    ConflictResult,
    MutationApplied,
    MutationIntent,
    NoteChanges,
)
from bear_core.services.concurrency_guard import ConcurrencyGuard


def apply_with(guard, store, intent):
    changes = intent.changes.as_update()
    return guard.check_and_apply(
        intent,
        read_current=lambda: store.get_modification_timestamp(intent.record_id),
        apply_fn=lambda: store.apply_mutation(intent.record_id, changes),
    )


class TestCheckAndApply:
    """Tests for single-caller behaviour."""

    def test_matching_timestamp_applies(self, memory_store):
        guard = ConcurrencyGuard()
        current = memory_store.get_modification_timestamp(1)
        intent = MutationIntent(1, NoteChanges(title="Renamed"), current)

        result = apply_with(guard, memory_store, intent)

        assert isinstance(result, MutationApplied)
        assert result.status == "applied"
        assert result.modified_at > current
        assert memory_store.get(1).title == "Renamed"

    def test_stale_timestamp_conflicts_without_writing(self, memory_store):
        guard = ConcurrencyGuard()
        stale = memory_store.get_modification_timestamp(1) - timedelta(seconds=1)
        before = memory_store.get(1)
        intent = MutationIntent(1, NoteChanges(title="Lost update"), stale)

        result = apply_with(guard, memory_store, intent)

        assert isinstance(result, ConflictResult)
        assert result.status == "conflict"
        assert result.expected_modified_at == stale
        assert result.actual_modified_at == before.modified_at
        assert memory_store.get(1) == before

    def test_no_expected_timestamp_is_last_write_wins(self, memory_store):
        guard = ConcurrencyGuard()
        result = apply_with(guard, memory_store, MutationIntent(1, NoteChanges(pinned=True)))
        assert isinstance(result, MutationApplied)
        assert memory_store.get(1).pinned is True

    def test_naive_expected_timestamp_treated_as_utc(self, memory_store):
        guard = ConcurrencyGuard()
        current = memory_store.get_modification_timestamp(2)
        naive = current.replace(tzinfo=None)
        result = apply_with(guard, memory_store, MutationIntent(2, NoteChanges(body="x"), naive))
        assert isinstance(result, MutationApplied)

    def test_equivalent_timezones_compare_equal(self, memory_store):
        guard = ConcurrencyGuard()
        current = memory_store.get_modification_timestamp(2)
        shifted = current.astimezone(timezone(timedelta(hours=5)))
        result = apply_with(guard, memory_store, MutationIntent(2, NoteChanges(body="x"), shifted))
        assert isinstance(result, MutationApplied)

    def test_sub_second_difference_conflicts(self, memory_store):
        guard = ConcurrencyGuard()
        current = memory_store.get_modification_timestamp(2)
        close = current + timedelta(milliseconds=1)
        result = apply_with(guard, memory_store, MutationIntent(2, NoteChanges(body="x"), close))
        assert isinstance(result, ConflictResult)

    def test_conflict_to_dict(self, memory_store):
        guard = ConcurrencyGuard()
        stale = datetime.datetime(2000, 1, 1, tzinfo=timezone.utc)
        result = apply_with(guard, memory_store, MutationIntent(1, NoteChanges(title="x"), stale))
        data = result.to_dict()
        assert data["status"] == "conflict"
        assert data["record_id"] == 1
        assert data["expected_modified_at"].startswith("2000-01-01")


class TestConcurrentWriters:
    """Tests for racing writers on the same and different records."""

    def test_only_one_of_racing_writers_succeeds(self, memory_store):
        guard = ConcurrencyGuard()
        expected = memory_store.get_modification_timestamp(3)
        barrier = threading.Barrier(8)
        results = []
        lock = threading.Lock()

        def writer(index: int):
            intent = MutationIntent(3, NoteChanges(title=f"Writer {index}"), expected)
            barrier.wait()
            result = apply_with(guard, memory_store, intent)
            with lock:
                results.append((index, result))

        threads = [threading.Thread(target=writer, args=(i,)) for i in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        applied = [(i, r) for i, r in results if isinstance(r, MutationApplied)]
        conflicts = [r for _, r in results if isinstance(r, ConflictResult)]
        assert len(applied) == 1
        assert len(conflicts) == 7
        winner, _ = applied[0]
        assert memory_store.get(3).title == f"Writer {winner}"

    def test_different_records_do_not_block(self, memory_store):
        guard = ConcurrencyGuard()
        inside = threading.Event()
        release = threading.Event()
        done = threading.Event()

        def slow_apply():
            inside.set()
            release.wait(timeout=5)
            return memory_store.apply_mutation(1, {"title": "slow"})

        blocker = threading.Thread(
            target=guard.check_and_apply,
            args=(
                MutationIntent(1, NoteChanges(title="slow")),
                lambda: memory_store.get_modification_timestamp(1),
                slow_apply,
            ),
        )
        blocker.start()
        assert inside.wait(timeout=5)

        def other_writer():
            apply_with(guard, memory_store, MutationIntent(2, NoteChanges(title="fast")))
            done.set()

        threading.Thread(target=other_writer).start()
        try:
            assert done.wait(timeout=5)
        finally:
            release.set()
            blocker.join()

    def test_same_thread_can_reenter(self, memory_store):
        guard = ConcurrencyGuard()
        inner_results = []

        def nested_apply():
            inner_results.append(
                apply_with(guard, memory_store, MutationIntent(1, NoteChanges(pinned=True)))
            )
            return memory_store.apply_mutation(1, {"title": "outer"})

        started = time.monotonic()
        result = guard.check_and_apply(
            MutationIntent(1, NoteChanges(title="outer")),
            lambda: memory_store.get_modification_timestamp(1),
            nested_apply,
        )
        assert time.monotonic() - started < 5
        assert isinstance(result, MutationApplied)
        assert isinstance(inner_results[0], MutationApplied)
