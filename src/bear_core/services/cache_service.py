"""Bounded, time-expiring cache of ranked search results."""

import itertools
import logging
import threading
import time
import zlib
from collections import OrderedDict
from dataclasses import asdict, dataclass
from typing import (
    Callable,
    Dict,
    FrozenSet,
    Iterable,
    List,
    Optional,
    Sequence,
)

from bear_core.config import CacheConfig
from bear_core.models.schema import CacheEntry, ScoredResult

logger = logging.getLogger(__name__)

RecordIdPredicate = Callable[[FrozenSet[int]], bool]


@dataclass
class CacheStats:
    """Counters describing cache behaviour since creation."""

    hits: int = 0
    misses: int = 0
    sets: int = 0
    evictions: int = 0
    expirations: int = 0
    invalidations: int = 0
    stale_puts: int = 0
    size: int = 0
    max_entries: int = 0
    generation: int = 0

    @property
    def hit_rate(self) -> float:
        lookups = self.hits + self.misses
        return self.hits / lookups if lookups else 0.0

    def to_dict(self) -> Dict[str, float]:
        data = asdict(self)
        data["hit_rate"] = round(self.hit_rate, 4)
        return data


class _Shard:
    """One independently locked partition of the cache."""

    __slots__ = ("lock", "entries", "stats")

    def __init__(self):
        self.lock = threading.Lock()
        self.entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self.stats = CacheStats()

    def purge_expired(self, now: float) -> int:
        """Drop expired entries; caller holds the lock."""
        expired = [sig for sig, e in self.entries.items() if e.is_expired(now)]
        for sig in expired:
            del self.entries[sig]
        self.stats.expirations += len(expired)
        return len(expired)


class ResultCache:
    """Maps query signatures to ranked result lists.

    Entries are spread over ``shards`` partitions, each guarded by its own
    lock, so lookups for different signatures rarely contend. The entry
    count is kept cache-wide: only when the whole cache holds more than
    ``max_entries`` are expired entries dropped and, failing that, the least
    recently used entry across all shards evicted. Eviction takes one shard
    lock at a time.

    Every invalidation bumps a generation counter. A search that snapshots
    the generation before scanning and passes it to put() cannot store
    results computed before a concurrent invalidation.
    """

    def __init__(
        self,
        config: Optional[CacheConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the cache.

        Args:
            config: Capacity, TTL and shard count. Defaults to CacheConfig().
            clock: Monotonic seconds source; inject a fake clock in tests.
        """
        self.config = config or CacheConfig()
        self.clock = clock
        self._generation = 0
        self._generation_lock = threading.Lock()
        self._size = 0
        self._size_lock = threading.Lock()
        self._use_counter = itertools.count(1)
        self._shards: List[_Shard] = [_Shard() for _ in range(self.config.shards)]

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    @property
    def generation(self) -> int:
        """Current invalidation generation."""
        with self._generation_lock:
            return self._generation

    def _shard_for(self, signature: str) -> _Shard:
        index = zlib.crc32(signature.encode("utf-8")) % len(self._shards)
        return self._shards[index]

    def _bump_generation(self) -> int:
        with self._generation_lock:
            self._generation += 1
            return self._generation

    def _adjust_size(self, delta: int) -> int:
        with self._size_lock:
            self._size += delta
            return self._size

    def get(self, signature: str) -> Optional[List[ScoredResult]]:
        """Return cached results for a signature if present and unexpired.

        A hit refreshes the entry's recency.
        """
        shard = self._shard_for(signature)
        now = self.clock()
        with shard.lock:
            entry = shard.entries.get(signature)
            if entry is None:
                shard.stats.misses += 1
                return None
            if not entry.is_expired(now):
                shard.entries.move_to_end(signature)
                entry.last_accessed = now
                entry.last_used = next(self._use_counter)
                entry.hits += 1
                shard.stats.hits += 1
                return list(entry.results)
            del shard.entries[signature]
            shard.stats.expirations += 1
            shard.stats.misses += 1
        self._adjust_size(-1)
        return None

    def put(
        self,
        signature: str,
        results: Sequence[ScoredResult],
        ttl_seconds: Optional[float] = None,
        generation: Optional[int] = None,
    ) -> bool:
        """Insert or replace the results for a signature.

        When the cache grows past max_entries, expired entries are dropped
        first; if that frees nothing the least recently used entry is
        evicted. The entry just stored is never the one evicted.

        Args:
            signature: Query signature.
            results: Ranked results to store.
            ttl_seconds: Per-entry TTL; defaults to the configured TTL.
            generation: Generation observed before the results were computed.

        Returns:
            True if the entry was stored.
        """
        shard = self._shard_for(signature)
        ttl = self.config.ttl_seconds if ttl_seconds is None else ttl_seconds

        with shard.lock:
            shard.stats.sets += 1
            if not self.enabled or ttl <= 0:
                return False
            if generation is not None and generation < self.generation:
                shard.stats.stale_puts += 1
                logger.debug(
                    f"Discarding results for {signature[:12]}: computed at "
                    f"generation {generation}"
                )
                return False

            now = self.clock()
            results = tuple(results)
            replaced = shard.entries.pop(signature, None)
            shard.entries[signature] = CacheEntry(
                signature=signature,
                results=results,
                record_ids=frozenset(r.record_id for r in results),
                inserted_at=now,
                last_accessed=now,
                ttl_seconds=ttl,
                generation=self.generation,
                last_used=next(self._use_counter),
            )

        if replaced is None and self._adjust_size(1) > self.config.max_entries:
            self._make_room(now, keep=signature)
        return True

    def _make_room(self, now: float, keep: str) -> None:
        """Shrink the cache back to max_entries."""
        self._purge_expired(now)
        while self._adjust_size(0) > self.config.max_entries:
            if not self._evict_least_recently_used(keep):
                return

    def _evict_least_recently_used(self, keep: str) -> bool:
        """Evict the entry with the oldest use across all shards.

        Each shard's entries are kept in use order, so only the head of
        every shard needs to be compared.

        Returns:
            False if there was nothing to evict.
        """
        victim: Optional[_Shard] = None
        victim_sig = ""
        victim_used = 0
        for shard in self._shards:
            with shard.lock:
                for sig, entry in shard.entries.items():
                    if sig == keep:
                        continue
                    if victim is None or entry.last_used < victim_used:
                        victim, victim_sig, victim_used = shard, sig, entry.last_used
                    break
        if victim is None:
            return False

        with victim.lock:
            entry = victim.entries.get(victim_sig)
            # Used or replaced meanwhile; the caller re-checks the size
            if entry is None or entry.last_used != victim_used:
                return True
            del victim.entries[victim_sig]
            victim.stats.evictions += 1
        self._adjust_size(-1)
        logger.debug(f"Evicted cache entry {victim_sig[:12]}")
        return True

    def invalidate(self, predicate: RecordIdPredicate) -> int:
        """Remove every entry whose referenced record ids satisfy predicate.

        If the predicate raises, the whole cache is cleared instead.

        Returns:
            Number of entries removed.
        """
        self._bump_generation()
        removed = 0
        for shard in self._shards:
            with shard.lock:
                try:
                    doomed = [
                        sig for sig, entry in shard.entries.items()
                        if predicate(entry.record_ids)
                    ]
                except Exception as e:
                    logger.warning(
                        f"Invalidation predicate failed, clearing cache: {e}"
                    )
                    break
                for sig in doomed:
                    del shard.entries[sig]
                shard.stats.invalidations += len(doomed)
                removed += len(doomed)
        else:
            self._adjust_size(-removed)
            return removed

        self._adjust_size(-removed)
        return removed + self.clear()

    def invalidate_records(self, record_ids: Iterable[int]) -> int:
        """Remove entries whose results include any of the given records."""
        affected = frozenset(record_ids)
        if not affected:
            return 0
        return self.invalidate(lambda ids: not ids.isdisjoint(affected))

    def clear(self) -> int:
        """Remove every entry.

        Returns:
            Number of entries removed.
        """
        self._bump_generation()
        removed = 0
        for shard in self._shards:
            with shard.lock:
                count = len(shard.entries)
                shard.entries.clear()
                shard.stats.invalidations += count
            self._adjust_size(-count)
            removed += count
        logger.debug(f"Cache cleared ({removed} entries)")
        return removed

    def _purge_expired(self, now: float) -> int:
        removed = 0
        for shard in self._shards:
            with shard.lock:
                count = shard.purge_expired(now)
            if count:
                self._adjust_size(-count)
                removed += count
        return removed

    def sweep_expired(self) -> int:
        """Drop expired entries from every shard.

        Returns:
            Number of entries removed.
        """
        return self._purge_expired(self.clock())

    def stats(self) -> CacheStats:
        """Aggregate statistics across shards."""
        total = CacheStats(
            max_entries=self.config.max_entries,
            generation=self.generation,
        )
        for shard in self._shards:
            with shard.lock:
                s = shard.stats
                total.hits += s.hits
                total.misses += s.misses
                total.sets += s.sets
                total.evictions += s.evictions
                total.expirations += s.expirations
                total.invalidations += s.invalidations
                total.stale_puts += s.stale_puts
                total.size += len(shard.entries)
        return total

    def __len__(self) -> int:
        size = 0
        for shard in self._shards:
            with shard.lock:
                size += len(shard.entries)
        return size


class CacheSweeper:
    """Background thread that periodically drops expired cache entries.

    Expired entries are never served regardless; the sweeper only returns
    their memory sooner.
    """

    def __init__(self, cache: ResultCache, interval_seconds: float):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        self.cache = cache
        self.interval_seconds = interval_seconds
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run, name="bear-core-cache-sweeper", daemon=True
        )
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run(self) -> None:
        while not self._stop.wait(self.interval_seconds):
            removed = self.cache.sweep_expired()
            if removed:
                logger.debug(f"Swept {removed} expired cache entries")
