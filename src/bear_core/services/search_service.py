"""Service for searching, suggesting and mutating notes."""

import logging
import threading
from collections import Counter
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from pydantic import ValidationError

from bear_core.config import BearCoreConfig, ScannerConfig, ScorerConfig
from bear_core.config import config as default_config
from bear_core.exceptions import InvalidQueryError, RecordNotFoundError
from bear_core.models.schema import (
    ConflictResult,
    MutationApplied,
    MutationIntent,
    Query,
    Record,
    RelatedNotes,
    ScoredResult,
    SearchSuggestions,
    SimilarNote,
    StoreFilter,
    rank_results,
)
from bear_core.observability import metrics, timed_operation, traced
from bear_core.search.scanner import SearchIndexScanner
from bear_core.search.scorer import RelevanceScorer
from bear_core.search.tokenizer import extract_keywords, tokenize
from bear_core.services.cache_service import CacheStats, CacheSweeper, ResultCache
from bear_core.services.concurrency_guard import ConcurrencyGuard
from bear_core.services.tag_sanitizer import TagSanitizer
from bear_core.storage.base import NoteStore

logger = logging.getLogger(__name__)

# Changes to these fields can move a record into or out of any cached result
SEARCH_VISIBLE_FIELDS = frozenset({"title", "body", "tags", "trashed", "archived"})

# Everything except trashed notes, for discovery features
_DISCOVERY_FILTER = StoreFilter(include_archived=True, include_encrypted=True)

MIN_SUGGESTED_TERM_LENGTH = 3


def _recency_key(record: Record) -> Tuple[float, int]:
    return (-record.modified_at.timestamp(), record.id)


class SearchService:
    """Entry point for the request-handling layer.

    Owns the result cache and the concurrency guard and wires the scanner
    and scorer to a note store. Searches are served from the cache when
    possible; mutations go through the guard and then invalidate the cache.
    """

    def __init__(
        self,
        store: NoteStore,
        config: Optional[BearCoreConfig] = None,
        cache: Optional[ResultCache] = None,
        guard: Optional[ConcurrencyGuard] = None,
        tag_sanitizer: Optional[TagSanitizer] = None,
    ):
        """Initialize the search service.

        Args:
            store: Note store to search and mutate.
            config: Core configuration. Defaults to the global config.
            cache: Result cache. Built from config.cache when omitted.
            guard: Concurrency guard for mutations.
            tag_sanitizer: Tag normalizer for mutations and tag filters.
        """
        self.store = store
        self.config = config or default_config
        self.cache = cache or ResultCache(self.config.cache)
        self.guard = guard or ConcurrencyGuard()
        self.tag_sanitizer = tag_sanitizer or TagSanitizer(self.config.max_tag_length)
        self.scanner = SearchIndexScanner(
            store, RelevanceScorer(self.config.scorer), self.config.scanner
        )

        self._sweeper: Optional[CacheSweeper] = None
        if self.config.sweep_interval_seconds > 0 and self.cache.enabled:
            self._sweeper = CacheSweeper(self.cache, self.config.sweep_interval_seconds)
            self._sweeper.start()

    def close(self) -> None:
        """Stop the background cache sweeper, if one is running."""
        if self._sweeper is not None:
            self._sweeper.stop()
            self._sweeper = None

    def __enter__(self) -> "SearchService":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def build_query(self, text: str = "", **filters: Any) -> Query:
        """Build a validated query, sanitizing tag filters on the way.

        A tag filter whose every tag is dropped by sanitization is rejected
        rather than silently widened to no filter.

        Raises:
            InvalidQueryError: If the filters are malformed.
        """
        for key in ("tags", "exclude_tags"):
            if filters.get(key):
                sanitized = self.tag_sanitizer.sanitize(filters[key])
                if not sanitized.accepted:
                    reasons = ", ".join(w.message for w in sanitized.warnings)
                    raise InvalidQueryError(
                        f"No usable tags in {key}: {reasons or 'all tags were empty'}",
                        field=key,
                        value=list(filters[key]),
                    )
                filters[key] = sanitized.accepted
        return Query.build(text, **filters)

    def _resolve_options(
        self, options: Optional[Dict[str, Any]]
    ) -> Tuple[ScorerConfig, ScannerConfig]:
        """Overlay per-call option overrides on the configured defaults."""
        scorer_cfg = self.config.scorer
        scanner_cfg = self.config.scanner
        if not options:
            return scorer_cfg, scanner_cfg

        scorer_fields = set(ScorerConfig.model_fields)
        scanner_fields = set(ScannerConfig.model_fields)
        unknown = set(options) - scorer_fields - scanner_fields
        if unknown:
            raise InvalidQueryError(
                f"Unknown search options: {', '.join(sorted(unknown))}",
                field="options",
            )

        scorer_updates = {k: v for k, v in options.items() if k in scorer_fields}
        scanner_updates = {k: v for k, v in options.items() if k in scanner_fields}
        try:
            if scorer_updates:
                scorer_cfg = ScorerConfig(**{**scorer_cfg.model_dump(), **scorer_updates})
            if scanner_updates:
                scanner_cfg = ScannerConfig(
                    **{**scanner_cfg.model_dump(), **scanner_updates}
                )
        except ValidationError as e:
            raise InvalidQueryError(
                f"Invalid search options: {e.errors()[0].get('msg', e)}",
                field="options",
                value=options,
            ) from e
        return scorer_cfg, scanner_cfg

    def search(
        self,
        query: Query,
        options: Optional[Dict[str, Any]] = None,
        cancel: Optional[threading.Event] = None,
    ) -> List[ScoredResult]:
        """Rank notes against a query.

        Results are ordered by the query's sort key and sliced to its
        offset/limit. Identical queries with identical options return
        identical lists until a mutation or invalidation intervenes.

        Args:
            query: A validated query (see build_query).
            options: Per-call overrides of scorer or scanner options.
            cancel: Event that abandons the search when set.

        Returns:
            The requested page of ranked results.

        Raises:
            InvalidQueryError: If options are unknown or invalid.
            SearchCancelledError: If cancel was set during the scan.
            StoreUnavailableError: If the store failed.
        """
        scorer_cfg, scanner_cfg = self._resolve_options(options)
        signature = query.signature({
            **scorer_cfg.model_dump(mode="json"),
            **scanner_cfg.model_dump(mode="json"),
        })

        with timed_operation(
            "search", tokens=len(query.tokens), tags=len(query.tags)
        ) as op:
            cached = self.cache.get(signature)
            if cached is not None:
                op["cache"] = "hit"
                op["result_count"] = len(cached)
                return cached

            generation = self.cache.generation
            if options:
                scanner = SearchIndexScanner(
                    self.store, RelevanceScorer(scorer_cfg), scanner_cfg
                )
            else:
                scanner = self.scanner

            ranked = rank_results(
                scanner.scan(query, cancel=cancel),
                query.sort_by,
                query.sort_order,
                limit=query.offset + query.limit,
            )
            page = ranked[query.offset:]

            self.cache.put(signature, page, generation=generation)
            op["cache"] = "miss"
            op["result_count"] = len(page)
            return page

    def invalidate_for(self, record_ids: Optional[Iterable[int]]) -> int:
        """Drop cached results that reference any of the given records.

        Passing None clears the whole cache, for changes whose reach cannot
        be bounded (for example a newly created note).

        Returns:
            Number of cache entries removed.
        """
        if record_ids is None:
            removed = self.cache.clear()
        else:
            removed = self.cache.invalidate_records(record_ids)
        logger.debug(f"Invalidated {removed} cached searches")
        return removed

    def mutate(self, intent: MutationIntent) -> Union[MutationApplied, ConflictResult]:
        """Apply a mutation under optimistic concurrency control.

        Tags in the changes are sanitized first; dropped tags are reported
        as warnings on the applied result.

        Returns:
            MutationApplied, or ConflictResult if the record changed since
            the caller read it. A conflict leaves the store untouched.

        Raises:
            RecordNotFoundError: If the record does not exist.
            StoreUnavailableError: If the store failed.
        """
        changes = intent.changes.as_update()
        warnings = []
        if "tags" in changes:
            sanitized = self.tag_sanitizer.sanitize(changes["tags"])
            changes["tags"] = sanitized.accepted
            warnings = sanitized.warnings

        with timed_operation("mutate", record_id=intent.record_id) as op:
            result = self.guard.check_and_apply(
                intent,
                read_current=lambda: self.store.get_modification_timestamp(
                    intent.record_id
                ),
                apply_fn=lambda: self.store.apply_mutation(intent.record_id, changes),
            )
            op["status"] = result.status
            if isinstance(result, ConflictResult):
                return result

            result.warnings = list(warnings)
            if SEARCH_VISIBLE_FIELDS.intersection(changes):
                self.invalidate_for(None)
            else:
                self.invalidate_for([intent.record_id])
            return result

    def _iter_discoverable(self) -> Iterable[Record]:
        return self.scanner.iter_records(_DISCOVERY_FILTER)

    @traced("find_similar")
    def find_similar(
        self,
        reference_text: str,
        limit: int = 10,
        min_similarity: float = 0.1,
        exclude_id: Optional[int] = None,
    ) -> List[SimilarNote]:
        """Find notes whose keywords overlap those of a reference text.

        Similarity is the number of reference keywords found among a note's
        keywords (either containing the other), divided by the larger of
        the two keyword counts.

        Args:
            reference_text: Text to compare notes against.
            limit: Maximum number of notes to return.
            min_similarity: Notes below this similarity are left out.
            exclude_id: A note to leave out, usually the reference note.

        Returns:
            Most similar notes first.
        """
        reference = extract_keywords(reference_text)
        if not reference:
            return []

        matches = []
        for record in self._iter_discoverable():
            if record.trashed or record.encrypted or record.id == exclude_id:
                continue
            keywords = extract_keywords(record.body)
            if not keywords:
                continue
            common = tuple(
                kw for kw in reference
                if any(other in kw or kw in other for other in keywords)
            )
            similarity = len(common) / max(len(reference), len(keywords))
            if common and similarity >= min_similarity:
                matches.append(SimilarNote(record, similarity, common))

        matches.sort(key=lambda m: (-m.similarity, *_recency_key(m.record)))
        return matches[:limit]

    @traced("related_notes")
    def related_notes(self, record_id: int, limit: int = 5) -> RelatedNotes:
        """Find notes sharing tags with a note, and notes mentioning its keywords.

        Raises:
            RecordNotFoundError: If the source note does not exist.
        """
        source = self._find_record(record_id)
        source_tags = source.folded_tags
        keywords = extract_keywords(source.body)

        by_tags: List[Tuple[int, Record]] = []
        by_content: List[Record] = []
        for record in self._iter_discoverable():
            if record.id == record_id or record.trashed:
                continue
            shared = len(source_tags & record.folded_tags)
            if shared:
                by_tags.append((shared, record))
            if keywords and not record.encrypted:
                body = record.body.casefold()
                if any(kw in body for kw in keywords):
                    by_content.append(record)

        by_tags.sort(key=lambda item: (-item[0], *_recency_key(item[1])))
        by_content.sort(key=_recency_key)
        return RelatedNotes(
            record_id=record_id,
            by_tags=[record for _, record in by_tags[:limit]],
            by_content=by_content[:limit],
        )

    def _find_record(self, record_id: int) -> Record:
        everything = StoreFilter(
            include_trashed=True, include_archived=True, include_encrypted=True
        )
        for record in self.scanner.iter_records(everything):
            if record.id == record_id:
                return record
        raise RecordNotFoundError(record_id)

    @traced("suggest")
    def suggest(self, prefix: str, limit: int = 10) -> SearchSuggestions:
        """Suggest completions for a partially typed query.

        Terms are body words starting with the prefix, most frequent first.
        Titles contain the prefix anywhere, most recently modified first.
        Tags start with the prefix, alphabetically.
        """
        needle = prefix.strip().casefold()
        if not needle:
            return SearchSuggestions()

        term_counts: Counter = Counter()
        titles: List[Record] = []
        tags = set()
        for record in self._iter_discoverable():
            if not record.encrypted:
                term_counts.update(
                    word for word in tokenize(record.body)
                    if word.startswith(needle)
                    and len(word) >= MIN_SUGGESTED_TERM_LENGTH
                    and not word.startswith("#")
                )
            if record.title and needle in record.title.casefold():
                titles.append(record)
            tags.update(t for t in record.tags if t.casefold().startswith(needle))

        terms = sorted(term_counts.items(), key=lambda item: (-item[1], item[0]))
        titles.sort(key=_recency_key)
        distinct_titles = list(dict.fromkeys(record.title for record in titles))
        return SearchSuggestions(
            terms=[term for term, _ in terms[:limit]],
            titles=distinct_titles[:limit],
            tags=sorted(tags, key=str.casefold)[:limit],
        )

    def cache_stats(self) -> CacheStats:
        """Current result cache statistics."""
        return self.cache.stats()

    def metrics_summary(self) -> Dict[str, Any]:
        """Operation metrics for this process together with cache statistics."""
        return {
            "summary": metrics.get_summary(),
            "operations": metrics.get_metrics(),
            "cache": self.cache_stats().to_dict(),
        }
