"""Batch-streaming scan of the note store with structural filtering."""

import logging
import threading
from typing import Callable, Iterator, Optional

from bear_core.config import ScannerConfig
from bear_core.exceptions import SearchCancelledError
from bear_core.models.schema import (
    Query,
    Record,
    ScoredResult,
    StoreFilter,
    TagMatch,
)
from bear_core.search.scorer import RelevanceScorer
from bear_core.search.tokenizer import TAG_SEPARATOR
from bear_core.storage.base import NoteStore

logger = logging.getLogger(__name__)

RecordPredicate = Callable[[Record], bool]


def tag_matches(filter_tag: str, record_tags) -> bool:
    """Whether a (case-folded) filter tag matches any record tag.

    A filter tag also matches nested children: ``work`` matches
    ``work/projects``.
    """
    prefix = filter_tag + TAG_SEPARATOR
    return any(tag == filter_tag or tag.startswith(prefix) for tag in record_tags)


def passes_structural_filters(query: Query, record: Record) -> bool:
    """Apply flag, tag and date filters from the query to one record."""
    if record.trashed and not query.include_trashed:
        return False
    if record.archived and not query.include_archived:
        return False
    if record.encrypted and not query.include_encrypted:
        return False

    if query.date_from and record.created_at < query.date_from:
        return False
    if query.date_to and record.created_at > query.date_to:
        return False
    if query.modified_after and record.modified_at < query.modified_after:
        return False
    if query.modified_before and record.modified_at > query.modified_before:
        return False

    if query.tags or query.exclude_tags:
        record_tags = record.folded_tags
        wanted = [tag.casefold() for tag in query.tags]
        if wanted:
            check = all if query.tag_match is TagMatch.ALL else any
            if not check(tag_matches(tag, record_tags) for tag in wanted):
                return False
        if any(tag_matches(tag.casefold(), record_tags) for tag in query.exclude_tags):
            return False
    return True


class SearchIndexScanner:
    """Streams candidate records from the store and yields scored results.

    Every call to scan() starts over at the first record; no cursor state
    survives between calls. At most one batch of records is held in memory.
    """

    def __init__(
        self,
        store: NoteStore,
        scorer: RelevanceScorer,
        config: Optional[ScannerConfig] = None,
    ):
        """Initialize the scanner.

        Args:
            store: The record source.
            scorer: Relevance scorer applied to records passing the filters.
            config: Batch size and minimum score. Defaults to ScannerConfig().
        """
        self.store = store
        self.scorer = scorer
        self.config = config or ScannerConfig()

    def iter_records(
        self,
        store_filter: StoreFilter,
        cancel: Optional[threading.Event] = None,
    ) -> Iterator[Record]:
        """Yield every record the store returns, one batch at a time."""
        batch_size = self.config.batch_size
        offset = 0
        while True:
            if cancel is not None and cancel.is_set():
                raise SearchCancelledError(scanned=offset)
            batch = self.store.fetch_batch(store_filter, offset, batch_size)
            if not batch:
                return
            yield from batch
            if len(batch) < batch_size:
                return
            offset += len(batch)

    def scan(
        self,
        query: Query,
        filter_predicate: Optional[RecordPredicate] = None,
        cancel: Optional[threading.Event] = None,
    ) -> Iterator[ScoredResult]:
        """Lazily score every record that passes the query's filters.

        Args:
            query: The search query.
            filter_predicate: Extra caller-supplied record filter.
            cancel: When set, the scan stops with SearchCancelledError.

        Yields:
            ScoredResult for each qualifying record, in store order.
        """
        tokens = self.scorer.query_tokens(query)
        threshold = self.config.min_score_threshold
        scanned = 0

        for record in self.iter_records(StoreFilter.from_query(query), cancel):
            if cancel is not None and cancel.is_set():
                raise SearchCancelledError(scanned=scanned)
            scanned += 1

            if not passes_structural_filters(query, record):
                continue
            if filter_predicate is not None and not filter_predicate(record):
                continue

            result = self.scorer.score(
                tokens, record, query.search_fields, query.include_snippets
            )
            if tokens and result.score <= 0:
                continue
            if threshold > 0 and result.score < threshold:
                continue
            yield result

        logger.debug(f"Scan finished: {scanned} records examined")
