"""Data models for the Bear notes core."""

import datetime
import hashlib
import heapq
import json
from dataclasses import dataclass, field
from datetime import timezone
from enum import Enum
from typing import (
    Any,
    Callable,
    Dict,
    FrozenSet,
    Iterable,
    List,
    Literal,
    Optional,
    Tuple,
)

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from bear_core.exceptions import InvalidQueryError
from bear_core.search.tokenizer import normalize_tag, tokenize


def utc_now() -> datetime.datetime:
    """Get current UTC time as timezone-aware datetime.

    Returns:
        Current time with UTC timezone info attached.
    """
    return datetime.datetime.now(timezone.utc)


def ensure_timezone_aware(dt_value: datetime.datetime) -> datetime.datetime:
    """Ensure a datetime is timezone-aware, treating naive datetimes as UTC.

    Stores hand back naive datetimes in several places; they are assumed to
    be UTC so that modification timestamps compare reliably.

    Args:
        dt_value: A datetime that may or may not have timezone info.

    Returns:
        The same instant as a UTC-aware datetime.
    """
    if dt_value.tzinfo is None:
        return dt_value.replace(tzinfo=timezone.utc)
    return dt_value.astimezone(timezone.utc)


def _optional_aware(value: Optional[datetime.datetime]) -> Optional[datetime.datetime]:
    if value is None:
        return None
    return ensure_timezone_aware(value)


class Record(BaseModel):
    """A transient, read-only copy of a note owned by the store."""

    id: int = Field(..., description="Stable integer identifier")
    title: Optional[str] = Field(default=None, description="Note title")
    body: str = Field(default="", description="Note text")
    created_at: datetime.datetime = Field(
        default_factory=utc_now, description="When the note was created (UTC)"
    )
    modified_at: datetime.datetime = Field(
        default_factory=utc_now, description="When the note was last modified (UTC)"
    )
    trashed: bool = False
    archived: bool = False
    pinned: bool = False
    encrypted: bool = False
    tags: Tuple[str, ...] = Field(
        default=(), description="Tag names in display order"
    )
    unique_identifier: Optional[str] = Field(
        default=None, description="Host application's identifier, if any"
    )

    model_config = {"frozen": True, "extra": "forbid"}

    @field_validator("created_at", "modified_at")
    @classmethod
    def validate_timestamps(cls, v: datetime.datetime) -> datetime.datetime:
        """Normalize timestamps to UTC."""
        return ensure_timezone_aware(v)

    @property
    def size(self) -> int:
        """Length of the note body in characters."""
        return len(self.body)

    @property
    def folded_tags(self) -> FrozenSet[str]:
        """Case-folded tag names, for order-insensitive matching."""
        return frozenset(tag.casefold() for tag in self.tags)


class TagMatch(str, Enum):
    """How a multi-tag filter combines."""

    ANY = "any"
    ALL = "all"


class SearchFields(str, Enum):
    """Which parts of a note free text is matched against."""

    TITLE = "title"
    BODY = "body"
    BOTH = "both"

    @property
    def includes_title(self) -> bool:
        return self is not SearchFields.BODY

    @property
    def includes_body(self) -> bool:
        return self is not SearchFields.TITLE


class SortKey(str, Enum):
    """Ordering applied to search results."""

    RELEVANCE = "relevance"
    MODIFIED = "modified"
    CREATED = "created"
    TITLE = "title"
    SIZE = "size"


class SortOrder(str, Enum):
    """Sort direction for non-relevance orderings."""

    ASC = "asc"
    DESC = "desc"


class Query(BaseModel):
    """A normalized, immutable search request.

    ``tokens`` is always the case-folded tokenization of ``text``; it is
    derived on construction and forms the basis of the query signature.
    Tag filters are normalized the way note tags are, so ``#work`` and
    ``work`` select the same notes.
    """

    text: str = ""
    tokens: Tuple[str, ...] = ()
    tags: Tuple[str, ...] = ()
    tag_match: TagMatch = TagMatch.ANY
    exclude_tags: Tuple[str, ...] = ()
    date_from: Optional[datetime.datetime] = None
    date_to: Optional[datetime.datetime] = None
    modified_after: Optional[datetime.datetime] = None
    modified_before: Optional[datetime.datetime] = None
    include_archived: bool = False
    include_trashed: bool = False
    include_encrypted: bool = False
    sort_by: SortKey = SortKey.RELEVANCE
    sort_order: SortOrder = SortOrder.DESC
    search_fields: SearchFields = SearchFields.BOTH
    include_snippets: bool = True
    limit: int = Field(default=50, ge=1)
    offset: int = Field(default=0, ge=0)

    model_config = {"frozen": True, "extra": "forbid"}

    @model_validator(mode="before")
    @classmethod
    def _derive_tokens(cls, data: Any) -> Any:
        if isinstance(data, dict):
            data = dict(data)
            data["tokens"] = tuple(tokenize(data.get("text") or ""))
        return data

    @field_validator("date_from", "date_to", "modified_after", "modified_before")
    @classmethod
    def _normalize_dates(
        cls, v: Optional[datetime.datetime]
    ) -> Optional[datetime.datetime]:
        return _optional_aware(v)

    @field_validator("tags", "exclude_tags")
    @classmethod
    def _normalize_tags(cls, v: Tuple[str, ...]) -> Tuple[str, ...]:
        tags: List[str] = []
        seen = set()
        for raw in v:
            tag = normalize_tag(raw)
            if tag and tag.casefold() not in seen:
                seen.add(tag.casefold())
                tags.append(tag)
        if v and not tags:
            raise ValueError(f"no usable tag names in {list(v)}")
        return tuple(tags)

    @model_validator(mode="after")
    def _validate_ranges(self) -> "Query":
        if self.date_from and self.date_to and self.date_from > self.date_to:
            raise ValueError("date_from must not be after date_to")
        if (
            self.modified_after
            and self.modified_before
            and self.modified_after > self.modified_before
        ):
            raise ValueError("modified_after must not be after modified_before")
        overlap = {t.casefold() for t in self.tags} & {
            t.casefold() for t in self.exclude_tags
        }
        if overlap:
            raise ValueError(
                f"tags cannot be both required and excluded: {sorted(overlap)}"
            )
        return self

    @classmethod
    def build(cls, text: str = "", **filters: Any) -> "Query":
        """Build a query, converting validation failures to InvalidQueryError.

        Args:
            text: Free-text search string.
            **filters: Any other Query field (tags, date_from, limit, ...).

        Returns:
            The validated Query.

        Raises:
            InvalidQueryError: If the filter combination is malformed.
        """
        filters = {k: v for k, v in filters.items() if v is not None}
        for key in ("tags", "exclude_tags"):
            if key in filters:
                filters[key] = tuple(filters[key])
        try:
            return cls(text=text, **filters)
        except ValidationError as e:
            first = e.errors()[0]
            location = ".".join(str(part) for part in first.get("loc", ())) or None
            raise InvalidQueryError(
                first.get("msg", str(e)),
                field=location,
                value=first.get("input") if location else None,
            ) from e

    @property
    def has_text(self) -> bool:
        """Whether the query carries any search terms."""
        return bool(self.tokens)

    def signature(self, options: Optional[Dict[str, Any]] = None) -> str:
        """Canonical, hashable cache key for this query plus result-shaping options.

        Args:
            options: Scoring/scanning options that change the result list.

        Returns:
            A SHA-256 hex digest of the canonical JSON form.
        """
        payload = {
            "query": self.model_dump(mode="json", exclude={"text"}),
            "options": options or {},
        }
        # Raw text only matters through its tokens, except for case-sensitive scoring
        if options and options.get("case_sensitive"):
            payload["text"] = self.text
        canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class StoreFilter:
    """Structural filters a store may push down into its own query.

    Stores are free to ignore any of these; the scanner re-applies them.
    """

    include_trashed: bool = False
    include_archived: bool = False
    include_encrypted: bool = False
    created_from: Optional[datetime.datetime] = None
    created_to: Optional[datetime.datetime] = None
    modified_after: Optional[datetime.datetime] = None
    modified_before: Optional[datetime.datetime] = None

    @classmethod
    def from_query(cls, query: Query) -> "StoreFilter":
        return cls(
            include_trashed=query.include_trashed,
            include_archived=query.include_archived,
            include_encrypted=query.include_encrypted,
            created_from=query.date_from,
            created_to=query.date_to,
            modified_after=query.modified_after,
            modified_before=query.modified_before,
        )


@dataclass(frozen=True)
class ScoredResult:
    """A record with its relevance score and match details.

    Attributes:
        record: The matched record.
        score: Non-negative relevance, higher is more relevant.
        matched_terms: Query terms that matched; non-empty whenever score > 0.
        snippets: Bounded-length excerpts around body matches.
        title_matches: Number of title token matches.
        body_matches: Number of body token matches.
    """

    record: Record
    score: float
    matched_terms: FrozenSet[str] = frozenset()
    snippets: Tuple[str, ...] = ()
    title_matches: int = 0
    body_matches: int = 0

    def __post_init__(self) -> None:
        if self.score < 0:
            raise ValueError("score must be non-negative")
        if self.score > 0 and not self.matched_terms:
            raise ValueError("a positive score requires at least one matched term")

    @property
    def record_id(self) -> int:
        return self.record.id

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation.

        Returns:
            Dictionary with the record (as dict) and match details.
        """
        return {
            "record": self.record.model_dump(mode="json"),
            "score": round(self.score, 4),
            "matched_terms": sorted(self.matched_terms),
            "snippets": list(self.snippets),
            "title_matches": self.title_matches,
            "body_matches": self.body_matches,
        }


def rank_key(result: ScoredResult) -> Tuple[float, float, int]:
    """Sort key for relevance ordering.

    Highest score first, then most recently modified, then smallest id.
    """
    return (-result.score, -result.record.modified_at.timestamp(), result.record.id)


def rank_results(
    results: Iterable[ScoredResult],
    sort_by: SortKey = SortKey.RELEVANCE,
    sort_order: SortOrder = SortOrder.DESC,
    limit: Optional[int] = None,
) -> List[ScoredResult]:
    """Order results deterministically for the requested sort key.

    Relevance ordering uses rank_key and ignores sort_order. Other keys
    break ties by ascending id. With a limit only the best ``limit``
    results are kept while consuming the iterable.
    """
    if sort_by is SortKey.RELEVANCE:
        key, largest = rank_key, False
    else:
        primary = _SORT_FIELDS[sort_by]
        if sort_order is SortOrder.DESC:
            key, largest = (lambda r: (primary(r), -r.record.id)), True
        else:
            key, largest = (lambda r: (primary(r), r.record.id)), False

    if limit is None:
        return sorted(results, key=key, reverse=largest)
    select = heapq.nlargest if largest else heapq.nsmallest
    return select(limit, results, key=key)


_SORT_FIELDS: Dict[SortKey, Callable[[ScoredResult], Any]] = {
    SortKey.MODIFIED: lambda r: r.record.modified_at.timestamp(),
    SortKey.CREATED: lambda r: r.record.created_at.timestamp(),
    SortKey.TITLE: lambda r: (r.record.title or "").casefold(),
    SortKey.SIZE: lambda r: r.record.size,
}


@dataclass
class CacheEntry:
    """A cached, ranked result list for one query signature."""

    signature: str
    results: Tuple[ScoredResult, ...]
    record_ids: FrozenSet[int]
    inserted_at: float
    last_accessed: float
    ttl_seconds: float
    generation: int
    hits: int = 0
    # Cache-wide use counter; the smallest value is least recently used
    last_used: int = 0

    def age(self, now: float) -> float:
        return now - self.inserted_at

    def is_expired(self, now: float) -> bool:
        return self.age(now) >= self.ttl_seconds

    def expires_at(self) -> float:
        return self.inserted_at + self.ttl_seconds


class NoteChanges(BaseModel):
    """Proposed field changes for a note mutation.

    Only fields that are set are applied.
    """

    title: Optional[str] = None
    body: Optional[str] = None
    tags: Optional[List[str]] = None
    trashed: Optional[bool] = None
    archived: Optional[bool] = None
    pinned: Optional[bool] = None

    model_config = {"extra": "forbid", "frozen": True}

    def as_update(self) -> Dict[str, Any]:
        """The changes that were actually provided."""
        return self.model_dump(exclude_none=True)

    @property
    def is_empty(self) -> bool:
        return not self.as_update()


@dataclass(frozen=True)
class MutationIntent:
    """A single write request against one record.

    Attributes:
        record_id: Target record.
        changes: Proposed field changes.
        expected_modified_at: If set, the mutation only applies when the
            store's current modification timestamp equals this value.
    """

    record_id: int
    changes: NoteChanges
    expected_modified_at: Optional[datetime.datetime] = None


class WarningReason(str, Enum):
    """Why a tag was dropped during sanitization."""

    EMPTY = "empty"
    TOO_LONG = "too_long"


@dataclass(frozen=True)
class ValidationWarning:
    """A non-fatal problem found while sanitizing input."""

    tag: str
    reason: WarningReason
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {"tag": self.tag, "reason": self.reason.value, "message": self.message}


@dataclass
class SanitizedTags:
    """Result of tag sanitization: accepted tags plus any warnings."""

    accepted: List[str] = field(default_factory=list)
    warnings: List[ValidationWarning] = field(default_factory=list)


@dataclass
class MutationApplied:
    """Response indicating a mutation was written to the store.

    Attributes:
        status: Always "applied" for this result type.
        record_id: ID of the mutated record.
        modified_at: The store's new modification timestamp.
        warnings: Non-fatal sanitization warnings.
    """

    status: Literal["applied"]
    record_id: int
    modified_at: datetime.datetime
    warnings: List[ValidationWarning] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "record_id": self.record_id,
            "modified_at": self.modified_at.isoformat(),
            "warnings": [w.to_dict() for w in self.warnings],
        }


@dataclass
class ConflictResult:
    """Response indicating a version conflict during a mutation.

    Attributes:
        status: Always "conflict" for this result type.
        record_id: ID of the record that had a conflict.
        expected_modified_at: The timestamp the caller expected.
        actual_modified_at: The store's current timestamp.
        message: Human-readable description of the conflict.
    """

    status: Literal["conflict"]
    record_id: int
    expected_modified_at: datetime.datetime
    actual_modified_at: datetime.datetime
    message: str

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation.

        Returns:
            Dictionary with all fields.
        """
        return {
            "status": self.status,
            "record_id": self.record_id,
            "expected_modified_at": self.expected_modified_at.isoformat(),
            "actual_modified_at": self.actual_modified_at.isoformat(),
            "message": self.message,
        }


@dataclass(frozen=True)
class SimilarNote:
    """A note resembling a reference text, with the keywords they share."""

    record: Record
    similarity: float
    common_keywords: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "record": self.record.model_dump(mode="json"),
            "similarity": round(self.similarity, 4),
            "common_keywords": list(self.common_keywords),
        }


@dataclass
class RelatedNotes:
    """Notes related to a source note, by shared tags and by content."""

    record_id: int
    by_tags: List[Record] = field(default_factory=list)
    by_content: List[Record] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "record_id": self.record_id,
            "by_tags": [r.model_dump(mode="json") for r in self.by_tags],
            "by_content": [r.model_dump(mode="json") for r in self.by_content],
        }


@dataclass
class SearchSuggestions:
    """Completions for a partially typed query."""

    terms: List[str] = field(default_factory=list)
    titles: List[str] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, List[str]]:
        return {"terms": self.terms, "titles": self.titles, "tags": self.tags}
