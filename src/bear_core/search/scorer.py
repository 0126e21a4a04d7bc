"""Relevance scoring and snippet extraction for note records."""

import logging
import re
from typing import List, Optional, Sequence, Set, Tuple

from bear_core.config import ScorerConfig
from bear_core.models.schema import Query, Record, ScoredResult, SearchFields
from bear_core.search.fuzzy import is_fuzzy_match
from bear_core.search.tokenizer import (
    TAG_SEPARATOR,
    Token,
    strip_tag_marker,
    tokenize,
    tokenize_with_spans,
)

logger = logging.getLogger(__name__)

_EXACT = "exact"
_FUZZY = "fuzzy"

_WHITESPACE = re.compile(r"\s+")
ELLIPSIS = "..."


class RelevanceScorer:
    """Scores a record against query tokens.

    The score is a weighted term frequency: every title hit counts
    ``title_weight`` and every body hit counts 1. Fuzzy hits count
    ``fuzzy_weight`` of that. A query of several tokens that appears
    contiguously in the title or body earns ``phrase_bonus`` once.
    """

    def __init__(self, config: Optional[ScorerConfig] = None):
        """Initialize the scorer.

        Args:
            config: Scoring options. Defaults to ScorerConfig().
        """
        self.config = config or ScorerConfig()

    def query_tokens(self, query: Query) -> List[str]:
        """Tokens to score with, honouring the case-sensitivity option."""
        if self.config.case_sensitive:
            return tokenize(query.text, case_sensitive=True)
        return list(query.tokens)

    def score(
        self,
        query_tokens: Sequence[str],
        record: Record,
        search_fields: SearchFields = SearchFields.BOTH,
        include_snippets: bool = True,
    ) -> ScoredResult:
        """Compute relevance, matched terms and snippets for one record.

        Args:
            query_tokens: Normalized query tokens, in query order.
            record: The candidate record.
            search_fields: Fields to match against; the other is not scored.
            include_snippets: Whether to extract body snippets.

        Returns:
            A ScoredResult; score is 0.0 when nothing matched.
        """
        terms = list(dict.fromkeys(query_tokens))
        if not terms:
            return ScoredResult(record=record, score=0.0)

        cfg = self.config
        title_tokens = (
            tokenize_with_spans(record.title or "", cfg.case_sensitive)
            if search_fields.includes_title else []
        )
        # Encrypted bodies are ciphertext; only the title is searchable
        body_tokens = (
            tokenize_with_spans(record.body, cfg.case_sensitive)
            if search_fields.includes_body and not record.encrypted else []
        )

        score = 0.0
        matched: Set[str] = set()
        title_matches = 0
        body_matches = 0
        body_spans: List[Tuple[int, int]] = []

        for term in terms:
            t_exact, t_fuzzy, _ = self._count_matches(term, title_tokens)
            b_exact, b_fuzzy, spans = self._count_matches(term, body_tokens)
            if not (t_exact or t_fuzzy or b_exact or b_fuzzy):
                continue
            matched.add(term)
            score += cfg.title_weight * (t_exact + cfg.fuzzy_weight * t_fuzzy)
            score += b_exact + cfg.fuzzy_weight * b_fuzzy
            title_matches += t_exact + t_fuzzy
            body_matches += b_exact + b_fuzzy
            body_spans.extend(spans)

        if len(query_tokens) > 1 and len(matched) == len(terms):
            if self._contains_phrase(query_tokens, title_tokens) or self._contains_phrase(
                query_tokens, body_tokens
            ):
                score += cfg.phrase_bonus

        snippets: Tuple[str, ...] = ()
        if include_snippets and body_spans:
            snippets = tuple(self.build_snippets(record.body, body_spans))

        return ScoredResult(
            record=record,
            score=score,
            matched_terms=frozenset(matched),
            snippets=snippets,
            title_matches=title_matches,
            body_matches=body_matches,
        )

    def _count_matches(
        self, term: str, tokens: Sequence[Token]
    ) -> Tuple[int, int, List[Tuple[int, int]]]:
        """Count exact and fuzzy hits of a term, collecting their spans."""
        exact = 0
        fuzzy = 0
        spans: List[Tuple[int, int]] = []
        for token in tokens:
            kind = self._match(term, token)
            if kind is None:
                continue
            if kind == _EXACT:
                exact += 1
            else:
                fuzzy += 1
            spans.append((token.start, token.end))
        return exact, fuzzy, spans

    def _match(self, term: str, token: Token) -> Optional[str]:
        """Classify how a query term matches one document token.

        Tag terms match the same tag, any nested child of it, or the bare
        word. Plain terms match words, whole tag names and tag segments.
        """
        cfg = self.config
        if term.startswith("#") and token.is_tag:
            if token.text == term or token.text.startswith(term + TAG_SEPARATOR):
                return _EXACT

        bare_term = strip_tag_marker(term)
        if token.is_tag:
            name = strip_tag_marker(token.text)
            candidates = [name, *name.split(TAG_SEPARATOR)]
        else:
            candidates = [token.text]

        for candidate in candidates:
            if cfg.whole_words:
                if candidate == bare_term:
                    return _EXACT
            elif bare_term in candidate:
                return _EXACT

        if cfg.fuzzy_match and len(bare_term) >= cfg.fuzzy_min_term_length:
            for candidate in candidates:
                if is_fuzzy_match(bare_term, candidate, cfg.fuzzy_max_distance):
                    return _FUZZY
        return None

    def _contains_phrase(
        self, query_tokens: Sequence[str], tokens: Sequence[Token]
    ) -> bool:
        """Whether the query tokens appear contiguously and in order."""
        width = len(query_tokens)
        if width == 0 or len(tokens) < width:
            return False
        for start in range(len(tokens) - width + 1):
            if all(
                self._match(query_tokens[i], tokens[start + i]) == _EXACT
                for i in range(width)
            ):
                return True
        return False

    def build_snippets(self, body: str, spans: Sequence[Tuple[int, int]]) -> List[str]:
        """Extract word-bounded windows around matched spans.

        Windows are ``snippet_window`` characters centred on each match.
        A match already inside an earlier window does not start a new one,
        and at most ``max_snippets`` snippets are returned.

        Args:
            body: Original body text.
            spans: (start, end) character offsets of matches in body.

        Returns:
            Snippets in document order, with "..." marking truncation.
        """
        cfg = self.config
        window = cfg.snippet_window
        snippets: List[str] = []
        covered_until = -1

        for span_start, span_end in sorted(set(spans)):
            if len(snippets) >= cfg.max_snippets:
                break
            if span_start < covered_until:
                continue

            center = (span_start + span_end) // 2
            start = max(0, center - window // 2)
            end = min(len(body), start + window)
            start = max(0, end - window)

            # Trim to word boundaries without cutting into the match itself
            if start > 0:
                gap = _WHITESPACE.search(body, start, span_start)
                if gap:
                    start = gap.end()
            if end < len(body):
                last_gap = None
                for last_gap in _WHITESPACE.finditer(body, span_end, end):
                    pass
                if last_gap:
                    end = last_gap.start()

            text = " ".join(body[start:end].split())
            if not text:
                continue
            prefix = ELLIPSIS if start > 0 else ""
            suffix = ELLIPSIS if end < len(body) else ""
            snippets.append(f"{prefix}{text}{suffix}")
            covered_until = end

        return snippets
