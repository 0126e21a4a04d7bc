"""Tests for tokenization, keyword extraction and fuzzy distance."""

from bear_core.search.fuzzy import is_fuzzy_match, levenshtein_distance
from bear_core.search.tokenizer import (
    extract_keywords,
    normalize_tag,
    strip_tag_marker,
    tokenize,
    tokenize_with_spans,
)


class TestTokenize:
    """Tests for tokenize()."""

    def test_case_folds_and_strips_punctuation(self):
        """Words are case-folded and punctuation is a boundary."""
        assert tokenize("Hello, World! It's me.") == ["hello", "world", "it", "s", "me"]

    def test_empty_and_whitespace_input(self):
        """Empty or whitespace-only text yields no tokens."""
        assert tokenize("") == []
        assert tokenize("   \n\t ") == []

    def test_collapses_whitespace(self):
        """Runs of whitespace do not produce empty tokens."""
        assert tokenize("  bear   \n\n  notes  ") == ["bear", "notes"]

    def test_tag_tokens_are_kept_distinct(self):
        """Tag markers survive and nested tags stay one token."""
        assert tokenize("Plan #Work/Projects today") == ["plan", "#work/projects", "today"]

    def test_trailing_separator_dropped_from_tag(self):
        """A trailing slash is not part of the tag."""
        assert tokenize("#work/ stuff") == ["#work", "stuff"]

    def test_lone_marker_is_not_a_tag(self):
        """A marker not followed by a word character is punctuation."""
        assert tokenize("# heading") == ["heading"]

    def test_case_sensitive_keeps_casing(self):
        """Case-sensitive mode leaves casing alone."""
        assert tokenize("Bear bear", case_sensitive=True) == ["Bear", "bear"]

    def test_deterministic(self):
        """The same input always yields the same tokens."""
        text = "Some #tag text, with punctuation!"
        assert tokenize(text) == tokenize(text)

    def test_unicode_case_folding(self):
        """casefold handles characters lower() does not."""
        assert tokenize("STRASSE straße") == ["strasse", "strasse"]


class TestTokenSpans:
    """Tests for tokenize_with_spans()."""

    def test_spans_point_into_source(self):
        """Every span slices the original token out of the text."""
        text = "Find the Bear, then #hike/trail/"
        for token in tokenize_with_spans(text):
            assert text[token.start:token.end].casefold() == token.text

    def test_tag_flag(self):
        """Only marker-prefixed tokens are tags."""
        tokens = tokenize_with_spans("word #tag")
        assert [t.is_tag for t in tokens] == [False, True]


class TestKeywords:
    """Tests for extract_keywords(), strip_tag_marker() and normalize_tag()."""

    def test_skips_short_words_stop_words_and_tags(self):
        keywords = extract_keywords("The honey jar would be full of honey #food sweets")
        assert keywords == ["honey", "full", "sweets"]

    def test_limit(self):
        text = " ".join(f"keyword{i}" for i in range(20))
        assert len(extract_keywords(text, limit=5)) == 5

    def test_strip_tag_marker(self):
        assert strip_tag_marker("#work") == "work"
        assert strip_tag_marker("work") == "work"

    def test_normalize_tag(self):
        assert normalize_tag(" #work//Projects/ ") == "work/Projects"
        assert normalize_tag("##home") == "home"
        assert normalize_tag("# / ") == ""


class TestFuzzy:
    """Tests for bounded Levenshtein distance."""

    def test_distances(self):
        assert levenshtein_distance("kitten", "sitting") == 3
        assert levenshtein_distance("", "abc") == 3
        assert levenshtein_distance("same", "same") == 0

    def test_early_exit_exceeds_bound(self):
        """With a bound, distances past it are reported as bound + 1."""
        assert levenshtein_distance("abcdef", "uvwxyz", max_distance=2) > 2

    def test_is_fuzzy_match(self):
        """Near misses match; identical strings are not fuzzy matches."""
        assert is_fuzzy_match("bears", "beers", 1)
        assert not is_fuzzy_match("bears", "bears", 1)
        assert not is_fuzzy_match("bears", "boats", 1)
        assert not is_fuzzy_match("bears", "beers", 0)
