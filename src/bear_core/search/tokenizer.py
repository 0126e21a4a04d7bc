"""Text normalization into search tokens.

Tokens are case-folded words. A word prefixed with the tag marker (``#``)
is kept as a distinct tag token, including any ``/`` separators of a
nested tag (``#work/projects``). Every other punctuation character is a
token boundary.
"""

import re
from typing import List, NamedTuple

TAG_MARKER = "#"
TAG_SEPARATOR = "/"

# A tag token must start with a word character after the marker; nested
# segments are joined by "/". Plain words are runs of word characters.
_TOKEN_PATTERN = re.compile(r"(?P<tag>#\w[\w/]*)|(?P<word>\w+)")


class Token(NamedTuple):
    """A token with its character span in the source text."""

    text: str
    start: int
    end: int
    is_tag: bool


def tokenize_with_spans(text: str, case_sensitive: bool = False) -> List[Token]:
    """Split text into tokens, keeping the source span of each one.

    Args:
        text: Raw text to tokenize.
        case_sensitive: Keep original casing instead of case-folding.

    Returns:
        Tokens in document order. Empty or whitespace-only input yields [].
    """
    if not text or text.isspace():
        return []

    tokens: List[Token] = []
    for match in _TOKEN_PATTERN.finditer(text):
        is_tag = match.group("tag") is not None
        value = match.group(0)
        end = match.end()
        if is_tag:
            stripped = value.rstrip(TAG_SEPARATOR)
            end -= len(value) - len(stripped)
            value = stripped
        if not case_sensitive:
            value = value.casefold()
        tokens.append(Token(value, match.start(), end, is_tag))
    return tokens


def tokenize(text: str, case_sensitive: bool = False) -> List[str]:
    """Normalize text into an ordered token sequence.

    Args:
        text: Raw text to tokenize.
        case_sensitive: Keep original casing instead of case-folding.

    Returns:
        Token strings in document order.
    """
    return [token.text for token in tokenize_with_spans(text, case_sensitive)]


def strip_tag_marker(token: str) -> str:
    """Return a tag token without its leading marker."""
    return token[len(TAG_MARKER):] if token.startswith(TAG_MARKER) else token


_REPEATED_SEPARATORS = re.compile(r"/{2,}")


def normalize_tag(raw: str) -> str:
    """Normalize a tag name as typed by a user.

    Surrounding whitespace and leading markers are stripped, runs of
    separators collapse to one and empty segments are dropped, so
    ``" #work//projects/ "`` becomes ``"work/projects"``. Casing is kept.
    """
    tag = raw.strip().lstrip(TAG_MARKER).strip()
    tag = _REPEATED_SEPARATORS.sub(TAG_SEPARATOR, tag)
    segments = [segment.strip() for segment in tag.split(TAG_SEPARATOR)]
    return TAG_SEPARATOR.join(segment for segment in segments if segment)


# Words too common to say anything about what a note is about
STOP_WORDS = frozenset({
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for",
    "of", "with", "by", "is", "are", "was", "were", "be", "been", "have",
    "has", "had", "do", "does", "did", "will", "would", "could", "should",
    "this", "that", "these", "those",
})

MIN_KEYWORD_LENGTH = 4


def extract_keywords(text: str, limit: int = 10) -> List[str]:
    """Pick the first distinct significant words of a text.

    Tag tokens and stop words are skipped, as are words shorter than
    MIN_KEYWORD_LENGTH characters.

    Args:
        text: Raw text.
        limit: Maximum number of keywords.

    Returns:
        Case-folded keywords in order of first appearance.
    """
    keywords: List[str] = []
    for token in tokenize_with_spans(text):
        if token.is_tag or len(token.text) < MIN_KEYWORD_LENGTH:
            continue
        if token.text in STOP_WORDS or token.text in keywords:
            continue
        keywords.append(token.text)
        if len(keywords) >= limit:
            break
    return keywords
