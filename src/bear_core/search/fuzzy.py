"""Edit-distance helpers for typo-tolerant matching."""

from __future__ import annotations


def levenshtein_distance(s1: str, s2: str, max_distance: int | None = None) -> int:
    """Calculate the Levenshtein (edit) distance between two strings.

    Uses two rolling rows, with early termination once the distance is
    known to exceed ``max_distance``.

    Args:
        s1: First string.
        s2: Second string.
        max_distance: If provided, return max_distance + 1 as soon as the
            distance is guaranteed to exceed this threshold.

    Returns:
        The minimum number of single-character insertions, deletions and
        substitutions needed to turn s1 into s2 (capped as described).

    Examples:
        >>> levenshtein_distance("bear", "beer")
        1
        >>> levenshtein_distance("", "abc")
        3
    """
    if not s1:
        return len(s2)
    if not s2:
        return len(s1)

    if len(s1) > len(s2):
        s1, s2 = s2, s1

    m, n = len(s1), len(s2)
    if max_distance is not None and n - m > max_distance:
        return max_distance + 1

    prev_row = list(range(m + 1))
    curr_row = [0] * (m + 1)

    for j in range(1, n + 1):
        curr_row[0] = j
        row_min = j
        for i in range(1, m + 1):
            cost = 0 if s1[i - 1] == s2[j - 1] else 1
            curr_row[i] = min(
                prev_row[i] + 1,  # deletion
                curr_row[i - 1] + 1,  # insertion
                prev_row[i - 1] + cost,  # substitution
            )
            row_min = min(row_min, curr_row[i])

        if max_distance is not None and row_min > max_distance:
            return max_distance + 1

        prev_row, curr_row = curr_row, prev_row

    return prev_row[m]


def is_fuzzy_match(term: str, candidate: str, max_distance: int) -> bool:
    """Whether candidate is within max_distance edits of term, but not equal."""
    if term == candidate or max_distance <= 0:
        return False
    return levenshtein_distance(term, candidate, max_distance) <= max_distance
