"""Tag normalization for note mutations and tag filters."""

import logging
from typing import Iterable, Set

from bear_core.models.schema import SanitizedTags, ValidationWarning, WarningReason
from bear_core.search.tokenizer import normalize_tag

logger = logging.getLogger(__name__)


class TagSanitizer:
    """Normalizes raw tag input and reports what it dropped.

    Hierarchical tags (``work/projects``) stay a single logical tag. Tags
    are de-duplicated case-insensitively, keeping the first spelling seen.
    Sanitization never fails; problems surface as warnings.
    """

    def __init__(self, max_length: int = 100):
        self.max_length = max_length

    def normalize(self, raw: str) -> str:
        """Normalize one tag without validating it."""
        return normalize_tag(raw)

    def sanitize(self, raw_tags: Iterable[str]) -> SanitizedTags:
        """Normalize, validate and de-duplicate tags.

        Args:
            raw_tags: Tags as supplied by the caller.

        Returns:
            SanitizedTags with accepted tags in first-seen order and a
            warning for each tag that was dropped for being empty or too long.
        """
        result = SanitizedTags()
        seen: Set[str] = set()

        for raw in raw_tags:
            if raw is None or raw == "":
                continue

            tag = self.normalize(str(raw))
            if not tag:
                result.warnings.append(ValidationWarning(
                    tag=raw,
                    reason=WarningReason.EMPTY,
                    message="Tag is empty after trimming whitespace and markers",
                ))
                continue

            if len(tag) > self.max_length:
                result.warnings.append(ValidationWarning(
                    tag=tag[:50] + "...",
                    reason=WarningReason.TOO_LONG,
                    message=(
                        f"Tag is {len(tag)} characters long; the limit is "
                        f"{self.max_length}"
                    ),
                ))
                continue

            key = tag.casefold()
            if key in seen:
                continue
            seen.add(key)
            result.accepted.append(tag)

        for warning in result.warnings:
            logger.warning(f"Dropped tag {warning.tag!r}: {warning.message}")
        return result
