"""
Tag normalization and validation.

Backends return tags in mixed languages, casing and widths, along with the
occasional placeholder ("unknown", "tag1", "photo"). The normalizer folds
every candidate onto a canonical form, drops the junk, and deduplicates by
canonical form while keeping first-seen order.

Example:
    >>> normalizer = TagNormalizer()
    >>> normalizer.normalize_tags(["猫", "Cat", "unknown", "Tokyo"])
    ['猫', 'tokyo']
"""

import logging
import unicodedata
from typing import FrozenSet, Iterable, List, Mapping, Optional

from ..core.types import ExtractedResult
from .tag_taxonomy import TagTaxonomy, term_key

logger = logging.getLogger(__name__)

# Shortest tag, in display columns (a single ideograph is wide enough)
MIN_TAG_WIDTH = 2
# Longest tag, in characters
MAX_TAG_LENGTH = 20

# Placeholder tokens models emit when they have nothing real to say
DENY_LIST: FrozenSet[str] = frozenset(
    {
        "unknown",
        "none",
        "n/a",
        "na",
        "null",
        "nil",
        "tag",
        "tags",
        "tag1",
        "tag2",
        "tag3",
        "tag4",
        "tag5",
        "photo",
        "photos",
        "image",
        "images",
        "picture",
        "pic",
        "other",
        "others",
        "misc",
        "写真",
        "画像",
        "不明",
        "その他",
        "なし",
        "タグ",
    }
)


def display_width(text: str) -> int:
    """Width of text in columns; wide (CJK) characters count as two."""
    return sum(2 if unicodedata.east_asian_width(c) in ("W", "F") else 1 for c in text)


class TagNormalizer:
    """Folds, validates and deduplicates tags.

    Attributes:
        synonyms: Lookup key to canonical tag name
        deny_list: Placeholder tokens (lookup keys) that are never valid
    """

    def __init__(
        self,
        synonyms: Optional[Mapping[str, str]] = None,
        deny_list: Optional[Iterable[str]] = None,
    ) -> None:
        if synonyms is None:
            synonyms = TagTaxonomy().synonym_table()
        self.synonyms = {term_key(k): v for k, v in synonyms.items()}
        self.deny_list = frozenset(
            term_key(t) for t in (deny_list if deny_list is not None else DENY_LIST)
        )

    def normalize_tag(self, tag: str) -> str:
        """Trim, fold synonyms onto their canonical form, and lowercase.

        Applying this twice gives the same result as applying it once.
        """
        key = term_key(tag)
        return term_key(self.synonyms.get(key, key))

    def validate_tag(self, tag: str) -> bool:
        """Return False for tags that are too short/long, symbol-only, or placeholders.

        The lower bound is measured in display columns, so a single ideograph
        such as "猫" passes while a single Latin letter does not. The upper
        bound counts characters in any script.
        """
        trimmed = tag.strip()
        if display_width(trimmed) < MIN_TAG_WIDTH or len(trimmed) > MAX_TAG_LENGTH:
            return False
        if not any(c.isalpha() for c in trimmed):
            return False
        if term_key(trimmed) in self.deny_list:
            return False
        return True

    def normalize_tags(self, tags: Iterable[str]) -> List[str]:
        """Normalize, validate and deduplicate tags, keeping first-seen order."""
        result: List[str] = []
        seen = set()
        for tag in tags:
            if not isinstance(tag, str):
                continue
            canonical = self.normalize_tag(tag)
            if not self.validate_tag(canonical):
                logger.debug(f"Rejected tag: {tag!r}")
                continue
            if canonical in seen:
                continue
            seen.add(canonical)
            result.append(canonical)
        return result

    def normalize_result(self, result: ExtractedResult) -> ExtractedResult:
        """Return a copy of the result with normalized tags and trimmed description."""
        description = result.description.strip() if result.description else None
        return ExtractedResult(
            tags=self.normalize_tags(result.tags),
            description=description or None,
            confidence=result.confidence,
        )
