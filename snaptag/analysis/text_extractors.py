"""
Cheap tag extractors that run on recognized text without any model.

- Hashtags: ``#`` followed by word characters, in any script
- Keywords: nouns picked out by NLTK part-of-speech tagging

Both run for every photo with text; neither is gated on text quality.
"""

import logging
import re
from typing import Any, Callable, List, Optional, Sequence, Tuple

from .tag_normalizer import TagNormalizer

logger = logging.getLogger(__name__)

HASHTAG_PATTERN = re.compile(r"#(\w+)")

# Keywords extracted per photo
DEFAULT_KEYWORD_LIMIT = 5

Tokenizer = Callable[[str], List[str]]
PosTagger = Callable[[List[str]], Sequence[Tuple[str, str]]]


def extract_hashtags(text: Optional[str]) -> List[str]:
    """Extract hashtags without the sigil.

    Duplicates are detected case-insensitively; the casing of the first
    occurrence is kept.

    Example:
        >>> extract_hashtags("#Tokyo #風景 #tokyo #風景")
        ['Tokyo', '風景']
    """
    if not text:
        return []

    hashtags: List[str] = []
    seen = set()
    for match in HASHTAG_PATTERN.finditer(text):
        tag = match.group(1)
        key = tag.casefold()
        if key in seen:
            continue
        seen.add(key)
        hashtags.append(tag)
    return hashtags


class KeywordExtractor:
    """Pulls a bounded number of noun keywords out of text.

    Tokenizing and tagging default to ``nltk.word_tokenize`` and
    ``nltk.pos_tag``. Both need NLTK data packages (``punkt_tab`` and
    ``averaged_perceptron_tagger_eng``); when they are missing the extractor
    logs a warning and yields nothing.
    """

    NOUN_PREFIX = "NN"

    def __init__(
        self,
        normalizer: Optional[TagNormalizer] = None,
        tokenizer: Optional[Tokenizer] = None,
        pos_tagger: Optional[PosTagger] = None,
    ) -> None:
        self.normalizer = normalizer or TagNormalizer()
        self._tokenizer = tokenizer
        self._pos_tagger = pos_tagger
        self._nltk: Any = None

    def _get_nltk(self) -> Any:
        """Import NLTK on first use."""
        if self._nltk is None:
            try:
                import nltk

                self._nltk = nltk
            except ImportError as e:
                raise ImportError("NLTK not installed. Install with: pip install nltk") from e
        return self._nltk

    def _tokenize(self, text: str) -> List[str]:
        if self._tokenizer is not None:
            return self._tokenizer(text)
        return self._get_nltk().word_tokenize(text)

    def _pos_tag(self, tokens: List[str]) -> Sequence[Tuple[str, str]]:
        if self._pos_tagger is not None:
            return self._pos_tagger(tokens)
        return self._get_nltk().pos_tag(tokens)

    def extract(self, text: Optional[str], limit: int = DEFAULT_KEYWORD_LIMIT) -> List[str]:
        """Return up to ``limit`` valid, distinct noun keywords in text order."""
        if not text or not text.strip() or limit <= 0:
            return []

        try:
            tagged = self._pos_tag(self._tokenize(text))
        except LookupError as e:
            logger.warning(f"NLTK data missing, skipping keyword extraction: {e}")
            return []

        keywords: List[str] = []
        seen = set()
        for word, pos in tagged:
            if not pos.startswith(self.NOUN_PREFIX):
                continue
            if not self.normalizer.validate_tag(word):
                continue
            key = self.normalizer.normalize_tag(word)
            if key in seen:
                continue
            seen.add(key)
            keywords.append(word)
            if len(keywords) >= limit:
                break
        return keywords
