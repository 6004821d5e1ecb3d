"""
Auto-tagging of a single imported photo.

The coordinator gathers tags from every cheap source (EXIF, hashtags,
keywords) and from the best available inference backend, normalizes and
merges them, and hands them to the tag store. It is best-effort by
contract: nothing it does can fail the photo import that triggered it.
"""

import asyncio
import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional, Protocol, Set

from .analysis.exif_tags import ExifTagger
from .analysis.tag_normalizer import TagNormalizer
from .analysis.text_extractors import KeywordExtractor, extract_hashtags
from .core.types import EnginePreference, ExtractedResult
from .orchestrator import FallbackOrchestrator

logger = logging.getLogger(__name__)


class TextRecognizer(Protocol):
    """Recognizes text in a photo (OCR engine adapter)."""

    async def recognize_text(self, image_bytes: bytes) -> str: ...


class TagStore(Protocol):
    """Persistence for tags, descriptions and recognized text."""

    async def add_tag(self, tag_name: str, photo_id: str) -> None: ...

    async def update_description(self, photo_id: str, text: str, timestamp: datetime) -> None: ...

    async def update_extracted_text(
        self, photo_id: str, text: str, timestamp: datetime
    ) -> None: ...


class NullTextRecognizer:
    """Recognizer for setups without an OCR engine."""

    async def recognize_text(self, image_bytes: bytes) -> str:
        return ""


class InMemoryTagStore:
    """Tag store kept in dictionaries; used by the CLI and in tests."""

    def __init__(self) -> None:
        self.tags: Dict[str, List[str]] = {}
        self.descriptions: Dict[str, str] = {}
        self.extracted_texts: Dict[str, str] = {}
        self.updated_at: Dict[str, datetime] = {}

    async def add_tag(self, tag_name: str, photo_id: str) -> None:
        photo_tags = self.tags.setdefault(photo_id, [])
        if tag_name not in photo_tags:
            photo_tags.append(tag_name)

    async def update_description(self, photo_id: str, text: str, timestamp: datetime) -> None:
        self.descriptions[photo_id] = text
        self.updated_at[photo_id] = timestamp

    async def update_extracted_text(self, photo_id: str, text: str, timestamp: datetime) -> None:
        self.extracted_texts[photo_id] = text
        self.updated_at[photo_id] = timestamp


class AutoTaggingCoordinator:
    """Runs every tag source for one photo and persists the merged result.

    Attributes:
        orchestrator: Fallback chain over the inference backends
        tag_store: Where tags and descriptions are written
        text_recognizer: OCR adapter, used when no text is supplied
        preference_provider: Returns the current engine preference
    """

    def __init__(
        self,
        orchestrator: FallbackOrchestrator,
        tag_store: TagStore,
        text_recognizer: Optional[TextRecognizer] = None,
        normalizer: Optional[TagNormalizer] = None,
        keyword_extractor: Optional[KeywordExtractor] = None,
        exif_tagger: Optional[ExifTagger] = None,
        preference_provider: Optional[Callable[[], EnginePreference]] = None,
        use_text_correction: bool = False,
    ) -> None:
        self.orchestrator = orchestrator
        self.tag_store = tag_store
        self.text_recognizer = text_recognizer or NullTextRecognizer()
        self.normalizer = normalizer or TagNormalizer()
        self.keyword_extractor = keyword_extractor
        self.exif_tagger = exif_tagger or ExifTagger()
        self.preference_provider = preference_provider or (lambda: EnginePreference.AUTO)
        self.use_text_correction = use_text_correction
        self._tasks: Set[asyncio.Task] = set()

    async def _exif_tags(self, image_bytes: bytes) -> List[str]:
        try:
            return await self.exif_tagger.tags_for_image(image_bytes)
        except Exception as e:
            logger.warning(f"EXIF tagging failed: {e}")
            return []

    async def _recognize(self, image_bytes: bytes) -> str:
        recognizer = self.text_recognizer
        try:
            corrected = getattr(recognizer, "recognize_text_with_correction", None)
            if self.use_text_correction and corrected is not None:
                return await corrected(image_bytes) or ""
            return await recognizer.recognize_text(image_bytes) or ""
        except Exception as e:
            logger.warning(f"Text recognition failed: {e}")
            return ""

    def _keywords(self, text: str) -> List[str]:
        if self.keyword_extractor is None or not text:
            return []
        try:
            return self.keyword_extractor.extract(text)
        except Exception as e:
            logger.warning(f"Keyword extraction failed: {e}")
            return []

    async def extract_tags_best_effort(
        self,
        photo_id: str,
        image_bytes: bytes,
        recognized_text: Optional[str] = None,
    ) -> ExtractedResult:
        """Tag one photo from every source; never raises.

        Args:
            photo_id: Identifier used with the tag store
            image_bytes: Encoded photo
            recognized_text: Text already recognized in the photo, if any

        Returns:
            Merged tags (AI first, then hashtags, keywords, EXIF) with the
            AI description and confidence
        """
        logger.info(f"Auto-tagging photo {photo_id}")

        exif_tags = await self._exif_tags(image_bytes)

        text = recognized_text if recognized_text is not None else await self._recognize(image_bytes)
        text = text.strip()
        if text:
            try:
                await self.tag_store.update_extracted_text(photo_id, text, datetime.now())
            except Exception as e:
                logger.warning(f"Failed to save recognized text for {photo_id}: {e}")

        hashtags = extract_hashtags(text)
        keywords = self._keywords(text)

        try:
            preference = self.preference_provider()
            ai_result = await self.orchestrator.extract_best(image_bytes, text or None, preference)
            ai_result = self.normalizer.normalize_result(ai_result)
        except Exception as e:
            logger.warning(f"AI tagging failed for {photo_id}: {e}")
            ai_result = ExtractedResult.empty()

        if not ai_result.has_valid_data:
            logger.info(f"No AI tags for photo {photo_id}")

        merged = self.normalizer.normalize_tags(ai_result.tags + hashtags + keywords + exif_tags)
        result = ExtractedResult(
            tags=merged,
            description=ai_result.description,
            confidence=ai_result.confidence,
        )

        await self._persist(photo_id, result)
        logger.info(f"Auto-tagging done for {photo_id}: {len(result.tags)} tags")
        return result

    async def _persist(self, photo_id: str, result: ExtractedResult) -> None:
        for tag in result.tags:
            try:
                await self.tag_store.add_tag(tag, photo_id)
            except Exception as e:
                logger.warning(f"Failed to add tag '{tag}' to {photo_id}: {e}")

        if result.description:
            try:
                await self.tag_store.update_description(photo_id, result.description, datetime.now())
            except Exception as e:
                logger.warning(f"Failed to save description for {photo_id}: {e}")

    def schedule(
        self,
        photo_id: str,
        image_bytes: bytes,
        recognized_text: Optional[str] = None,
    ) -> asyncio.Task:
        """Start tagging in the background and return immediately.

        Must be called from a running event loop. Callers must not schedule
        the same photo twice concurrently.
        """
        task = asyncio.get_running_loop().create_task(
            self.extract_tags_best_effort(photo_id, image_bytes, recognized_text),
            name=f"autotag-{photo_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task
