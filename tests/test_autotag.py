"""Tests for the auto-tagging coordinator."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

from snaptag.analysis.tag_normalizer import TagNormalizer
from snaptag.analysis.text_extractors import KeywordExtractor
from snaptag.autotag import AutoTaggingCoordinator, InMemoryTagStore, NullTextRecognizer
from snaptag.core.types import BackendKind, EnginePreference, ExtractedResult
from snaptag.orchestrator import FallbackOrchestrator

MENU_TEXT = "Night menu #ramen shoyu ramen 850 yen"
NOUNS = {"menu", "shoyu", "ramen"}


def _exif_tagger(tags=None, error=None) -> MagicMock:
    tagger = MagicMock()
    if error is not None:
        tagger.tags_for_image = AsyncMock(side_effect=error)
    else:
        tagger.tags_for_image = AsyncMock(return_value=list(tags or []))
    return tagger


def _keyword_extractor(normalizer: TagNormalizer) -> KeywordExtractor:
    return KeywordExtractor(
        normalizer,
        tokenizer=str.split,
        pos_tagger=lambda tokens: [(t, "NN" if t in NOUNS else "JJ") for t in tokens],
    )


class FakeRecognizer:
    def __init__(self, text: str, corrected: str = "") -> None:
        self.text = text
        self.corrected = corrected
        self.calls = []

    async def recognize_text(self, image_bytes: bytes) -> str:
        self.calls.append("plain")
        return self.text

    async def recognize_text_with_correction(self, image_bytes: bytes) -> str:
        self.calls.append("corrected")
        return self.corrected


class FailingStore(InMemoryTagStore):
    async def add_tag(self, tag_name: str, photo_id: str) -> None:
        if tag_name == "menu":
            raise RuntimeError("database is locked")
        await super().add_tag(tag_name, photo_id)

    async def update_description(self, photo_id, text, timestamp) -> None:
        raise RuntimeError("database is locked")


class TestExtractTagsBestEffort:
    """Tests for AutoTaggingCoordinator.extract_tags_best_effort."""

    def _coordinator(self, make_backend, store=None, exif_tags=("iphone", "春"), **kwargs):
        normalizer = TagNormalizer(synonyms={})
        cloud = make_backend(
            BackendKind.CLOUD,
            result=ExtractedResult.from_tags(["ラーメン", "飲食店"], " ラーメン店 "),
            supports_image=True,
        )
        orchestrator = FallbackOrchestrator({BackendKind.CLOUD: cloud})
        return AutoTaggingCoordinator(
            orchestrator,
            store if store is not None else InMemoryTagStore(),
            normalizer=normalizer,
            keyword_extractor=_keyword_extractor(normalizer),
            exif_tagger=_exif_tagger(exif_tags),
            **kwargs,
        )

    def test_merges_sources_in_order(self, make_backend, jpeg_bytes) -> None:
        store = InMemoryTagStore()
        coordinator = self._coordinator(make_backend, store)

        result = asyncio.run(coordinator.extract_tags_best_effort("p1", jpeg_bytes, MENU_TEXT))

        assert result.tags == ["ラーメン", "飲食店", "ramen", "menu", "shoyu", "iphone", "春"]
        assert result.description == "ラーメン店"
        assert result.confidence == 0.4

    def test_persists_everything(self, make_backend, jpeg_bytes) -> None:
        store = InMemoryTagStore()
        coordinator = self._coordinator(make_backend, store)

        result = asyncio.run(
            coordinator.extract_tags_best_effort("p1", jpeg_bytes, f"  {MENU_TEXT}\n")
        )

        assert store.tags["p1"] == result.tags
        assert store.descriptions["p1"] == "ラーメン店"
        assert store.extracted_texts["p1"] == MENU_TEXT
        assert "p1" in store.updated_at

    def test_uses_recognizer_without_text(self, make_backend, jpeg_bytes) -> None:
        recognizer = FakeRecognizer("#sunset")
        store = InMemoryTagStore()
        coordinator = self._coordinator(make_backend, store, text_recognizer=recognizer)

        result = asyncio.run(coordinator.extract_tags_best_effort("p1", jpeg_bytes))

        assert recognizer.calls == ["plain"]
        assert "sunset" in result.tags
        assert store.extracted_texts["p1"] == "#sunset"

    def test_corrected_recognition(self, make_backend, jpeg_bytes) -> None:
        recognizer = FakeRecognizer("#sunsct", corrected="#sunset")
        coordinator = self._coordinator(
            make_backend, text_recognizer=recognizer, use_text_correction=True
        )

        result = asyncio.run(coordinator.extract_tags_best_effort("p1", jpeg_bytes))

        assert recognizer.calls == ["corrected"]
        assert "sunset" in result.tags

    def test_supplied_text_skips_recognizer(self, make_backend, jpeg_bytes) -> None:
        recognizer = FakeRecognizer("#ignored")
        coordinator = self._coordinator(make_backend, text_recognizer=recognizer)

        asyncio.run(coordinator.extract_tags_best_effort("p1", jpeg_bytes, MENU_TEXT))

        assert recognizer.calls == []

    def test_no_text_not_saved(self, make_backend, jpeg_bytes) -> None:
        store = InMemoryTagStore()
        coordinator = self._coordinator(make_backend, store)

        asyncio.run(coordinator.extract_tags_best_effort("p1", jpeg_bytes, "   "))

        assert "p1" not in store.extracted_texts

    def test_passes_current_preference(self, jpeg_bytes) -> None:
        orchestrator = MagicMock()
        orchestrator.extract_best = AsyncMock(return_value=ExtractedResult.empty())
        coordinator = AutoTaggingCoordinator(
            orchestrator,
            InMemoryTagStore(),
            exif_tagger=_exif_tagger(),
            preference_provider=lambda: EnginePreference.LOCAL,
        )

        asyncio.run(coordinator.extract_tags_best_effort("p1", jpeg_bytes, ""))

        orchestrator.extract_best.assert_awaited_once_with(jpeg_bytes, None, EnginePreference.LOCAL)

    def test_never_raises(self, jpeg_bytes) -> None:
        orchestrator = MagicMock()
        orchestrator.extract_best = AsyncMock(side_effect=RuntimeError("boom"))
        normalizer = TagNormalizer(synonyms={})
        store = FailingStore()
        coordinator = AutoTaggingCoordinator(
            orchestrator,
            store,
            text_recognizer=FakeRecognizer("", corrected=""),
            normalizer=normalizer,
            keyword_extractor=_keyword_extractor(normalizer),
            exif_tagger=_exif_tagger(error=ValueError("corrupt EXIF")),
        )

        result = asyncio.run(coordinator.extract_tags_best_effort("p1", b"not a jpeg", MENU_TEXT))

        assert result.tags == ["ramen", "menu", "shoyu"]
        assert result.description is None
        assert store.tags["p1"] == ["ramen", "shoyu"]

    def test_preference_provider_failure(self, jpeg_bytes) -> None:
        def broken():
            raise OSError("preferences unreadable")

        orchestrator = MagicMock()
        orchestrator.extract_best = AsyncMock()
        coordinator = AutoTaggingCoordinator(
            orchestrator, InMemoryTagStore(), exif_tagger=_exif_tagger(), preference_provider=broken
        )

        result = asyncio.run(coordinator.extract_tags_best_effort("p1", jpeg_bytes, "#tokyo"))

        assert result.tags == ["tokyo"]
        orchestrator.extract_best.assert_not_awaited()

    def test_scenario_local_vision_fallback(self, make_backend, jpeg_bytes) -> None:
        cloud = make_backend(BackendKind.CLOUD, available=False, supports_image=True)
        vision = make_backend(
            BackendKind.LOCAL_VISION,
            result=ExtractedResult.from_tags(["猫", "cat"], "a cat"),
            supports_text=False,
            supports_image=True,
        )
        store = InMemoryTagStore()
        coordinator = AutoTaggingCoordinator(
            FallbackOrchestrator({BackendKind.CLOUD: cloud, BackendKind.LOCAL_VISION: vision}),
            store,
            exif_tagger=_exif_tagger(),
        )

        result = asyncio.run(coordinator.extract_tags_best_effort("p1", jpeg_bytes))

        assert result.tags == ["猫"]
        assert result.description == "a cat"
        assert store.tags["p1"] == ["猫"]


class TestSchedule:
    """Tests for background scheduling."""

    def test_schedule_returns_named_task(self, make_backend, jpeg_bytes) -> None:
        store = InMemoryTagStore()
        coordinator = AutoTaggingCoordinator(
            FallbackOrchestrator({}), store, exif_tagger=_exif_tagger(["iphone"])
        )

        async def run():
            task = coordinator.schedule("p1", jpeg_bytes, "#tokyo")
            assert task.get_name() == "autotag-p1"
            assert not task.done()
            return await task

        result = asyncio.run(run())

        assert result.tags == ["tokyo", "iphone"]
        assert store.tags["p1"] == ["tokyo", "iphone"]


class TestNullTextRecognizer:
    def test_returns_empty(self, jpeg_bytes) -> None:
        assert asyncio.run(NullTextRecognizer().recognize_text(jpeg_bytes)) == ""
