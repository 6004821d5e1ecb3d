"""
Composition root.

Builds every component once from Settings and wires them together
explicitly. Library code never reaches for a global instance; whoever needs
a component gets it from here or constructs its own.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional

from .analysis.exif_tags import ExifTagger, NominatimGeocoder
from .analysis.tag_normalizer import TagNormalizer
from .analysis.text_extractors import KeywordExtractor
from .autotag import AutoTaggingCoordinator, InMemoryTagStore, TagStore, TextRecognizer
from .backends import CloudBackend, LocalTextBackend, LocalVisionBackend, OnDeviceBackend
from .backends.base import InferenceBackend
from .core.config import PreferenceStore, Settings, get_settings
from .core.types import BackendKind, EnginePreference
from .models import MODEL_SPECS, ModelArtifactManager
from .orchestrator import FallbackOrchestrator

logger = logging.getLogger(__name__)


@dataclass
class Container:
    """All long-lived components of a snaptag process."""

    settings: Settings
    preferences: PreferenceStore
    artifacts: Dict[str, ModelArtifactManager]
    backends: Dict[BackendKind, InferenceBackend]
    orchestrator: FallbackOrchestrator
    normalizer: TagNormalizer
    keyword_extractor: KeywordExtractor
    exif_tagger: ExifTagger
    coordinator: AutoTaggingCoordinator

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        tag_store: Optional[TagStore] = None,
        text_recognizer: Optional[TextRecognizer] = None,
    ) -> "Container":
        settings = settings or get_settings()
        preferences = PreferenceStore(settings.preferences_file, settings.engine_preference)

        artifacts = {
            key: ModelArtifactManager(
                spec,
                settings.models_dir,
                storage_margin_bytes=settings.storage_margin_bytes,
                timeout=settings.download_timeout,
            )
            for key, spec in MODEL_SPECS.items()
        }

        backends: Dict[BackendKind, InferenceBackend] = {
            BackendKind.CLOUD: CloudBackend(
                api_key=settings.anthropic_api_key,
                model=settings.cloud_model,
                base_url=settings.anthropic_base_url,
                timeout=settings.request_timeout,
            ),
            BackendKind.ON_DEVICE: OnDeviceBackend(
                model=settings.ollama_model,
                host=settings.ollama_host,
            ),
            BackendKind.LOCAL_TEXT: LocalTextBackend(
                artifacts["text"],
                n_threads=settings.local_threads,
                n_gpu_layers=settings.local_gpu_layers,
                timeout=settings.local_timeout,
            ),
            BackendKind.LOCAL_VISION: LocalVisionBackend(
                artifacts["vision"],
                n_threads=settings.local_threads,
                n_gpu_layers=settings.local_gpu_layers,
                timeout=settings.local_timeout,
            ),
        }

        orchestrator = FallbackOrchestrator(backends)
        normalizer = TagNormalizer()
        keyword_extractor = KeywordExtractor(normalizer)
        geocoder = NominatimGeocoder(settings.geocoding_url) if settings.geocoding_enabled else None
        exif_tagger = ExifTagger(geocoder)

        coordinator = AutoTaggingCoordinator(
            orchestrator,
            tag_store or InMemoryTagStore(),
            text_recognizer=text_recognizer,
            normalizer=normalizer,
            keyword_extractor=keyword_extractor,
            exif_tagger=exif_tagger,
            preference_provider=preferences.load,
        )

        logger.debug(f"Container built (data dir {settings.data_dir})")
        return cls(
            settings=settings,
            preferences=preferences,
            artifacts=artifacts,
            backends=backends,
            orchestrator=orchestrator,
            normalizer=normalizer,
            keyword_extractor=keyword_extractor,
            exif_tagger=exif_tagger,
            coordinator=coordinator,
        )

    @property
    def preference(self) -> EnginePreference:
        return self.preferences.load()
