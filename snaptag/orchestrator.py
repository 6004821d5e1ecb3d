"""
Fallback orchestration across inference backends.

The user's engine preference selects an ordered list of backend slots.
Backends are tried strictly in that order, one at a time; unavailable ones
are skipped, failures are logged and swallowed, and the first result with
usable data wins.

Example:
    >>> orchestrator = FallbackOrchestrator({BackendKind.CLOUD: cloud})
    >>> result = await orchestrator.extract_from_text(EnginePreference.AUTO, "営業時間 11:00-22:00")
"""

import logging
from typing import Dict, List, Mapping, Optional, Tuple

from .analysis.quality_gate import assess_text
from .backends.base import InferenceBackend
from .core.errors import (
    ExtractionFailedError,
    ModelNotLoadedError,
    NotAvailableError,
    SnaptagError,
)
from .core.types import BackendKind, EnginePreference, ExtractedResult, InputKind

logger = logging.getLogger(__name__)

CLOUD_SLOT = "cloud"
ON_DEVICE_SLOT = "on_device"
LOCAL_SLOT = "local"

# Preference -> backend slots, in the order they are tried
PREFERENCE_ORDER: Dict[EnginePreference, Tuple[str, ...]] = {
    EnginePreference.NONE: (),
    EnginePreference.CLOUD: (CLOUD_SLOT,),
    EnginePreference.ON_DEVICE: (ON_DEVICE_SLOT,),
    EnginePreference.LOCAL: (LOCAL_SLOT,),
    EnginePreference.AUTO: (CLOUD_SLOT, ON_DEVICE_SLOT, LOCAL_SLOT),
}


def slot_backend_kind(slot: str, kind: InputKind) -> BackendKind:
    """Map a slot to a concrete backend; the local slot depends on the input."""
    if slot == LOCAL_SLOT:
        return BackendKind.LOCAL_VISION if kind == InputKind.IMAGE else BackendKind.LOCAL_TEXT
    return BackendKind(slot)


class FallbackOrchestrator:
    """Tries backends in preference order until one yields usable data.

    Stateless between calls; holds only the backends it was given.
    """

    def __init__(self, backends: Mapping[BackendKind, InferenceBackend]) -> None:
        self.backends: Dict[BackendKind, InferenceBackend] = dict(backends)

    def resolve(self, preference: EnginePreference, kind: InputKind) -> List[InferenceBackend]:
        """Ordered backends to try for a preference and input kind.

        Automatic mode keeps only backends that declare the capability;
        an explicit preference yields its single backend regardless.
        """
        resolved: List[InferenceBackend] = []
        for slot in PREFERENCE_ORDER[preference]:
            backend = self.backends.get(slot_backend_kind(slot, kind))
            if backend is None:
                continue
            if preference == EnginePreference.AUTO and not backend.supports(kind):
                continue
            resolved.append(backend)
        return resolved

    async def extract(
        self, preference: EnginePreference, kind: InputKind, payload
    ) -> ExtractedResult:
        """Run the fallback chain.

        Raises:
            NotAvailableError: Disabled, or no backend produced data
            ExtractionFailedError: The single explicitly chosen backend failed
            ModelNotLoadedError: The explicitly chosen local backend has no weights
        """
        backends = self.resolve(preference, kind)
        if not backends:
            raise NotAvailableError(
                f"No {kind.value} backend for preference '{preference.value}'"
            )

        last_error: Optional[Exception] = None
        for backend in backends:
            try:
                available = await backend.is_available()
            except Exception as e:
                logger.warning(f"Availability check for {backend.name} failed: {e}")
                continue
            if not available:
                logger.info(f"Skipping {backend.name}: not available")
                continue

            logger.info(f"Trying {backend.name} ({kind.value})")
            try:
                result = await backend.extract(kind, payload)
            except NotAvailableError as e:
                logger.info(f"{backend.name} not available: {e}")
                continue
            except Exception as e:
                logger.warning(f"{backend.name} failed: {e}")
                last_error = e
                continue

            if result.has_valid_data:
                logger.info(
                    f"Extracted {len(result.tags)} tags with {backend.name} "
                    f"(confidence {result.confidence:.2f})"
                )
                return result
            logger.info(f"{backend.name} returned no usable data")

        if preference != EnginePreference.AUTO and last_error is not None:
            if isinstance(last_error, ModelNotLoadedError):
                raise ModelNotLoadedError(str(last_error)) from last_error
            reason = getattr(last_error, "reason", None) or str(last_error)
            raise ExtractionFailedError(reason) from last_error

        raise NotAvailableError(f"No backend produced data for {kind.value} input")

    async def extract_from_text(
        self, preference: EnginePreference, text: str
    ) -> ExtractedResult:
        return await self.extract(preference, InputKind.TEXT, text)

    async def extract_from_image(
        self, preference: EnginePreference, image_bytes: bytes
    ) -> ExtractedResult:
        return await self.extract(preference, InputKind.IMAGE, image_bytes)

    async def extract_best(
        self,
        image_bytes: Optional[bytes],
        recognized_text: Optional[str],
        preference: EnginePreference = EnginePreference.AUTO,
    ) -> ExtractedResult:
        """Best-effort extraction for auto-tagging; never raises.

        Image-capable backends look at the photo first. Only if none of them
        produces data is the recognized text used, and only when it passes
        the quality gate.
        """
        if preference == EnginePreference.NONE:
            logger.debug("AI tagging disabled")
            return ExtractedResult.empty()

        if image_bytes:
            try:
                return await self.extract(preference, InputKind.IMAGE, image_bytes)
            except SnaptagError as e:
                logger.info(f"Image extraction unavailable: {e}")
            except Exception as e:
                logger.warning(f"Image extraction failed unexpectedly: {e}")

        verdict = assess_text(recognized_text)
        if not verdict:
            logger.info(f"Skipping text extraction: {verdict.reason}")
            return ExtractedResult.empty()

        try:
            return await self.extract(preference, InputKind.TEXT, recognized_text.strip())
        except SnaptagError as e:
            logger.info(f"Text extraction unavailable: {e}")
        except Exception as e:
            logger.warning(f"Text extraction failed unexpectedly: {e}")
        return ExtractedResult.empty()

    async def available_backend_name(
        self, preference: EnginePreference, kind: InputKind = InputKind.TEXT
    ) -> Optional[str]:
        """Name of the backend that would be tried first, if any is available."""
        for backend in self.resolve(preference, kind):
            try:
                if await backend.is_available():
                    return backend.name
            except Exception as e:
                logger.debug(f"Availability check for {backend.name} failed: {e}")
        return None
