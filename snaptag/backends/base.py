"""
Common interface for inference backends.
"""

import logging
from abc import ABC, abstractmethod

from ..core.errors import NotAvailableError
from ..core.types import BackendKind, ExtractedResult, InputKind

logger = logging.getLogger(__name__)


class InferenceBackend(ABC):
    """Abstract base class for inference backends.

    A backend turns recognized text and/or image bytes into an
    ExtractedResult. Failures are raised as SnaptagError subclasses;
    the orchestrator decides whether to move on to the next backend.
    """

    kind: BackendKind
    name: str = "backend"
    supports_text: bool = True
    supports_image: bool = False

    @abstractmethod
    async def is_available(self) -> bool:
        """Check whether this backend can be used right now.

        Evaluated on every call, never cached.
        """
        pass

    @abstractmethod
    async def extract_from_text(self, text: str) -> ExtractedResult:
        """Extract tags and a description from recognized text."""
        pass

    async def extract_from_image(self, image_bytes: bytes) -> ExtractedResult:
        """Extract tags and a description directly from an image."""
        raise NotAvailableError(f"{self.name} does not support image input")

    def supports(self, kind: InputKind) -> bool:
        return self.supports_image if kind == InputKind.IMAGE else self.supports_text

    async def extract(self, kind: InputKind, payload) -> ExtractedResult:
        """Dispatch to the capability method for the input kind."""
        if kind == InputKind.IMAGE:
            return await self.extract_from_image(payload)
        return await self.extract_from_text(payload)

    async def load(self) -> None:
        """Load model weights ahead of the first call (no-op by default)."""

    async def unload(self) -> None:
        """Release model weights (no-op by default)."""

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"
