"""
Pytest configuration and fixtures for snaptag tests.
"""

from io import BytesIO
from pathlib import Path
from typing import Callable, List, Optional, Tuple

import pytest
from PIL import Image

from snaptag.backends.base import InferenceBackend
from snaptag.core.errors import NotAvailableError
from snaptag.core.types import (
    ArtifactFile,
    ArtifactRole,
    BackendKind,
    ExtractedResult,
    ModelArtifactSpec,
)

# ==============================================================================
# Fake backends
# ==============================================================================


class FakeBackend(InferenceBackend):
    """Scripted backend that records every call made to it."""

    def __init__(
        self,
        kind: BackendKind,
        available: bool = True,
        result: Optional[ExtractedResult] = None,
        error: Optional[Exception] = None,
        supports_text: bool = True,
        supports_image: bool = False,
    ) -> None:
        self.kind = kind
        self.name = f"fake-{kind.value}"
        self.available = available
        self.result = result if result is not None else ExtractedResult.empty()
        self.error = error
        self.supports_text = supports_text
        self.supports_image = supports_image
        self.availability_checks = 0
        self.calls: List[Tuple[str, object]] = []

    async def is_available(self) -> bool:
        self.availability_checks += 1
        return self.available

    async def extract_from_text(self, text: str) -> ExtractedResult:
        self.calls.append(("text", text))
        if self.error is not None:
            raise self.error
        return self.result

    async def extract_from_image(self, image_bytes: bytes) -> ExtractedResult:
        if not self.supports_image:
            raise NotAvailableError(f"{self.name} does not support image input")
        self.calls.append(("image", image_bytes))
        if self.error is not None:
            raise self.error
        return self.result


@pytest.fixture
def make_backend() -> Callable[..., FakeBackend]:
    """Factory for scripted backends."""
    return FakeBackend


@pytest.fixture
def fake_backends() -> dict:
    """One available-but-empty fake per slot, with realistic capabilities."""
    return {
        BackendKind.CLOUD: FakeBackend(BackendKind.CLOUD, supports_image=True),
        BackendKind.ON_DEVICE: FakeBackend(BackendKind.ON_DEVICE),
        BackendKind.LOCAL_TEXT: FakeBackend(BackendKind.LOCAL_TEXT),
        BackendKind.LOCAL_VISION: FakeBackend(
            BackendKind.LOCAL_VISION, supports_text=False, supports_image=True
        ),
    }


# ==============================================================================
# Image fixtures
# ==============================================================================


def _jpeg_bytes(size=(100, 100), color="red", exif: Optional[Image.Exif] = None) -> bytes:
    buffer = BytesIO()
    img = Image.new("RGB", size, color=color)
    if exif is not None:
        img.save(buffer, format="JPEG", exif=exif)
    else:
        img.save(buffer, format="JPEG")
    return buffer.getvalue()


@pytest.fixture
def jpeg_bytes() -> bytes:
    """A small red JPEG without EXIF."""
    return _jpeg_bytes()


@pytest.fixture
def make_jpeg() -> Callable[..., bytes]:
    """Factory for JPEG bytes with optional EXIF."""
    return _jpeg_bytes


@pytest.fixture
def sample_image(tmp_path: Path) -> Path:
    """Create a simple test image on disk."""
    image_path = tmp_path / "test_image.jpg"
    image_path.write_bytes(_jpeg_bytes())
    return image_path


# ==============================================================================
# Model artifact fixtures
# ==============================================================================


@pytest.fixture
def composite_spec() -> ModelArtifactSpec:
    """A tiny two-file vision model served from a fake host."""
    return ModelArtifactSpec(
        key="vision",
        name="Tiny Vision",
        directory="VLMModels",
        files=(
            ArtifactFile(
                ArtifactRole.VISION_PROJECTOR,
                "mmproj-model-f16.gguf",
                "https://models.test/mmproj-model-f16.gguf",
                40,
            ),
            ArtifactFile(
                ArtifactRole.LANGUAGE_MODEL,
                "ggml-model-Q4_0.gguf",
                "https://models.test/ggml-model-Q4_0.gguf",
                60,
            ),
        ),
    )


@pytest.fixture
def single_spec() -> ModelArtifactSpec:
    """A tiny single-file text model."""
    return ModelArtifactSpec(
        key="text",
        name="Tiny Text",
        directory="Models",
        files=(
            ArtifactFile(
                ArtifactRole.LANGUAGE_MODEL,
                "gemma-2b-it-q4_k_m.gguf",
                "https://models.test/gemma-2b-it-q4_k_m.gguf",
                50,
            ),
        ),
    )


class FakeDiskUsage:
    """Stand-in for shutil.disk_usage with a fixed free byte count."""

    def __init__(self, free: int) -> None:
        self.free = free
        self.paths: List[Path] = []

    def __call__(self, path: Path):
        self.paths.append(Path(path))
        return self


@pytest.fixture
def plenty_of_space() -> FakeDiskUsage:
    return FakeDiskUsage(10**12)


@pytest.fixture
def disk_with_free() -> Callable[[int], FakeDiskUsage]:
    """Factory for disk usage stand-ins with a given free byte count."""
    return FakeDiskUsage
