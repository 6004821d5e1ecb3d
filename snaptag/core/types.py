"""
Type definitions shared across the tagging pipeline and model manager.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Number of tags at which a result is considered fully confident
CONFIDENT_TAG_COUNT = 5

# Fixed bonus for backends that look at the image itself
IMAGE_NATIVE_BONUS = 0.2

# Fixed confidence for tags scraped from non-JSON model output
PLAIN_TEXT_CONFIDENCE = 0.3


def derive_confidence(tag_count: int, bonus: float = 0.0) -> float:
    """Derive a confidence score from the number of extracted tags.

    Args:
        tag_count: Number of distinct tags
        bonus: Additive bonus (image-native backends), capped at 1.0

    Returns:
        Confidence in [0, 1]
    """
    base = min(1.0, tag_count / CONFIDENT_TAG_COUNT) if tag_count > 0 else 0.0
    return min(1.0, base + bonus)


class EnginePreference(str, Enum):
    """User preference for which inference engine to use.

    - NONE: AI tagging disabled
    - CLOUD: remote cloud model only
    - ON_DEVICE: system-installed model runtime only
    - LOCAL: locally hosted GGUF models only
    - AUTO: cloud, then on-device, then local
    """

    NONE = "none"
    CLOUD = "cloud"
    ON_DEVICE = "on_device"
    LOCAL = "local"
    AUTO = "auto"

    @classmethod
    def parse(cls, value: Optional[str]) -> "EnginePreference":
        """Parse a stored preference string, falling back to AUTO."""
        if value is None:
            return cls.AUTO
        try:
            return cls(value.strip().lower())
        except ValueError:
            return cls.AUTO

    @property
    def display_name(self) -> str:
        return {
            EnginePreference.NONE: "Disabled",
            EnginePreference.CLOUD: "Cloud API",
            EnginePreference.ON_DEVICE: "On-device model",
            EnginePreference.LOCAL: "Local model",
            EnginePreference.AUTO: "Automatic (recommended)",
        }[self]


class InputKind(str, Enum):
    """What a backend is asked to look at."""

    TEXT = "text"
    IMAGE = "image"


class BackendKind(str, Enum):
    """Concrete backend slots known to the orchestrator."""

    CLOUD = "cloud"
    ON_DEVICE = "on_device"
    LOCAL_TEXT = "local_text"
    LOCAL_VISION = "local_vision"


class ExtractedResult(BaseModel):
    """Tags and description extracted from a photo.

    Tags behave as an ordered set: duplicates are dropped on construction
    and first-seen order is kept.
    """

    tags: List[str] = Field(default_factory=list)
    description: Optional[str] = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)

    @field_validator("tags")
    @classmethod
    def _dedupe_tags(cls, value: List[str]) -> List[str]:
        return list(dict.fromkeys(value))

    @property
    def has_valid_data(self) -> bool:
        """True when the result carries at least one tag or a description."""
        return bool(self.tags) or self.description is not None

    @classmethod
    def from_tags(
        cls,
        tags: Iterable[str],
        description: Optional[str] = None,
        bonus: float = 0.0,
    ) -> "ExtractedResult":
        """Build a result whose confidence is derived from its tag count."""
        unique = list(dict.fromkeys(tags))
        return cls(
            tags=unique,
            description=description,
            confidence=derive_confidence(len(unique), bonus),
        )

    @classmethod
    def empty(cls) -> "ExtractedResult":
        return cls()


class DownloadState(str, Enum):
    """State of a single file transfer."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ArtifactState(str, Enum):
    """Lifecycle state of a model artifact set."""

    NOT_DOWNLOADED = "not_downloaded"
    DOWNLOADING = "downloading"
    DOWNLOADED = "downloaded"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ArtifactRole(str, Enum):
    """Role a file plays inside a model artifact set."""

    LANGUAGE_MODEL = "language_model"
    VISION_PROJECTOR = "vision_projector"


class DownloadJob(BaseModel):
    """One file transfer within an artifact download.

    The job occupies the half-open progress interval
    [progress_offset, progress_offset + progress_scale) of the overall
    download.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    id: str
    role: ArtifactRole
    source_url: str
    destination_path: Path
    expected_size_bytes: int
    bytes_written: int = 0
    state: DownloadState = DownloadState.PENDING
    failure_reason: Optional[str] = None
    progress_offset: float = 0.0
    progress_scale: float = 1.0

    def overall_progress(self, total_bytes: Optional[int] = None) -> float:
        """Map this job's byte count onto the overall progress range."""
        total = total_bytes if total_bytes and total_bytes > 0 else self.expected_size_bytes
        if total <= 0:
            return self.progress_offset
        fraction = min(1.0, self.bytes_written / total)
        return self.progress_offset + fraction * self.progress_scale


@dataclass(frozen=True)
class ArtifactFile:
    """A required file of a model artifact set."""

    role: ArtifactRole
    file_name: str
    download_url: str
    expected_size_bytes: int


@dataclass(frozen=True)
class ModelArtifactSpec:
    """Static description of a local model family.

    Attributes:
        key: Short identifier ("text", "vision")
        name: Human-readable model name
        directory: Directory name under the models root
        files: Required files, in download order
    """

    key: str
    name: str
    directory: str
    files: Tuple[ArtifactFile, ...] = field(default_factory=tuple)

    @property
    def total_size_bytes(self) -> int:
        return sum(f.expected_size_bytes for f in self.files)

    @property
    def is_composite(self) -> bool:
        return len(self.files) > 1

    def file_for(self, role: ArtifactRole) -> Optional[ArtifactFile]:
        for artifact_file in self.files:
            if artifact_file.role == role:
                return artifact_file
        return None


@dataclass
class ImportResult:
    """Outcome of importing a pre-downloaded model file."""

    role: ArtifactRole
    is_complete: bool
    missing: List[ArtifactRole] = field(default_factory=list)

    @property
    def message(self) -> str:
        label = _ROLE_LABELS[self.role]
        if self.is_complete:
            return f"Imported {label}. The model is ready to use."
        missing = ", ".join(_ROLE_LABELS[r] for r in self.missing)
        return f"Imported {label}. Still missing: {missing}."


_ROLE_LABELS = {
    ArtifactRole.LANGUAGE_MODEL: "language model (ggml-model)",
    ArtifactRole.VISION_PROJECTOR: "vision projector (mmproj)",
}


class PhotoMetadata(BaseModel):
    """EXIF-derived metadata for one photo."""

    width: Optional[int] = None
    height: Optional[int] = None
    orientation: Optional[int] = None
    captured_at: Optional[datetime] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    camera_make: Optional[str] = None
    camera_model: Optional[str] = None
    size_bytes: int = 0

    @property
    def has_location(self) -> bool:
        return self.latitude is not None and self.longitude is not None
