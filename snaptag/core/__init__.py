"""Core types, errors and settings."""

from .errors import (
    DownloadFailedError,
    ExtractionFailedError,
    InsufficientStorageError,
    InvalidResponseError,
    ModelNotLoadedError,
    NotAvailableError,
    SnaptagError,
)
from .types import (
    ArtifactRole,
    ArtifactState,
    BackendKind,
    DownloadState,
    EnginePreference,
    ExtractedResult,
    InputKind,
)

__all__ = [
    "ArtifactRole",
    "ArtifactState",
    "BackendKind",
    "DownloadFailedError",
    "DownloadState",
    "EnginePreference",
    "ExtractedResult",
    "ExtractionFailedError",
    "InputKind",
    "InsufficientStorageError",
    "InvalidResponseError",
    "ModelNotLoadedError",
    "NotAvailableError",
    "SnaptagError",
]
