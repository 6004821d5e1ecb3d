"""
Exception hierarchy for extraction and model management.

Extraction errors are raised by backends and absorbed by the fallback
orchestrator; download and storage errors come from explicit user actions
and always reach the caller.
"""

from typing import Optional


class SnaptagError(Exception):
    """Base exception for snaptag."""


class NotAvailableError(SnaptagError):
    """Raised when AI tagging is disabled or no backend is usable."""

    def __init__(self, message: str = "No inference backend is available") -> None:
        super().__init__(message)


class ModelNotLoadedError(SnaptagError):
    """Raised when a local backend is selected but its weights are absent."""

    def __init__(self, message: str = "Model is not loaded") -> None:
        super().__init__(message)


class ExtractionFailedError(SnaptagError):
    """Raised when a backend fails for a backend-specific reason."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Tag extraction failed: {reason}")


class InvalidResponseError(SnaptagError):
    """Raised when a backend returns output that cannot be interpreted."""

    def __init__(self, message: str = "Invalid response from backend") -> None:
        super().__init__(message)


class DownloadFailedError(SnaptagError):
    """Raised when a model download or import fails."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Model download failed: {reason}")


class InsufficientStorageError(SnaptagError):
    """Raised before a download when the volume lacks free space."""

    def __init__(
        self, required_bytes: Optional[int] = None, available_bytes: Optional[int] = None
    ) -> None:
        self.required_bytes = required_bytes
        self.available_bytes = available_bytes
        if required_bytes is not None and available_bytes is not None:
            message = (
                f"Insufficient storage: {required_bytes} bytes required, "
                f"{available_bytes} available"
            )
        else:
            message = "Insufficient storage"
        super().__init__(message)
