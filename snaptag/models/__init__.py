"""
Local model weights: built-in model families and their lifecycle manager.
"""

from .artifacts import ModelArtifactManager
from .catalog import MODEL_SPECS, TEXT_MODEL, VISION_MODEL

__all__ = [
    "MODEL_SPECS",
    "ModelArtifactManager",
    "TEXT_MODEL",
    "VISION_MODEL",
]
