"""
Shared utilities for snaptag.
"""

from .geohash import encode as geohash_encode
from .media_utils import MAX_IMAGE_DIMENSION, format_bytes, prepare_jpeg

__all__ = [
    "MAX_IMAGE_DIMENSION",
    "format_bytes",
    "geohash_encode",
    "prepare_jpeg",
]
