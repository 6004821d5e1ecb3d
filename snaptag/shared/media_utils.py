"""
Shared media helpers: byte formatting and image preparation for backends.
"""

import logging
from io import BytesIO
from typing import Optional

from PIL import Image, ImageOps

logger = logging.getLogger(__name__)

# Maximum dimension for images sent to vision models (resize larger images)
MAX_IMAGE_DIMENSION = 1024


def format_bytes(size_bytes: int) -> str:
    """
    Format bytes in human-readable format.

    Args:
        size_bytes: Size in bytes

    Returns:
        Formatted string (e.g., "2.5 GB")
    """
    if size_bytes == 0:
        return "0 B"

    units = ["B", "KB", "MB", "GB", "TB", "PB"]
    unit_index = 0
    size = float(size_bytes)

    while size >= 1000.0 and unit_index < len(units) - 1:
        size /= 1000.0
        unit_index += 1

    if unit_index == 0:
        return f"{int(size)} B"
    return f"{size:.2f} {units[unit_index]}"


def prepare_jpeg(
    image_bytes: bytes,
    max_dimension: int = MAX_IMAGE_DIMENSION,
    quality: int = 85,
) -> Optional[bytes]:
    """Load, orient, resize, and re-encode image bytes as JPEG.

    Args:
        image_bytes: Encoded image in any format Pillow can read
        max_dimension: Longest side after resizing
        quality: JPEG quality

    Returns:
        JPEG bytes, or None if the image could not be decoded
    """
    try:
        image = Image.open(BytesIO(image_bytes))
        image = ImageOps.exif_transpose(image).convert("RGB")
    except Exception as e:
        logger.debug(f"PIL failed to decode image: {e}")
        return None

    max_dim = max(image.size)
    if max_dim > max_dimension:
        ratio = max_dimension / max_dim
        new_size = (int(image.size[0] * ratio), int(image.size[1] * ratio))
        image = image.resize(new_size, Image.Resampling.LANCZOS)
        logger.debug(f"Resized image from {max_dim}px to {max(new_size)}px")

    buffer = BytesIO()
    image.save(buffer, format="JPEG", quality=quality)
    return buffer.getvalue()
