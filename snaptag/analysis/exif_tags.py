"""
Heuristic tags derived from EXIF metadata.

These tags never involve an inference backend:
- camera vendor from Make/Model
- season from the capture month
- time of day from the capture hour
- locality from GPS coordinates (optional reverse geocoding)

Example:
    >>> season_tag(4)
    '春'
    >>> time_of_day_tag(12) is None
    True
"""

import logging
from datetime import datetime
from io import BytesIO
from typing import Any, Dict, List, Optional, Protocol, Tuple

import arrow
import httpx
from PIL import ExifTags, Image

from ..core.types import PhotoMetadata
from ..shared import geohash

logger = logging.getLogger(__name__)

EXIF_DATE_FORMAT = "YYYY:MM:DD HH:mm:ss"

# Substring of the lowercased Make field -> vendor tag
VENDOR_TAGS: Dict[str, str] = {
    "canon": "canon",
    "nikon": "nikon",
    "sony": "sony",
    "fujifilm": "fujifilm",
    "olympus": "olympus",
    "om digital": "olympus",
    "panasonic": "panasonic",
    "leica": "leica",
    "ricoh": "ricoh",
    "pentax": "pentax",
    "apple": "iphone",
    "google": "pixel",
    "samsung": "galaxy",
    "dji": "dji",
    "gopro": "gopro",
}

# Month -> season tag
SEASON_TAGS: Dict[int, str] = {
    **dict.fromkeys((3, 4, 5), "春"),
    **dict.fromkeys((6, 7, 8), "夏"),
    **dict.fromkeys((9, 10, 11), "秋"),
    **dict.fromkeys((12, 1, 2), "冬"),
}


def vendor_tag(make: Optional[str], model: Optional[str] = None) -> Optional[str]:
    """Map camera make/model to a canonical vendor tag."""
    if not make and not model:
        return None
    make_key = (make or "").strip().lower()
    model_key = (model or "").strip().lower()

    if "apple" in make_key and model_key.startswith("ipad"):
        return "ipad"

    for needle, tag in VENDOR_TAGS.items():
        if needle in make_key:
            return tag

    # Some phones leave Make empty but put the brand in Model
    for needle, tag in VENDOR_TAGS.items():
        if model_key.startswith(needle):
            return tag
    if model_key.startswith("iphone"):
        return "iphone"
    return None


def season_tag(month: Optional[int]) -> Optional[str]:
    if month is None:
        return None
    return SEASON_TAGS.get(month)


def time_of_day_tag(hour: Optional[int]) -> Optional[str]:
    """Map the capture hour to a time-of-day tag.

    4-6 early morning, 7-9 morning, 16-18 evening, 19-3 night. Midday
    (10-15) gets no tag because it says nothing about the photo.
    """
    if hour is None or not 0 <= hour <= 23:
        return None
    if 4 <= hour <= 6:
        return "早朝"
    if 7 <= hour <= 9:
        return "朝"
    if 10 <= hour <= 15:
        return None
    if 16 <= hour <= 18:
        return "夕方"
    return "夜"


def parse_exif_date(value: Any) -> Optional[datetime]:
    """Parse an EXIF date string to a naive datetime."""
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        return arrow.get(value.strip("\x00 "), EXIF_DATE_FORMAT, normalize_whitespace=True).naive
    except (arrow.ParserError, ValueError):
        logger.debug(f"Unparseable EXIF date: {value!r}")
        return None


def gps_to_decimal(value: Any, ref: Any) -> Optional[float]:
    """Convert an EXIF (degrees, minutes, seconds) triple to signed degrees."""
    try:
        degrees, minutes, seconds = (float(v) for v in value)
    except (TypeError, ValueError, ZeroDivisionError):
        return None
    decimal = degrees + minutes / 60.0 + seconds / 3600.0
    if isinstance(ref, bytes):
        ref = ref.decode("ascii", errors="ignore")
    if isinstance(ref, str) and ref.strip().upper() in ("S", "W"):
        decimal = -decimal
    return decimal


def _clean_string(value: Any) -> Optional[str]:
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="ignore")
    if not isinstance(value, str):
        return None
    value = value.strip("\x00 ").strip()
    return value or None


def read_photo_metadata(image_bytes: bytes) -> PhotoMetadata:
    """Read EXIF metadata from encoded image bytes.

    Never raises; undecodable images yield metadata with only the size set.
    """
    metadata = PhotoMetadata(size_bytes=len(image_bytes))
    try:
        with Image.open(BytesIO(image_bytes)) as image:
            metadata.width, metadata.height = image.size
            exif = image.getexif()
    except Exception as e:
        logger.debug(f"Could not read image metadata: {e}")
        return metadata

    metadata.orientation = exif.get(ExifTags.Base.Orientation)
    metadata.camera_make = _clean_string(exif.get(ExifTags.Base.Make))
    metadata.camera_model = _clean_string(exif.get(ExifTags.Base.Model))

    exif_ifd = exif.get_ifd(ExifTags.IFD.Exif)
    metadata.captured_at = (
        parse_exif_date(exif_ifd.get(ExifTags.Base.DateTimeOriginal))
        or parse_exif_date(exif_ifd.get(ExifTags.Base.DateTimeDigitized))
        or parse_exif_date(exif.get(ExifTags.Base.DateTime))
    )

    gps_ifd = exif.get_ifd(ExifTags.IFD.GPSInfo)
    if gps_ifd:
        latitude = gps_to_decimal(
            gps_ifd.get(ExifTags.GPS.GPSLatitude), gps_ifd.get(ExifTags.GPS.GPSLatitudeRef)
        )
        longitude = gps_to_decimal(
            gps_ifd.get(ExifTags.GPS.GPSLongitude), gps_ifd.get(ExifTags.GPS.GPSLongitudeRef)
        )
        if latitude is not None and longitude is not None:
            metadata.latitude = latitude
            metadata.longitude = longitude

    return metadata


class ReverseGeocoder(Protocol):
    """Resolves coordinates to a locality or region name."""

    async def reverse(self, latitude: float, longitude: float) -> Optional[str]: ...


class NominatimGeocoder:
    """Reverse geocoding against an OpenStreetMap Nominatim endpoint.

    Lookups are cached per geohash cell, so a burst of photos from the same
    town costs one request.
    """

    LOCALITY_KEYS: Tuple[str, ...] = ("city", "town", "village", "municipality")
    REGION_KEYS: Tuple[str, ...] = ("state", "province", "region")

    def __init__(
        self,
        url: str = "https://nominatim.openstreetmap.org/reverse",
        client: Optional[httpx.AsyncClient] = None,
        language: str = "ja",
        timeout: float = 10.0,
        user_agent: str = "snaptag",
    ) -> None:
        self.url = url
        self.language = language
        self._client = client
        self._timeout = timeout
        self._user_agent = user_agent
        self._cache: Dict[str, Optional[str]] = {}

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self._timeout, headers={"User-Agent": self._user_agent}
            )
        return self._client

    async def reverse(self, latitude: float, longitude: float) -> Optional[str]:
        try:
            cell = geohash.encode(latitude, longitude, geohash.LOCALITY_PRECISION)
        except ValueError as e:
            logger.debug(f"Invalid coordinates for geocoding: {e}")
            return None
        if cell in self._cache:
            return self._cache[cell]

        params = {
            "format": "jsonv2",
            "lat": f"{latitude:.6f}",
            "lon": f"{longitude:.6f}",
            "zoom": 10,
            "accept-language": self.language,
        }
        try:
            response = await self._get_client().get(self.url, params=params)
            response.raise_for_status()
            address = response.json().get("address", {})
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Reverse geocoding failed for {cell}: {e}")
            return None

        name = None
        for key in self.LOCALITY_KEYS + self.REGION_KEYS:
            if address.get(key):
                name = address[key]
                break
        self._cache[cell] = name
        return name

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()


class ExifTagger:
    """Combines vendor, season, time-of-day and locality tags."""

    def __init__(self, geocoder: Optional[ReverseGeocoder] = None) -> None:
        self.geocoder = geocoder

    async def tags_for(self, metadata: PhotoMetadata) -> List[str]:
        tags: List[str] = []

        vendor = vendor_tag(metadata.camera_make, metadata.camera_model)
        if vendor:
            tags.append(vendor)

        if metadata.captured_at is not None:
            for tag in (
                season_tag(metadata.captured_at.month),
                time_of_day_tag(metadata.captured_at.hour),
            ):
                if tag:
                    tags.append(tag)

        if self.geocoder is not None and metadata.has_location:
            try:
                locality = await self.geocoder.reverse(metadata.latitude, metadata.longitude)
            except Exception as e:
                logger.warning(f"Geocoder raised: {e}")
                locality = None
            if locality:
                tags.append(locality)

        return tags

    async def tags_for_image(self, image_bytes: bytes) -> List[str]:
        """Read metadata from image bytes and derive tags from it."""
        return await self.tags_for(read_photo_metadata(image_bytes))
