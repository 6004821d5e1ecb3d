"""Geohash cells for caching reverse-geocoding lookups.

Photos taken a few hundred meters apart resolve to the same locality, so
lookups are cached per geohash cell instead of per coordinate pair.

Cell sizes by precision:
- 4: ~39km (county)
- 5: ~5km (city)
- 6: ~1.2km (neighborhood)
"""

# Base32 alphabet used for geohash encoding (excludes a, i, l, o)
GEOHASH_ALPHABET = "0123456789bcdefghjkmnpqrstuvwxyz"

# Cell used for locality caching
LOCALITY_PRECISION = 5


def encode(latitude: float, longitude: float, precision: int = LOCALITY_PRECISION) -> str:
    """
    Encode latitude/longitude to a geohash string.

    Args:
        latitude: Latitude in degrees (-90 to 90)
        longitude: Longitude in degrees (-180 to 180)
        precision: Length of the resulting geohash (1-12)

    Returns:
        Geohash string of the specified precision

    Example:
        >>> encode(37.7749, -122.4194, 5)
        '9q8yy'
    """
    if not -90 <= latitude <= 90:
        raise ValueError(f"Latitude must be between -90 and 90, got {latitude}")
    if not -180 <= longitude <= 180:
        raise ValueError(f"Longitude must be between -180 and 180, got {longitude}")
    if not 1 <= precision <= 12:
        raise ValueError(f"Precision must be between 1 and 12, got {precision}")

    lat_lo, lat_hi = -90.0, 90.0
    lon_lo, lon_hi = -180.0, 180.0

    chars = []
    bits = 0
    bit_count = 0
    even = True  # even bits refine longitude

    while len(chars) < precision:
        if even:
            mid = (lon_lo + lon_hi) / 2
            bit = longitude >= mid
            lon_lo, lon_hi = (mid, lon_hi) if bit else (lon_lo, mid)
        else:
            mid = (lat_lo + lat_hi) / 2
            bit = latitude >= mid
            lat_lo, lat_hi = (mid, lat_hi) if bit else (lat_lo, mid)

        bits = (bits << 1) | int(bit)
        bit_count += 1
        even = not even

        if bit_count == 5:
            chars.append(GEOHASH_ALPHABET[bits])
            bits = 0
            bit_count = 0

    return "".join(chars)
