"""
Great-circle distance between clinic coordinates.
"""

import math
from typing import Optional

from ..errors import DataError

EARTH_RADIUS_KM = 6371.0


def parse_coordinate(value, field: str = "coordinate") -> float:
    """
    Parse a coordinate strictly.

    Args:
        value: Raw coordinate (number or numeric string)
        field: Field name used in the error

    Returns:
        Finite float

    Raises:
        DataError: If the value is missing, unparseable or not finite
    """
    if value is None or isinstance(value, bool):
        raise DataError(f"Missing {field}", field=field, value=value)
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise DataError(f"Unparseable {field}: {value!r}", field=field, value=value)
    if not math.isfinite(number):
        raise DataError(f"Non-finite {field}: {value!r}", field=field, value=value)
    return number


def coerce_coordinate(value) -> Optional[float]:
    """Lenient variant of ``parse_coordinate``: bad input becomes None."""
    try:
        return parse_coordinate(value)
    except DataError:
        return None


def haversine_km(lat1, lon1, lat2, lon2) -> Optional[float]:
    """
    Haversine distance in kilometres.

    Any missing or non-finite coordinate makes the distance unknown (None),
    which scoring treats as no contribution rather than near or far.

    Args:
        lat1: Latitude of the first point
        lon1: Longitude of the first point
        lat2: Latitude of the second point
        lon2: Longitude of the second point

    Returns:
        Non-negative distance in km, or None if unknown
    """
    points = [coerce_coordinate(v) for v in (lat1, lon1, lat2, lon2)]
    if any(p is None for p in points):
        return None
    lat1, lon1, lat2, lon2 = points

    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (math.sin(d_lat / 2) ** 2
         + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2))
         * math.sin(d_lon / 2) ** 2)
    # Rounding can push a a hair outside [0, 1]
    a = min(1.0, max(0.0, a))
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c
