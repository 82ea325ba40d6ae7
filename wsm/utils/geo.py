# wsm/utils/geo.py

"""
Location identity helpers.

Two readings belong to the same location if and only if their coordinates,
rounded half-up to three decimals, are equal. The canonical string form of
that rounded pair is the ``location_key`` stored with every observation.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Tuple

KEY_PRECISION = Decimal("0.001")


def round_coordinate(value: float) -> float:
    """
    Round a latitude or longitude to three decimals, half away from zero.

    Parameters
    ----------
    value
        Coordinate in decimal degrees.

    Returns
    -------
    float
        The rounded coordinate. Negative zero is normalized to 0.0.
    """
    rounded = Decimal(repr(float(value))).quantize(KEY_PRECISION, rounding=ROUND_HALF_UP)
    return float(rounded) + 0.0


def location_key(lat: float, lon: float) -> str:
    """
    Build the canonical key for a coordinate, e.g. ``lat=40.713,lon=-74.006``.
    """
    return f"lat={round_coordinate(lat):.3f},lon={round_coordinate(lon):.3f}"


def parse_location_key(key: Optional[str]) -> Tuple[float, float]:
    """
    Recover (lat, lon) from a location key.

    Malformed parts decode as 0.0, matching how the results screen treats
    unreadable keys.
    """
    if not key:
        return 0.0, 0.0
    values = {}
    for part in key.split(","):
        name, _, raw = part.partition("=")
        try:
            values[name.strip()] = float(raw)
        except ValueError:
            values[name.strip()] = 0.0
    return values.get("lat", 0.0), values.get("lon", 0.0)
