"""
gateway/services/geo_tiles.py

Coarse geographic tiling used as a cheap proxy for "nearby".
Coordinates are quantized onto a fixed TILE_STEP_DEG grid and encoded as
t_<latIndex>_<lngIndex>. Pure functions; callers must reject NaN/None
coordinates before calling in.
"""

import math
import re

import structlog

from gateway.constants import (
    CEP_DIGITS,
    DEFAULT_TILE_RING,
    EARTH_RADIUS_M,
    MAX_TILE_RING,
    TILE_SIZE_M,
    TILE_STEP_DEG,
    TILE_TOPIC_PREFIX,
)

logger = structlog.get_logger(__name__)

_TOPIC_UNSAFE = re.compile(r"[^a-zA-Z0-9\-_.~%]")
_TOPIC_DASHES = re.compile(r"-+")
_NON_DIGITS = re.compile(r"\D+")


def _grid_index(coord: float) -> int:
    # Round half up so keys stay compatible with tiles already stored on devices.
    return math.floor(coord / TILE_STEP_DEG + 0.5)


def tile_key(lat: float, lng: float) -> str:
    """Return the id of the tile containing (lat, lng)."""
    return f"t_{_grid_index(lat)}_{_grid_index(lng)}"


def ring_for_radius(radius_m: float | None) -> int:
    """
    Number of tile rings needed to cover radius_m around the center tile.

    None keeps the fixed 3x3 neighborhood. Otherwise ceil(radius / tile size),
    clamped to [DEFAULT_TILE_RING, MAX_TILE_RING].
    """
    if radius_m is None or not math.isfinite(radius_m) or radius_m <= 0:
        return DEFAULT_TILE_RING
    ring = math.ceil(radius_m / TILE_SIZE_M)
    return max(DEFAULT_TILE_RING, min(ring, MAX_TILE_RING))


def tiles_for_radius(
    lat: float,
    lng: float,
    radius_m: float | None = None,
) -> list[str]:
    """
    Return the square tile neighborhood around (lat, lng), center tile first.

    Without a radius this is always the 3x3 block (9 tiles).
    """
    i = _grid_index(lat)
    j = _grid_index(lng)
    ring = ring_for_radius(radius_m)

    tiles = [f"t_{i}_{j}"]
    for di in range(-ring, ring + 1):
        for dj in range(-ring, ring + 1):
            if di == 0 and dj == 0:
                continue
            tiles.append(f"t_{i + di}_{j + dj}")

    logger.debug("tiles_computed", center=tiles[0], ring=ring, count=len(tiles))
    return tiles


def tile_topic(tile: str) -> str:
    """FCM topic name for a tile. FCM accepts [a-zA-Z0-9-_.~%]+ only."""
    safe = _TOPIC_DASHES.sub("-", _TOPIC_UNSAFE.sub("-", str(tile)))
    return f"{TILE_TOPIC_PREFIX}{safe[:200]}"


def finite_float(value: object) -> float | None:
    """Return value as a finite float, or None for missing/NaN/inf/garbage."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def normalize_cep(cep: object) -> str | None:
    """Keep digits only, truncated to a Brazilian postal code length."""
    if cep is None:
        return None
    digits = _NON_DIGITS.sub("", str(cep))[:CEP_DIGITS]
    return digits or None


def haversine_m(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance in meters between two points."""
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    )
    return 2 * EARTH_RADIUS_M * math.asin(math.sqrt(a))
