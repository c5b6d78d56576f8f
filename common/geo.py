from __future__ import annotations

from typing import Tuple
import math
import numpy as np

from common.types import Extent


# --- Web Mercator (EPSG:3857) constants ---
EARTH_RADIUS_M = 6378137.0
MAX_MERCATOR_LAT = 85.05112878
_HALF_WORLD = 20037508.342789244

WEB_MERCATOR_EXTENT = Extent(-_HALF_WORLD, -_HALF_WORLD, _HALF_WORLD, _HALF_WORLD)

# 1 << 30 tiles per axis; past this the grid is finer than double precision helps with.
MAX_ZOOM = 30

TILE_SCHEMES = ("xyz", "tms")


# -------------------------
# Tile grid
# -------------------------
def tile_extent(
    zoom: int,
    column: int,
    row: int,
    world: Extent = WEB_MERCATOR_EXTENT,
    scheme: str = "xyz",
) -> Extent:
    """
    Extent of tile (zoom, column, row) in the projected units of `world`.

    The world rectangle is split into a 2^zoom x 2^zoom grid. Columns run west
    to east. Rows follow `scheme`:
      - "xyz": row 0 is the northernmost row (slippy-map / OSM convention)
      - "tms": row 0 is the southernmost row

    Raises ValueError for zoom outside [0, MAX_ZOOM], column/row outside
    [0, 2^zoom), or an unknown scheme.
    """
    if scheme not in TILE_SCHEMES:
        raise ValueError(f"unknown tile scheme: {scheme!r}")
    if zoom < 0 or zoom > MAX_ZOOM:
        raise ValueError(f"zoom must be in [0, {MAX_ZOOM}]")
    n = 1 << zoom
    if not (0 <= column < n) or not (0 <= row < n):
        raise ValueError(f"column/row must be in [0, {n}) at zoom {zoom}")

    if scheme == "xyz":
        row = n - 1 - row

    dx = world.max_x - world.min_x
    dy = world.max_y - world.min_y
    return Extent(
        min_x=world.min_x + column * dx / n,
        min_y=world.min_y + row * dy / n,
        max_x=world.min_x + (column + 1) * dx / n,
        max_y=world.min_y + (row + 1) * dy / n,
    )


# -------------------------
# Lon/lat <-> Web Mercator
# -------------------------
def lonlat_to_mercator(lon, lat):
    """
    WGS84 lon/lat (deg) to Web Mercator x/y (m).

    Accepts scalars or numpy arrays. Latitude is clamped to +/-MAX_MERCATOR_LAT
    so the poles stay finite.
    """
    lon_a = np.asarray(lon, dtype=float)
    lat_a = np.clip(np.asarray(lat, dtype=float), -MAX_MERCATOR_LAT, MAX_MERCATOR_LAT)
    x = EARTH_RADIUS_M * np.radians(lon_a)
    y = EARTH_RADIUS_M * np.log(np.tan(math.pi / 4.0 + np.radians(lat_a) / 2.0))
    if x.ndim == 0:
        return float(x), float(y)
    return x, y


def mercator_to_lonlat(x: float, y: float) -> Tuple[float, float]:
    """Web Mercator x/y (m) to WGS84 lon/lat (deg)."""
    lon = math.degrees(x / EARTH_RADIUS_M)
    lat = math.degrees(2.0 * math.atan(math.exp(y / EARTH_RADIUS_M)) - math.pi / 2.0)
    return lon, lat


def tile_bounds_lonlat(zoom: int, column: int, row: int, scheme: str = "xyz") -> Tuple[float, float, float, float]:
    """Web Mercator tile bounds as (lon_min, lat_min, lon_max, lat_max)."""
    e = tile_extent(zoom, column, row, WEB_MERCATOR_EXTENT, scheme)
    lon_min, lat_min = mercator_to_lonlat(e.min_x, e.min_y)
    lon_max, lat_max = mercator_to_lonlat(e.max_x, e.max_y)
    return (lon_min, lat_min, lon_max, lat_max)
