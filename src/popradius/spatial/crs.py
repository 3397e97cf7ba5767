"""
Spherical Web Mercator (EPSG:3857) helpers.

Every distance and bounding box in the query engine is measured in this
projection. A radius of 10 km means 10 km of projected meters around the
projected center, not a geodesic distance; that is the accepted distance model.

The helpers take scalars or NumPy arrays so the circle generator can project a
whole ring in one call.
"""

from __future__ import annotations

# `math` supplies pi for the log-tan formula.
import math
from typing import Union

# NumPy lets one call project a scalar or a whole ring of vertices.
import numpy as np

# Sphere radius used by Web Mercator (the WGS84 semi-major axis).
EARTH_RADIUS_M = 6_378_137.0

# Latitude at which Web Mercator becomes a square; beyond it tan() runs off to infinity.
MAX_LATITUDE_DEG = 85.0511287798

ArrayLike = Union[float, np.ndarray]


def lonlat_to_merc(lon_deg: ArrayLike, lat_deg: ArrayLike) -> tuple[ArrayLike, ArrayLike]:
    # Clamp before the log-tan so points at the poles still produce finite coordinates.
    lat = np.clip(np.asarray(lat_deg, dtype=float), -MAX_LATITUDE_DEG, MAX_LATITUDE_DEG)
    # Longitude is not clamped; x is linear in it.
    lon = np.asarray(lon_deg, dtype=float)
    # x: arc length along the equator.
    x = EARTH_RADIUS_M * np.deg2rad(lon)
    # y: the Mercator stretch, ln(tan(pi/4 + lat/2)).
    y = EARTH_RADIUS_M * np.log(np.tan(math.pi / 4.0 + np.deg2rad(lat) / 2.0))
    # Hand back Python floats for scalar input so callers can do plain arithmetic.
    if x.ndim == 0:
        return float(x), float(y)
    return x, y


def merc_to_lonlat(x_m: ArrayLike, y_m: ArrayLike) -> tuple[ArrayLike, ArrayLike]:
    x = np.asarray(x_m, dtype=float)
    y = np.asarray(y_m, dtype=float)
    # The inverse is defined on the whole plane; no clamping needed.
    lon = np.rad2deg(x / EARTH_RADIUS_M)
    # Gudermannian: lat = 2*atan(exp(y/R)) - pi/2.
    lat = np.rad2deg(2.0 * np.arctan(np.exp(y / EARTH_RADIUS_M)) - math.pi / 2.0)
    # Same scalar-in, float-out convention as the forward direction.
    if lon.ndim == 0:
        return float(lon), float(lat)
    return lon, lat


def project_bbox(bounds_lonlat: tuple[float, float, float, float]) -> tuple[float, float, float, float]:
    """
    Project a geographic (min_lon, min_lat, max_lon, max_lat) box into Mercator meters.

    Mercator is monotonic along each axis, so projecting the two corners gives a
    box that still encloses everything inside the geographic box.
    """
    min_lon, min_lat, max_lon, max_lat = bounds_lonlat
    # South-west and north-east corners.
    ax, ay = lonlat_to_merc(min_lon, min_lat)
    cx, cy = lonlat_to_merc(max_lon, max_lat)
    # min/max again so a degenerate or swapped input box still comes out ordered.
    return (min(ax, cx), min(ay, cy), max(ax, cx), max(ay, cy))
