"""
Disc polygons built in Web Mercator meters.

A query disc is a true circle in projected space: we project the center, walk
`steps` evenly spaced angles at the requested radius, and invert each vertex
back to lon/lat. The resulting geographic ring is what the intersection
predicate tests region polygons against, so "radius" always means projected
meters, at every scale.
"""

from __future__ import annotations

# `math` supplies 2*pi for the angle sweep.
import math
from typing import Any

# NumPy computes every vertex of the ring in one vectorized pass.
import numpy as np
# shapely's Polygon is what the intersection predicate consumes.
from shapely.geometry import Polygon

# Projection helpers: the circle is round in Mercator meters, not in degrees.
from popradius.spatial.crs import lonlat_to_merc, merc_to_lonlat

# Fixed tessellation density; the chord error stays below 0.014% of the radius.
DEFAULT_STEPS = 192
# Below this the "circle" is too coarse to be useful as a disc.
MIN_STEPS = 8


def circle_ring_lonlat(
    *,
    center_lon: float,
    center_lat: float,
    radius_m: float,
    steps: int = DEFAULT_STEPS,
) -> list[list[float]]:
    """
    Approximate a Mercator-space circle as a closed lon/lat ring.
    Output format matches GeoJSON coordinates: [[lon, lat], ...].
    """
    # `not radius_m > 0` also rejects NaN.
    if not radius_m > 0:
        raise ValueError("radius_m must be > 0")
    if steps < MIN_STEPS:
        raise ValueError(f"steps must be >= {MIN_STEPS}")

    # Work around the projected center.
    x0, y0 = lonlat_to_merc(center_lon, center_lat)

    # `endpoint=False`: the closing vertex is appended below, not sampled twice.
    angles = np.linspace(0.0, 2.0 * math.pi, steps, endpoint=False)
    xs = x0 + radius_m * np.cos(angles)
    ys = y0 + radius_m * np.sin(angles)
    # Back to lon/lat so the ring lives in the same space as the region polygons.
    lons, lats = merc_to_lonlat(xs, ys)

    # Plain floats keep the ring JSON-serializable.
    coords = [[float(lon), float(lat)] for lon, lat in zip(lons, lats)]
    # GeoJSON rings repeat the first vertex at the end.
    coords.append(coords[0])
    return coords


def make_circle(
    center: tuple[float, float],
    radius_m: float,
    steps: int = DEFAULT_STEPS,
) -> Polygon:
    """Build the disc around `center` (lon, lat) as a shapely polygon in lon/lat."""
    lon, lat = center
    ring = circle_ring_lonlat(center_lon=lon, center_lat=lat, radius_m=radius_m, steps=steps)
    # Single exterior ring, no holes.
    return Polygon(ring)


def circle_feature(circle: Polygon, radius_m: float) -> dict[str, Any]:
    # Render-ready wrapper; a map layer can draw this directly.
    return {
        "type": "Feature",
        "properties": {"radiusMeters": float(radius_m)},
        "geometry": {
            "type": "Polygon",
            "coordinates": [[[float(x), float(y)] for x, y in circle.exterior.coords]],
        },
    }
