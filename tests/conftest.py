"""
Synthetic region datasets for tests.

Regions are squares laid out at known offsets in Web Mercator meters around a
center point, so expected radii can be read straight off the layout.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest

from popradius.spatial.crs import lonlat_to_merc, merc_to_lonlat

CENTER = (10.0, 51.0)


def square_feature(
    region_id: Any,
    *,
    dx_m: float,
    dy_m: float,
    half_size_m: float,
    props: dict[str, Any] | None = None,
    center: tuple[float, float] = CENTER,
) -> dict[str, Any]:
    x0, y0 = lonlat_to_merc(*center)
    cx, cy = x0 + dx_m, y0 + dy_m
    corners = [
        (cx - half_size_m, cy - half_size_m),
        (cx + half_size_m, cy - half_size_m),
        (cx + half_size_m, cy + half_size_m),
        (cx - half_size_m, cy + half_size_m),
    ]
    ring = [list(merc_to_lonlat(x, y)) for x, y in corners]
    ring.append(ring[0])
    properties = {"AGS": region_id}
    properties.update(props or {})
    return {
        "type": "Feature",
        "properties": properties,
        "geometry": {"type": "Polygon", "coordinates": [ring]},
    }


def feature_collection(features: list[dict[str, Any]]) -> dict[str, Any]:
    return {"type": "FeatureCollection", "features": features}


@pytest.fixture()
def row_dataset() -> dict[str, Any]:
    """
    Four 2 km squares east of CENTER, 100 people each (pop_2019), 10 in 1871.
    Nearest edges sit at 0 km (contains center), 9 km, 19 km, and 39 km.
    """
    features = [
        square_feature(f"0100000{i}", dx_m=dx, dy_m=0.0, half_size_m=1000.0, props={"pop_2019": 100, "pop_1871": 10, "area": 4_000_000})
        for i, dx in enumerate([0.0, 10_000.0, 20_000.0, 40_000.0], start=1)
    ]
    return feature_collection(features)


@pytest.fixture()
def row_dataset_path(tmp_path: Path, row_dataset: dict[str, Any]) -> Path:
    path = tmp_path / "regions.geojson"
    path.write_text(json.dumps(row_dataset), encoding="utf-8")
    return path
