"""
Region dataset loading (Region Store).

The input is a GeoJSON FeatureCollection of administrative polygons. Each
feature becomes one immutable region record:
- a canonical, zero-padded identifier,
- its shapely geometry (Polygon or MultiPolygon, holes allowed),
- a bounding box in Web Mercator meters for the spatial index,
- an area in square meters (taken from the dataset, or computed geodesically),
- one non-negative population count per configured year.

Ingestion is best-effort per feature: a feature without a usable identifier
or polygon is skipped and counted. Only a dataset that cannot be read at all
(or that would break the search's monotonicity) raises `LoadError`.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator

import numpy as np
import pandas as pd
import requests
from pyproj import Geod
from shapely.errors import ShapelyError
from shapely.geometry import MultiPolygon, Polygon, shape

from popradius.errors import LoadError
from popradius.regions.ids import DEFAULT_ID_WIDTH, canonical_id
from popradius.regions.years import PopulationYear, YearCatalog
from popradius.spatial.crs import project_bbox
from popradius.spatial.index import BBox

# Ellipsoidal area is only used when a feature carries no usable area value.
_GEOD = Geod(ellps="WGS84")

# Largest count that float64 sums still represent exactly.
MAX_POPULATION = 2**53


def _log() -> logging.Logger:
    return logging.getLogger("popradius")


@dataclass(frozen=True)
class Region:
    id: str
    geometry: Polygon | MultiPolygon
    bbox: BBox
    area_m2: float
    populations: dict[str, int]

    def population(self, year: PopulationYear) -> int:
        return self.populations.get(year.field, 0)


@dataclass(frozen=True)
class LoadStats:
    features_total: int
    regions_loaded: int
    skipped_no_id: int
    skipped_bad_geometry: int
    skipped_duplicate_id: int
    areas_computed: int
    missing_population_values: int


class RegionStore:
    """
    Authoritative id -> region mapping. Positions (0..n-1) are shared with the
    spatial index so a search hit can be resolved without a dict lookup.
    """

    def __init__(
        self,
        *,
        table: pd.DataFrame,
        geometries: list[Polygon | MultiPolygon],
        years: YearCatalog,
        id_width: int = DEFAULT_ID_WIDTH,
        stats: LoadStats | None = None,
    ) -> None:
        self.table = table
        self.years = years
        self.id_width = id_width
        self.stats = stats
        self._geometries = np.empty(len(geometries), dtype=object)
        self._geometries[:] = geometries
        self._ids: list[str] = [str(i) for i in table.index]
        self._position = {rid: pos for pos, rid in enumerate(self._ids)}
        self._areas = table["area_m2"].to_numpy(dtype=float)
        # One column per year; accessor indices in `years` point into this matrix.
        self._populations = table[[y.field for y in years]].to_numpy(dtype=float)
        self._boxes = [BBox(*row) for row in table[["min_x", "min_y", "max_x", "max_y"]].itertuples(index=False)]

    def __len__(self) -> int:
        return len(self._ids)

    def __contains__(self, region_id: object) -> bool:
        return self._lookup(region_id) is not None

    def _lookup(self, region_id: Any) -> int | None:
        key = canonical_id(region_id, width=self.id_width)
        if key is None:
            return None
        return self._position.get(key)

    def get(self, region_id: Any) -> Region | None:
        """Look up a region by id; "3153019" and "03153019" resolve to the same record."""
        pos = self._lookup(region_id)
        if pos is None:
            return None
        return Region(
            id=self._ids[pos],
            geometry=self._geometries[pos],
            bbox=self._boxes[pos],
            area_m2=float(self._areas[pos]),
            populations={y.field: int(self._populations[pos, y.index]) for y in self.years},
        )

    def index_entries(self) -> Iterator[tuple[BBox, str]]:
        return zip(self._boxes, self._ids)

    # Position-based accessors used by the disc evaluation hot path.
    def ids_at(self, positions: np.ndarray) -> list[str]:
        return [self._ids[int(p)] for p in positions]

    def geometries_at(self, positions: np.ndarray) -> np.ndarray:
        return self._geometries[positions]

    def areas_at(self, positions: np.ndarray) -> np.ndarray:
        return self._areas[positions]

    def populations_at(self, positions: np.ndarray, year: PopulationYear) -> np.ndarray:
        return self._populations[positions, year.index]

    def total_population(self, year: PopulationYear) -> float:
        return float(self._populations[:, year.index].sum())

    def extent(self) -> tuple[float, float, float, float] | None:
        """Geographic (min_lon, min_lat, max_lon, max_lat) over every loaded region."""
        if not self._ids:
            return None
        bounds = np.array([g.bounds for g in self._geometries], dtype=float)
        return (
            float(bounds[:, 0].min()),
            float(bounds[:, 1].min()),
            float(bounds[:, 2].max()),
            float(bounds[:, 3].max()),
        )


def read_dataset(location: str, *, timeout_s: float = 60) -> dict[str, Any]:
    """Fetch a GeoJSON document from an http(s) URL or a local path."""
    loc = str(location)
    try:
        if loc.startswith(("http://", "https://")):
            resp = requests.get(loc, timeout=timeout_s)
            resp.raise_for_status()
            data = resp.json()
        else:
            data = json.loads(Path(loc).read_text(encoding="utf-8"))
    except requests.RequestException as exc:
        raise LoadError(loc, f"request failed: {exc}") from exc
    except OSError as exc:
        raise LoadError(loc, f"cannot read file: {exc}") from exc
    except ValueError as exc:
        # json.JSONDecodeError and requests' JSON errors are both ValueErrors.
        raise LoadError(loc, f"invalid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise LoadError(loc, "top-level JSON value is not an object")
    return data


def _pick_id(feature: dict[str, Any], props: dict[str, Any], id_fields: list[str], width: int) -> str | None:
    # The first configured field that is present decides; a present-but-invalid code is not rescued.
    for field in id_fields:
        if field in props and props[field] is not None:
            return canonical_id(props[field], width=width)
    return canonical_id(feature.get("id"), width=width)


def _parse_geometry(raw: Any) -> Polygon | MultiPolygon | None:
    if not isinstance(raw, dict) or raw.get("type") not in ("Polygon", "MultiPolygon"):
        return None
    try:
        geom = shape(raw)
        # Self-intersecting rings make the predicate unreliable; buffer(0) rebuilds them.
        if not geom.is_valid:
            geom = geom.buffer(0)
    except (ShapelyError, ValueError, TypeError, IndexError, KeyError):
        return None
    if geom.is_empty or not isinstance(geom, (Polygon, MultiPolygon)):
        return None
    return geom


def geodesic_area_m2(geom: Polygon | MultiPolygon) -> float:
    # pyproj returns a signed area (negative for clockwise exteriors).
    area, _ = _GEOD.geometry_area_perimeter(geom)
    return abs(float(area))


def load_regions(
    raw: dict[str, Any],
    *,
    years: YearCatalog,
    id_fields: list[str] | None = None,
    id_width: int = DEFAULT_ID_WIDTH,
    area_field: str = "area",
    location: str = "<memory>",
) -> RegionStore:
    if not isinstance(raw, dict) or raw.get("type") != "FeatureCollection":
        raise LoadError(location, "dataset is not a GeoJSON FeatureCollection")
    features = raw.get("features")
    if not isinstance(features, list):
        raise LoadError(location, "FeatureCollection has no 'features' list")

    id_fields = list(id_fields or ["AGS", "id"])
    ids: list[str] = []
    geoms: list[Polygon | MultiPolygon] = []
    props_rows: list[dict[str, Any]] = []
    seen: set[str] = set()
    skipped_no_id = skipped_geom = skipped_dup = 0

    for feature in features:
        if not isinstance(feature, dict):
            skipped_geom += 1
            continue
        props = feature.get("properties")
        if not isinstance(props, dict):
            props = {}
        region_id = _pick_id(feature, props, id_fields, id_width)
        if region_id is None:
            skipped_no_id += 1
            continue
        geom = _parse_geometry(feature.get("geometry"))
        if geom is None:
            skipped_geom += 1
            continue
        if region_id in seen:
            skipped_dup += 1
            continue
        seen.add(region_id)
        ids.append(region_id)
        geoms.append(geom)
        props_rows.append(props)

    if not ids:
        raise LoadError(location, "no feature with a valid identifier and polygon geometry")

    props_df = pd.DataFrame(props_rows)
    columns = {str(c) for c in props_df.columns}
    if not any(y.field in columns for y in years):
        raise LoadError(location, f"no configured population field present (expected one of {[y.field for y in years]})")
    present_years = years.restricted_to(columns)

    table = pd.DataFrame(index=pd.Index(ids, name="id"))

    missing_total = 0
    for year in present_years:
        values = pd.to_numeric(props_df[year.field], errors="coerce")
        # Bisection needs totals that never shrink as the disc grows, so negatives are fatal.
        # Counts above 2**53 lose integer precision in the float64 sums (and overflow int64 storage).
        bad = values.lt(0) | values.gt(MAX_POPULATION) | np.isinf(values.to_numpy(dtype=float))
        if bad.any():
            first = ids[int(np.flatnonzero(bad.to_numpy())[0])]
            raise LoadError(location, f"negative, infinite, or oversized {year.field} for region {first}")
        missing = values.isna()
        missing_total += int(missing.sum())
        table[year.field] = values.fillna(0).round().astype("int64").to_numpy()

    if area_field in props_df.columns:
        areas = np.array(pd.to_numeric(props_df[area_field], errors="coerce"), dtype=float)
    else:
        areas = np.full(len(ids), np.nan)
    needs_area = ~np.isfinite(areas) | (areas <= 0)
    for pos in np.flatnonzero(needs_area):
        areas[pos] = geodesic_area_m2(geoms[pos])
    table["area_m2"] = areas

    boxes = np.array([project_bbox(g.bounds) for g in geoms], dtype=float)
    table["min_x"] = boxes[:, 0]
    table["min_y"] = boxes[:, 1]
    table["max_x"] = boxes[:, 2]
    table["max_y"] = boxes[:, 3]

    stats = LoadStats(
        features_total=len(features),
        regions_loaded=len(ids),
        skipped_no_id=skipped_no_id,
        skipped_bad_geometry=skipped_geom,
        skipped_duplicate_id=skipped_dup,
        areas_computed=int(needs_area.sum()),
        missing_population_values=missing_total,
    )
    logger = _log()
    logger.info(
        "Loaded %d regions from %s (skipped: %d no id, %d bad geometry, %d duplicate)",
        stats.regions_loaded,
        location,
        skipped_no_id,
        skipped_geom,
        skipped_dup,
    )
    if missing_total:
        logger.warning("Treated %d missing population values as 0", missing_total)
    if stats.areas_computed:
        logger.info("Computed geodesic area for %d regions without an area value", stats.areas_computed)

    return RegionStore(table=table, geometries=geoms, years=present_years, id_width=id_width, stats=stats)


def load_region_store(settings: dict[str, Any], location: str | None = None) -> RegionStore:
    """Read and load the dataset named by `location` (or `dataset.location` in settings)."""
    ds = settings.get("dataset", {}) or {}
    loc = location or ds.get("location")
    if not loc:
        raise LoadError("<unset>", "no dataset location configured")
    raw = read_dataset(str(loc), timeout_s=float(ds.get("timeout_s", 60)))
    return load_regions(
        raw,
        years=YearCatalog.from_settings(settings["years"]),
        id_fields=list(ds.get("id_fields") or ["AGS", "id"]),
        id_width=int(ds.get("id_width", DEFAULT_ID_WIDTH)),
        area_field=str(ds.get("area_field", "area")),
        location=str(loc),
    )
