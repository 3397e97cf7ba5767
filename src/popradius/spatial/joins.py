"""
Disc/region joins.

`evaluate_disc` answers "which regions does a disc of radius r touch, and what
do they add up to?" in two stages:
1) prune with the bounding-box index, using the square that bounds the disc in
   Mercator meters;
2) run the exact polygon predicate `intersects` (shapely/GEOS) on the
   surviving candidates, all at once, against the tessellated disc.

Only stage 2 decides membership. Touching counts as intersecting.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import numpy as np
import shapely
from shapely.geometry import MultiPolygon, Polygon

from popradius.spatial.buffers import DEFAULT_STEPS, make_circle
from popradius.spatial.crs import lonlat_to_merc
from popradius.spatial.index import BBox, BBoxIndex

if TYPE_CHECKING:
    from popradius.regions.load import RegionStore
    from popradius.regions.years import PopulationYear


@dataclass(frozen=True)
class DiscSummary:
    radius_km: float
    total_value: float
    total_area_m2: float
    count: int
    circle: Polygon
    # Filled only when the caller asks for ids (the final evaluation of a search).
    ids: list[str] = field(default_factory=list)


def intersects(circle: Polygon, regions: Polygon | MultiPolygon | np.ndarray) -> bool | np.ndarray:
    """
    True where a region shares any boundary or interior point with the disc.

    Pass one geometry for a single answer, or an object array of geometries for
    one boolean per region (GEOS evaluates the whole array in one call).
    Holes and multi-part regions are handled by GEOS itself.
    """
    result = shapely.intersects(circle, regions)
    # Array in, array out; a scalar geometry comes back as numpy.bool_, which we unwrap.
    if isinstance(result, np.ndarray):
        return result.astype(bool)
    return bool(result)


def disc_search_box(center: tuple[float, float], radius_m: float) -> BBox:
    # The disc is round in Mercator meters, so its bounding square is center +/- radius there.
    x, y = lonlat_to_merc(center[0], center[1])
    return BBox.around(x, y, radius_m)


def evaluate_disc(
    store: "RegionStore",
    index: BBoxIndex,
    *,
    center: tuple[float, float],
    radius_km: float,
    year: "PopulationYear",
    steps: int = DEFAULT_STEPS,
    need_ids: bool = False,
) -> DiscSummary:
    # Radii travel in km through the search; geometry works in projected meters.
    radius_m = radius_km * 1000.0
    # The disc polygon is built in Mercator and inverted to lon/lat, like the region polygons.
    circle = make_circle(center, radius_m, steps=steps)
    # Stage 1: every region whose box overlaps the disc's bounding square (a superset).
    candidates = index.search_positions(disc_search_box(center, radius_m))

    if candidates.size:
        # Preparing the disc once speeds up every candidate test that follows.
        shapely.prepare(circle)
        # Stage 2: the exact predicate decides; box-only overlaps are dropped here.
        hits = candidates[intersects(circle, store.geometries_at(candidates))]
    else:
        # Nothing near the disc: skip GEOS entirely.
        hits = candidates

    # Sums over positions; an empty selection must still report clean zeros.
    total_value = float(store.populations_at(hits, year).sum()) if hits.size else 0.0
    total_area = float(store.areas_at(hits).sum()) if hits.size else 0.0
    return DiscSummary(
        radius_km=radius_km,
        total_value=total_value,
        total_area_m2=total_area,
        count=int(hits.size),
        circle=circle,
        # Id lists are only materialized on request; the expansion and bisection steps skip them.
        ids=store.ids_at(hits) if need_ids else [],
    )
