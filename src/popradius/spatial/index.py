"""
Bulk-loaded bounding-box index over region extents.

The index only prunes. `search` may return regions whose boxes overlap the
query box but whose polygons do not touch the disc; the intersection predicate
in `popradius.spatial.joins` makes the final call. It must never drop a region
whose box overlaps, which is what STRtree's envelope query guarantees.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

# NumPy arrays of positions let callers index the region table directly.
import numpy as np
# shapely builds the envelope rectangles and owns the packed R-tree.
import shapely
from shapely.strtree import STRtree


@dataclass(frozen=True)
class BBox:
    """Axis-aligned box in projected meters."""

    min_x: float
    min_y: float
    max_x: float
    max_y: float

    @classmethod
    def around(cls, x: float, y: float, half_size: float) -> "BBox":
        # Square that bounds a disc of radius `half_size` centered at (x, y).
        return cls(x - half_size, y - half_size, x + half_size, y + half_size)

    def overlaps(self, other: "BBox") -> bool:
        # Touching edges count as overlap.
        return not (
            other.min_x > self.max_x
            or other.max_x < self.min_x
            or other.min_y > self.max_y
            or other.max_y < self.min_y
        )

    def as_tuple(self) -> tuple[float, float, float, float]:
        # Argument order of `shapely.box`.
        return (self.min_x, self.min_y, self.max_x, self.max_y)


class BBoxIndex:
    def __init__(self, boxes: list[BBox], ids: list[str]) -> None:
        if len(boxes) != len(ids):
            raise ValueError("boxes and ids must have the same length")
        # Private copies: the index never changes after construction.
        self._boxes = list(boxes)
        self._ids = list(ids)
        # One rectangle per entry; tree positions follow build order.
        envelopes = [shapely.box(*b.as_tuple()) for b in self._boxes]
        # STRtree packs all envelopes at construction time and is immutable afterwards.
        self._tree = STRtree(envelopes)

    @classmethod
    def build(cls, entries: Iterable[tuple[BBox, str]]) -> "BBoxIndex":
        boxes: list[BBox] = []
        ids: list[str] = []
        # Accept any iterable of (box, id) pairs, e.g. a generator from the region store.
        for box, region_id in entries:
            boxes.append(box)
            ids.append(region_id)
        return cls(boxes, ids)

    def __len__(self) -> int:
        return len(self._ids)

    def search_positions(self, query: BBox) -> np.ndarray:
        """Return entry positions (build order) whose boxes overlap `query`, sorted ascending."""
        # An empty tree has nothing to return; skip building the query geometry.
        if not self._ids:
            return np.empty(0, dtype=int)
        # Envelope-only query: inclusive of touching boxes, no exact predicate here.
        hits = self._tree.query(shapely.box(*query.as_tuple()))
        # Tree order is an implementation detail; sorted positions keep results deterministic.
        return np.sort(np.asarray(hits, dtype=int))

    def search(self, query: BBox) -> list[str]:
        # Same hits as `search_positions`, translated to region ids.
        return [self._ids[int(i)] for i in self.search_positions(query)]
