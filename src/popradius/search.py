"""
Minimal-radius search.

Given a center, a year, and a target population, find the smallest disc
radius whose intersecting regions reach the target. The aggregate is
non-decreasing in the radius (populations are non-negative, asserted at load
time), so the search first grows an upper bound by doubling, then bisects the
bracket [lo, hi] while keeping:

    total(lo) < target <= total(hi)

Ties resolve to inclusion (`>=`). The reported radius is `hi` once the bracket
is narrower than `eps_km`, so it is the smallest *tested* radius that
satisfies the target, not an analytic minimum.
"""

from __future__ import annotations

import logging
# `math.isfinite` guards every numeric input.
import math
from dataclasses import dataclass
from typing import Any

from popradius.errors import InvalidQueryError, UnreachableTargetError
from popradius.regions.load import RegionStore
from popradius.regions.years import PopulationYear
from popradius.spatial.buffers import DEFAULT_STEPS, MIN_STEPS
from popradius.spatial.index import BBoxIndex
# One disc evaluation = index prune + exact predicate + sums.
from popradius.spatial.joins import DiscSummary, evaluate_disc


def _log() -> logging.Logger:
    return logging.getLogger("popradius")


@dataclass(frozen=True)
class SearchConfig:
    initial_high_km: float = 25.0
    max_doublings: int = 30
    ceiling_km: float = 5000.0
    eps_km: float = 0.05
    circle_steps: int = DEFAULT_STEPS

    def __post_init__(self) -> None:
        # `not x > 0` also rejects NaN read from a config file.
        if not self.initial_high_km > 0:
            raise ValueError("initial_high_km must be > 0")
        if self.ceiling_km < self.initial_high_km:
            raise ValueError("ceiling_km must be >= initial_high_km")
        if not self.eps_km > 0:
            raise ValueError("eps_km must be > 0")
        if self.max_doublings < 0:
            raise ValueError("max_doublings must be >= 0")
        if self.circle_steps < MIN_STEPS:
            raise ValueError(f"circle_steps must be >= {MIN_STEPS}")

    @classmethod
    def from_settings(cls, settings: dict[str, Any]) -> "SearchConfig":
        # A missing or empty `search:` section falls back to the built-in constants.
        s = settings.get("search", {}) or {}
        return cls(
            initial_high_km=float(s.get("initial_high_km", 25.0)),
            max_doublings=int(s.get("max_doublings", 30)),
            ceiling_km=float(s.get("ceiling_km", 5000.0)),
            eps_km=float(s.get("eps_km", 0.05)),
            circle_steps=int(s.get("circle_steps", DEFAULT_STEPS)),
        )


@dataclass(frozen=True)
class RadiusSearchResult:
    radius_km: float
    total_value: float
    total_area_m2: float
    ids: list[str]
    count: int
    # Number of disc evaluations, the final one included.
    evaluations: int
    final: DiscSummary


def validate_center(lng: Any, lat: Any) -> tuple[float, float]:
    # bool is an int subclass; `True` is not a coordinate.
    if isinstance(lng, bool) or isinstance(lat, bool):
        raise InvalidQueryError("Center must be numeric lng/lat")
    try:
        lon_f = float(lng)
        lat_f = float(lat)
    except (TypeError, ValueError) as exc:
        raise InvalidQueryError(f"Center must be numeric lng/lat, got ({lng!r}, {lat!r})") from exc
    # Range checks are on geographic degrees; projection clamps latitude later.
    if not (math.isfinite(lon_f) and -180.0 <= lon_f <= 180.0):
        raise InvalidQueryError(f"Longitude out of range: {lng!r}")
    if not (math.isfinite(lat_f) and -90.0 <= lat_f <= 90.0):
        raise InvalidQueryError(f"Latitude out of range: {lat!r}")
    return lon_f, lat_f


def validate_target(target: Any) -> float:
    # Same bool guard as for the center.
    if isinstance(target, bool):
        raise InvalidQueryError("Target value must be a number")
    try:
        value = float(target)
    except (TypeError, ValueError) as exc:
        raise InvalidQueryError(f"Target value must be a number, got {target!r}") from exc
    # Zero would be met by an empty disc; infinity never.
    if not math.isfinite(value) or value <= 0:
        raise InvalidQueryError(f"Target value must be finite and > 0, got {target!r}")
    return value


def search_radius(
    store: RegionStore,
    index: BBoxIndex,
    *,
    center: tuple[float, float],
    target: float,
    year: PopulationYear,
    config: SearchConfig | None = None,
) -> RadiusSearchResult:
    cfg = config or SearchConfig()
    # Validate before touching geometry so bad input never reaches GEOS.
    center = validate_center(*center)
    target = validate_target(target)

    evaluations = 0

    def total_at(radius_km: float) -> float:
        # Bracketing steps only need the total; ids are skipped.
        nonlocal evaluations
        evaluations += 1
        return evaluate_disc(
            store, index, center=center, radius_km=radius_km, year=year, steps=cfg.circle_steps
        ).total_value

    # Expand: every radius that falls short becomes the new lower bound.
    lo = 0.0
    hi = cfg.initial_high_km
    doublings = 0
    while True:
        reached = total_at(hi)
        if reached >= target:
            break
        # Out of room: report the largest radius tried and what it reached.
        if doublings >= cfg.max_doublings or hi >= cfg.ceiling_km:
            raise UnreachableTargetError(target, reached, hi)
        lo = hi
        # The last step may be shorter than a doubling so `hi` lands on the ceiling.
        hi = min(hi * 2.0, cfg.ceiling_km)
        doublings += 1

    # Bisect down to eps.
    while (hi - lo) > cfg.eps_km:
        mid = (lo + hi) / 2.0
        # `>=`: a radius that exactly meets the target is kept.
        if total_at(mid) >= target:
            hi = mid
        else:
            lo = mid

    # Re-evaluate at `hi` with ids; this is the answer the caller sees.
    final = evaluate_disc(
        store, index, center=center, radius_km=hi, year=year, steps=cfg.circle_steps, need_ids=True
    )
    evaluations += 1
    _log().debug(
        "Radius search center=%s year=%s target=%g -> %.3f km after %d evaluations",
        center,
        year.label,
        target,
        hi,
        evaluations,
    )
    return RadiusSearchResult(
        radius_km=hi,
        total_value=final.total_value,
        total_area_m2=final.total_area_m2,
        ids=final.ids,
        count=final.count,
        evaluations=evaluations,
        final=final,
    )
