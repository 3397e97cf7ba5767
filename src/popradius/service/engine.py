"""
Query engine: the request/response boundary around the radius search.

One engine owns one Region Store and one Spatial Index. It moves through an
explicit state machine:

    UNINITIALIZED --init ok--> READY
    UNINITIALIZED --init fails--> FAILED
    READY/FAILED --init--> (rebuilt; READY or FAILED)

Compute requests are answered only in READY; otherwise they get a
`NotReadyError` response tagged with their job id. Each compute request runs to
completion before the next one is looked at, and every answer (result or error)
carries the job id it belongs to so the caller can drop stale ones.
"""

from __future__ import annotations

import enum
import logging
import time
from typing import Any

# Malformed wire messages surface as pydantic validation errors.
from pydantic import ValidationError

from popradius.errors import InvalidQueryError, LoadError, NotReadyError, PopRadiusError
# Tags log lines with the compute job being answered.
from popradius.log import job_context
from popradius.regions.load import RegionStore, load_region_store
from popradius.search import SearchConfig, search_radius, validate_center
from popradius.settings import default_settings
from popradius.spatial.buffers import circle_feature
from popradius.spatial.index import BBoxIndex
from popradius.service.messages import (
    ComputeRequest,
    ErrorMessage,
    InitRequest,
    ReadyMessage,
    ResultMessage,
)


def _log() -> logging.Logger:
    return logging.getLogger("popradius")


class EngineState(enum.Enum):
    UNINITIALIZED = "uninitialized"
    READY = "ready"
    FAILED = "failed"


def _error(job_id: int | None, exc: BaseException, *, fatal: bool = False) -> ErrorMessage:
    # The exception class name doubles as the wire `errorType`.
    return ErrorMessage(job_id=job_id, message=str(exc), error_type=type(exc).__name__, fatal=fatal)


def _raw_job_id(raw: Any) -> int | None:
    # Best effort so even a malformed request gets a tagged answer.
    if isinstance(raw, dict):
        value = raw.get("jobId", raw.get("job_id"))
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    return None


class QueryEngine:
    def __init__(self, settings: dict[str, Any] | None = None, *, config: SearchConfig | None = None) -> None:
        # No settings: built-in defaults, so an engine can be created without a config file.
        self.settings = settings if settings is not None else default_settings()
        self.config = config or SearchConfig.from_settings(self.settings)
        self.state = EngineState.UNINITIALIZED
        # Both stay None until an init succeeds.
        self._store: RegionStore | None = None
        self._index: BBoxIndex | None = None

    @property
    def store(self) -> RegionStore | None:
        return self._store

    @property
    def index(self) -> BBoxIndex | None:
        return self._index

    def init(self, dataset_location: str | None = None) -> ReadyMessage:
        """Load the dataset and build the index. Raises `LoadError` and leaves the engine FAILED on error."""
        logger = _log()
        started = time.perf_counter()
        try:
            # `dataset_location` (from the init message) beats `dataset.location` in settings.
            store = load_region_store(self.settings, dataset_location)
        except LoadError:
            # Drop any previous dataset; a failed re-init must not keep serving stale data.
            self._store = None
            self._index = None
            self.state = EngineState.FAILED
            raise
        # Bulk-build once; the index is read-only from here on.
        index = BBoxIndex.build(store.index_entries())
        # Publish both structures together, then flip the state.
        self._store, self._index = store, index
        self.state = EngineState.READY
        logger.info(
            "Engine ready: %d regions, years=%s (%.2fs)",
            len(store),
            [y.label for y in store.years],
            time.perf_counter() - started,
        )
        return ReadyMessage(regions=len(store), years=[y.label for y in store.years])

    def compute(self, request: ComputeRequest) -> ResultMessage:
        # Compute before a successful init is rejected, never queued.
        if self.state is not EngineState.READY or self._store is None or self._index is None:
            raise NotReadyError(f"Engine is {self.state.value}; send a successful init first")

        store = self._store
        # Unknown selectors raise InvalidQueryError here, before any geometry work.
        year = store.years.resolve(request.attribute_selector)
        target = request.target_value
        # No explicit target: fall back to the year's reference population.
        if target is None:
            if year.reference is None:
                raise InvalidQueryError(f"No target value given and year {year.label} has no reference population")
            target = float(year.reference)
        center = validate_center(request.center.lng, request.center.lat)

        started = time.perf_counter()
        result = search_radius(store, self._index, center=center, target=target, year=year, config=self.config)
        _log().info(
            "Answered: %.2f km, %d regions, total=%d (%d evaluations, %.3fs)",
            result.radius_km,
            result.count,
            int(result.total_value),
            result.evaluations,
            time.perf_counter() - started,
        )
        # The disc outline is optional; it can be large at high step counts.
        circle = None
        if request.include_circle:
            circle = circle_feature(result.final.circle, result.radius_km * 1000.0)
        return ResultMessage(
            job_id=request.job_id,
            radius_km=result.radius_km,
            total_value=result.total_value,
            total_area=result.total_area_m2,
            ids=result.ids,
            count=result.count,
            year=year.label,
            target_value=target,
            circle=circle,
        )

    def handle(self, raw: dict[str, Any]) -> dict[str, Any]:
        """Answer one wire message with exactly one wire response."""
        kind = raw.get("type") if isinstance(raw, dict) else None
        # Dispatch on the `type` field; anything else gets an error answer, not an exception.

        if kind == "init":
            try:
                req = InitRequest.model_validate(raw)
                return self.init(req.dataset_location).to_wire()
            except ValidationError as exc:
                return _error(None, InvalidQueryError(f"Malformed init request: {exc}")).to_wire()
            except LoadError as exc:
                _log().error("Init failed: %s", exc)
                return _error(None, exc, fatal=True).to_wire()

        if kind == "compute":
            job_id = _raw_job_id(raw)
            # Everything logged while answering carries this job id.
            with job_context(job_id):
                try:
                    req = ComputeRequest.model_validate(raw)
                    return self.compute(req).to_wire()
                except ValidationError as exc:
                    return _error(job_id, InvalidQueryError(f"Malformed compute request: {exc}")).to_wire()
                except PopRadiusError as exc:
                    # Per-request failure: answer it and keep the session alive.
                    _log().info("Rejected: %s", exc)
                    return _error(job_id, exc).to_wire()
                except Exception as exc:
                    # Still answered (the caller is waiting on this job id), but with a traceback in the log.
                    _log().exception("Failed unexpectedly")
                    return _error(job_id, exc).to_wire()

        # Unknown or missing type.
        return _error(_raw_job_id(raw), InvalidQueryError(f"Unknown message type: {kind!r}")).to_wire()
