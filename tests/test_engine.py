from pathlib import Path

from popradius.service.engine import EngineState, QueryEngine
from popradius.service.messages import response_from_wire

from conftest import CENTER


def _compute(job_id: int, **overrides) -> dict:
    msg = {
        "type": "compute",
        "jobId": job_id,
        "center": {"lng": CENTER[0], "lat": CENTER[1]},
        "targetValue": 150,
        "attributeSelector": "2019",
    }
    msg.update(overrides)
    return msg


def test_compute_before_init_is_rejected_with_job_id() -> None:
    engine = QueryEngine()
    response = engine.handle(_compute(3))
    assert response["type"] == "error"
    assert response["jobId"] == 3
    assert response["errorType"] == "NotReadyError"
    assert engine.state is EngineState.UNINITIALIZED


def test_init_then_compute(row_dataset_path: Path) -> None:
    engine = QueryEngine()
    ready = engine.handle({"type": "init", "datasetLocation": str(row_dataset_path)})
    assert ready == {"type": "ready", "regions": 4, "years": ["1871", "2019"]}
    assert engine.state is EngineState.READY

    response = engine.handle(_compute(1))
    assert response["type"] == "result"
    assert response["jobId"] == 1
    assert response["count"] == 2
    assert response["totalValue"] == 200
    assert response["totalArea"] == 8_000_000
    assert sorted(response["ids"]) == ["01000001", "01000002"]
    assert response["year"] == "2019"
    assert "circle" not in response
    assert 9.0 - 1e-3 <= response["radiusKm"] <= 9.05 + 1e-3

    parsed = response_from_wire(response)
    assert parsed.radius_km == response["radiusKm"]


def test_failed_init_is_fatal_and_can_be_retried(tmp_path: Path, row_dataset_path: Path) -> None:
    engine = QueryEngine()
    failed = engine.handle({"type": "init", "datasetLocation": str(tmp_path / "nope.geojson")})
    assert failed["type"] == "error"
    assert failed["fatal"] is True
    assert failed["errorType"] == "LoadError"
    assert engine.state is EngineState.FAILED
    assert engine.handle(_compute(1))["errorType"] == "NotReadyError"

    assert engine.handle({"type": "init", "datasetLocation": str(row_dataset_path)})["type"] == "ready"
    assert engine.state is EngineState.READY


def test_per_request_errors_keep_the_session_alive(row_dataset_path: Path) -> None:
    engine = QueryEngine()
    engine.handle({"type": "init", "datasetLocation": str(row_dataset_path)})

    unknown_year = engine.handle(_compute(1, attributeSelector="1939"))
    assert unknown_year["errorType"] == "InvalidQueryError"
    assert unknown_year["jobId"] == 1

    bad_target = engine.handle(_compute(2, targetValue=-5))
    assert bad_target["errorType"] == "InvalidQueryError"

    too_big = engine.handle(_compute(3, targetValue=10_000))
    assert too_big["errorType"] == "UnreachableTargetError"
    assert too_big["jobId"] == 3

    malformed = engine.handle({"type": "compute", "jobId": 4, "center": "here"})
    assert malformed["errorType"] == "InvalidQueryError"
    assert malformed["jobId"] == 4

    unknown = engine.handle({"type": "render", "jobId": 5})
    assert unknown["errorType"] == "InvalidQueryError"

    assert engine.handle(_compute(6))["type"] == "result"


def test_reference_target_and_circle(row_dataset_path: Path) -> None:
    settings_years = [{"label": "2019", "field": "pop_2019", "reference": 250}]
    engine = QueryEngine()
    engine.settings["years"] = settings_years
    engine.handle({"type": "init", "datasetLocation": str(row_dataset_path)})

    msg = _compute(1, includeCircle=True, attributeSelector="pop_2019")
    del msg["targetValue"]
    response = engine.handle(msg)

    assert response["type"] == "result"
    assert response["targetValue"] == 250
    assert response["totalValue"] == 300
    circle = response["circle"]
    assert circle["type"] == "Feature"
    assert circle["properties"]["radiusMeters"] == response["radiusKm"] * 1000.0


def test_missing_target_without_reference_is_invalid(row_dataset_path: Path) -> None:
    engine = QueryEngine()
    engine.settings["years"] = [{"label": "2019", "field": "pop_2019"}]
    engine.handle({"type": "init", "datasetLocation": str(row_dataset_path)})
    msg = _compute(1)
    del msg["targetValue"]
    assert engine.handle(msg)["errorType"] == "InvalidQueryError"
