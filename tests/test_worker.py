from pathlib import Path

import pytest

from popradius.service.engine import QueryEngine
from popradius.service.worker import QueryClient, QueryWorker

from conftest import CENTER


def test_superseded_job_result_is_discarded(row_dataset_path: Path) -> None:
    with QueryWorker(QueryEngine()) as worker:
        client = QueryClient(worker)
        assert client.init(str(row_dataset_path), timeout=30)["type"] == "ready"

        first = client.compute(lng=CENTER[0], lat=CENTER[1], attribute_selector="2019", target_value=150)
        second = client.compute(lng=CENTER[0], lat=CENTER[1], attribute_selector="2019", target_value=350)
        assert (first, second) == (1, 2)

        response = client.wait_latest(timeout=30)
        assert response["jobId"] == 2
        assert response["totalValue"] == 400
        assert client.discarded == 1
        assert client.next_response(timeout=0.05) is None


def test_stale_errors_are_discarded_too(row_dataset_path: Path) -> None:
    with QueryWorker(QueryEngine()) as worker:
        client = QueryClient(worker)
        client.init(str(row_dataset_path), timeout=30)

        client.compute(lng=CENTER[0], lat=CENTER[1], attribute_selector="1939", target_value=10)
        client.compute(lng=CENTER[0], lat=CENTER[1], attribute_selector="2019", target_value=50)

        response = client.wait_latest(timeout=30)
        assert response["type"] == "result"
        assert response["jobId"] == 2
        assert client.discarded == 1


def test_init_failure_is_reported(tmp_path: Path) -> None:
    with QueryWorker() as worker:
        client = QueryClient(worker)
        response = client.init(str(tmp_path / "missing.geojson"), timeout=30)
        assert response["type"] == "error"
        assert response["fatal"] is True


def test_wait_latest_times_out_without_answers() -> None:
    worker = QueryWorker()
    # Never started: nothing will ever answer.
    client = QueryClient(worker)
    client.latest_job_id = 1
    with pytest.raises(TimeoutError):
        client.wait_latest(timeout=0.05)
