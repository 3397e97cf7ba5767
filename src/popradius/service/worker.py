"""
Background worker and caller-side job tracking.

`QueryWorker` runs a `QueryEngine` on its own thread so a long search never
blocks the caller. It handles one message at a time, in arrival order.

`QueryClient` is the caller's half of the protocol. It numbers compute
requests with a monotonically increasing job id and drops any result or error
whose job id is not the latest one issued. Cancellation is advisory: a
superseded search still runs to completion on the worker, its answer is just
never handed to the caller.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from typing import Any

from popradius.service.engine import QueryEngine

_STOP = object()


def _log() -> logging.Logger:
    return logging.getLogger("popradius")


class QueryWorker:
    def __init__(self, engine: QueryEngine | None = None) -> None:
        self.engine = engine or QueryEngine()
        self._requests: queue.Queue[Any] = queue.Queue()
        self.responses: queue.Queue[dict[str, Any]] = queue.Queue()
        self._thread = threading.Thread(target=self._run, name="popradius-worker", daemon=True)

    def start(self) -> "QueryWorker":
        self._thread.start()
        return self

    def post(self, message: dict[str, Any]) -> None:
        self._requests.put(message)

    def close(self, timeout: float | None = None) -> None:
        self._requests.put(_STOP)
        self._thread.join(timeout)

    def __enter__(self) -> "QueryWorker":
        return self.start()

    def __exit__(self, *exc: object) -> None:
        self.close()

    def _run(self) -> None:
        while True:
            message = self._requests.get()
            if message is _STOP:
                return
            try:
                response = self.engine.handle(message)
            except Exception as exc:
                # The engine answers every request itself; reaching here means init blew up on bad config.
                _log().exception("Worker failed to handle message")
                response = {
                    "type": "error",
                    "jobId": None,
                    "message": str(exc),
                    "errorType": type(exc).__name__,
                    "fatal": True,
                }
            self.responses.put(response)


class QueryClient:
    def __init__(self, worker: QueryWorker) -> None:
        self.worker = worker
        self.latest_job_id = 0
        self.discarded = 0

    def init(self, dataset_location: str | None = None, *, timeout: float | None = None) -> dict[str, Any]:
        """Send `init` and block until the worker acknowledges it (ready or fatal error)."""
        msg: dict[str, Any] = {"type": "init"}
        if dataset_location is not None:
            msg["datasetLocation"] = dataset_location
        self.worker.post(msg)
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            try:
                response = self.worker.responses.get(timeout=remaining)
            except queue.Empty:
                raise TimeoutError("Timed out waiting for init acknowledgment") from None
            if response.get("type") == "ready" or response.get("jobId") is None:
                return response
            # A compute answer that was still in flight from before this init.
            self.discarded += 1

    def compute(
        self,
        *,
        lng: float,
        lat: float,
        attribute_selector: str,
        target_value: float | None = None,
        include_circle: bool = False,
    ) -> int:
        self.latest_job_id += 1
        msg: dict[str, Any] = {
            "type": "compute",
            "jobId": self.latest_job_id,
            "center": {"lng": lng, "lat": lat},
            "attributeSelector": attribute_selector,
            "includeCircle": include_circle,
        }
        if target_value is not None:
            msg["targetValue"] = target_value
        self.worker.post(msg)
        return self.latest_job_id

    def is_current(self, response: dict[str, Any]) -> bool:
        return response.get("jobId") == self.latest_job_id

    def next_response(self, timeout: float | None = None) -> dict[str, Any] | None:
        """Return the next non-stale response, or None if nothing fresh arrives in time."""
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            try:
                response = self.worker.responses.get(timeout=remaining)
            except queue.Empty:
                return None
            job_id = response.get("jobId")
            if job_id is not None and job_id != self.latest_job_id:
                self.discarded += 1
                _log().debug("Discarding stale response for job %s (latest %s)", job_id, self.latest_job_id)
                continue
            return response

    def wait_latest(self, timeout: float | None = None) -> dict[str, Any]:
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            response = self.next_response(timeout=remaining)
            if response is None:
                raise TimeoutError(f"Timed out waiting for job {self.latest_job_id}")
            if self.is_current(response):
                return response
