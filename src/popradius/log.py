"""
Logging configuration for PopRadius.

Every log line carries the compute job it belongs to (`[job 7]`, or `[job -]`
outside a request), so interleaved output from a superseded search and the
current one can be told apart. The file handler is optional: the stdio
session (`popradius serve`) usually runs with `project.logs_dir: null` and
logs to stderr only, keeping stdout for protocol messages.
"""

from __future__ import annotations

import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from pathlib import Path
from typing import Any, Iterator

LOGGER_NAME = "popradius"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s [job %(job)s] %(message)s"

# Job id of the request being handled on the current thread/context ("-" when idle).
_current_job: ContextVar[str] = ContextVar("popradius_job", default="-")


class JobContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        # Keep a job id set explicitly via `extra={"job": ...}`; otherwise take the context's.
        if not hasattr(record, "job"):
            record.job = _current_job.get()
        return True


@contextmanager
def job_context(job_id: Any) -> Iterator[None]:
    """Tag every log line emitted inside the block with `job_id`."""
    token = _current_job.set("-" if job_id is None else str(job_id))
    try:
        yield
    finally:
        _current_job.reset(token)


def _owned_handlers(logger: logging.Logger) -> list[logging.Handler]:
    return [h for h in logger.handlers if getattr(h, "_popradius_owned", False)]


def configure_logging(log_dir: Path | None, level: str = "INFO") -> logging.Logger:
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level.upper())
    # Our handlers already format job context; the root logger's would not.
    logger.propagate = False

    # Reconfiguring replaces our handlers (new level, new log dir, or file logging turned off)
    # instead of stacking duplicates. Handlers added by an embedding application are left alone.
    for handler in _owned_handlers(logger):
        logger.removeHandler(handler)
        handler.close()

    fmt = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    # stderr, never stdout: stdout carries the JSON lines of `popradius serve`.
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_dir / "popradius.log", encoding="utf-8"))

    for handler in handlers:
        handler.setFormatter(fmt)
        handler.setLevel(level.upper())
        # Filters sit on handlers so records from child loggers get the job tag too.
        handler.addFilter(JobContextFilter())
        handler._popradius_owned = True  # type: ignore[attr-defined]
        logger.addHandler(handler)

    return logger
