"""Structured logging with correlation IDs.

HTTP requests take their correlation ID from the ``X-Correlation-ID`` header.
Transcode jobs run inside ``correlation_scope(video_id)`` so every line a job
emits, from probing to the last segment upload, shares the video ID.

JSON lines look like::

    {"timestamp": "...", "level": "INFO", "logger": "streamvault.modules.video.service",
     "message": "Transcode job finished", "correlation_id": "<video id>",
     "job": {"video_id": "<video id>", "status": "complete"}, ...}
"""

import json
import logging
import sys
import traceback
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Iterator, Optional

correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

# Extra fields grouped under "job" instead of "extra".
JOB_FIELDS = ("video_id", "resolution", "backend", "status", "outcome")

# Loggers that drown out the service at INFO.
NOISY_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "botocore", "boto3", "urllib3")

_STANDARD_ATTRS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "asctime", "correlation_id", "taskName"}

TEXT_FORMAT = "%(asctime)s %(levelname)-8s %(name)s [%(correlation_id)s] %(message)s"


def get_correlation_id() -> str:
    """Return the current correlation ID, creating one on first use."""
    cid = correlation_id_var.get()
    if cid is None:
        cid = uuid.uuid4().hex
        correlation_id_var.set(cid)
    return cid


@contextmanager
def correlation_scope(correlation_id: str) -> Iterator[str]:
    """Bind ``correlation_id`` for the duration of the block.

    The previous value is restored on exit, so a worker coroutine that runs
    many jobs in sequence never leaks one job's ID into the next.
    """
    token = correlation_id_var.set(correlation_id)
    try:
        yield correlation_id
    finally:
        correlation_id_var.reset(token)


def _jsonable(value: Any) -> Any:
    try:
        json.dumps(value)
    except (TypeError, ValueError):
        return str(value)
    return value


class StructuredFormatter(logging.Formatter):
    """Render records as one JSON object per line."""

    def __init__(self, include_stack_trace: bool = True):
        super().__init__()
        self.include_stack_trace = include_stack_trace

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", None) or get_correlation_id(),
            "source": f"{record.module}:{record.funcName}:{record.lineno}",
        }

        job, extra = self._split_extra(record)
        if job:
            entry["job"] = job
        if extra:
            entry["extra"] = extra

        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self._exception_entry(record.exc_info)

        return json.dumps(entry, default=str)

    @staticmethod
    def _split_extra(record: logging.LogRecord) -> tuple[dict, dict]:
        job: dict[str, Any] = {}
        extra: dict[str, Any] = {}
        for key, value in record.__dict__.items():
            if key in _STANDARD_ATTRS:
                continue
            target = job if key in JOB_FIELDS else extra
            target[key] = _jsonable(value)
        return job, extra

    def _exception_entry(self, exc_info) -> dict[str, Any]:
        exc_type, exc_value, tb = exc_info
        entry: dict[str, Any] = {"type": exc_type.__name__, "message": str(exc_value)}
        # StreamVaultError carries structured details (ffmpeg stderr tail, backend name)
        details = getattr(exc_value, "details", None)
        if details:
            entry["details"] = _jsonable(details)
        if self.include_stack_trace and tb is not None:
            entry["stack_trace"] = traceback.format_exception(exc_type, exc_value, tb)
        return entry


class CorrelationIdFilter(logging.Filter):
    """Stamp every record with the active correlation ID."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id()
        return True


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    include_stack_trace: bool = True,
) -> None:
    """Install a single stdout handler on the root logger.

    Safe to call more than once; previously installed handlers are replaced.
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        raise ValueError(f"Unknown log level: {level}")

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(CorrelationIdFilter())
    handler.setFormatter(
        StructuredFormatter(include_stack_trace=include_stack_trace)
        if json_format
        else logging.Formatter(TEXT_FORMAT)
    )

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(numeric_level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def log_event(
    logger: logging.Logger,
    level: int,
    message: str,
    exception: Optional[BaseException] = None,
    **fields: Any,
) -> None:
    """Log ``message`` with ``fields`` attached as structured extras."""
    logger.log(level, message, exc_info=exception, extra=fields)


def log_error(
    logger: logging.Logger,
    message: str,
    exception: Optional[BaseException] = None,
    **fields: Any,
) -> None:
    log_event(logger, logging.ERROR, message, exception, **fields)


def log_warning(logger: logging.Logger, message: str, **fields: Any) -> None:
    log_event(logger, logging.WARNING, message, **fields)


def log_info(logger: logging.Logger, message: str, **fields: Any) -> None:
    log_event(logger, logging.INFO, message, **fields)
