"""FastAPI middleware for metrics, correlation IDs and request logging."""

import logging
import re
import time
import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from streamvault.core.logging import correlation_scope, log_error, log_event
from streamvault.core.metrics import (
    HTTP_REQUESTS_TOTAL,
    HTTP_REQUEST_DURATION_SECONDS,
    HTTP_REQUESTS_IN_PROGRESS,
)

logger = logging.getLogger("streamvault.requests")

_UUID_RE = re.compile(
    r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}",
    flags=re.IGNORECASE,
)
_NUMERIC_ID_RE = re.compile(r"/\d+(?=/|$)")

# Probed constantly by orchestrators and scrapers.
UNLOGGED_PATHS = frozenset(("/health", "/metrics"))


def normalize_path(path: str) -> str:
    """Collapse ids in a request path so metric labels stay bounded.

    Media keys are collapsed whole since every segment has its own key.
    """
    if "/media/" in path:
        return path.split("/media/", 1)[0] + "/media/{key}"
    path = _UUID_RE.sub("{id}", path)
    return _NUMERIC_ID_RE.sub("/{id}", path)


class MetricsMiddleware(BaseHTTPMiddleware):
    """Count and time every request by method and normalized path."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        labels = {"method": request.method, "endpoint": normalize_path(request.url.path)}
        status_code = 500

        with HTTP_REQUESTS_IN_PROGRESS.labels(**labels).track_inprogress():
            with HTTP_REQUEST_DURATION_SECONDS.labels(**labels).time():
                try:
                    response = await call_next(request)
                    status_code = response.status_code
                finally:
                    HTTP_REQUESTS_TOTAL.labels(**labels, status_code=str(status_code)).inc()
        return response


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Bind the ``X-Correlation-ID`` header, or a fresh ID, for the request."""

    CORRELATION_ID_HEADER = "X-Correlation-ID"

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = request.headers.get(self.CORRELATION_ID_HEADER) or str(uuid.uuid4())

        with correlation_scope(correlation_id):
            response = await call_next(request)
        response.headers[self.CORRELATION_ID_HEADER] = correlation_id
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log one line per completed request.

    Segment and manifest fetches under ``/media`` are logged at DEBUG; a
    single playback session issues one request per segment.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        if path in UNLOGGED_PATHS:
            return await call_next(request)

        fields = {"method": request.method, "path": path}
        start_time = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as e:
            fields["duration_ms"] = round((time.perf_counter() - start_time) * 1000, 2)
            log_error(logger, "Request failed", e, **fields)
            raise

        fields["status_code"] = response.status_code
        fields["duration_ms"] = round((time.perf_counter() - start_time) * 1000, 2)
        level = logging.DEBUG if "/media/" in path else logging.INFO
        log_event(logger, level, "Request completed", **fields)
        return response


__all__ = [
    "MetricsMiddleware",
    "CorrelationIdMiddleware",
    "RequestLoggingMiddleware",
    "normalize_path",
]
