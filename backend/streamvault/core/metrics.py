"""Prometheus metrics for the API and the transcoding pipeline."""

from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    Info,
    CollectorRegistry,
    generate_latest,
    CONTENT_TYPE_LATEST,
    multiprocess,
)
import os

# Create a custom registry for our metrics
REGISTRY = CollectorRegistry()

# Check if running in multiprocess mode (e.g., with gunicorn)
if "prometheus_multiproc_dir" in os.environ:
    multiprocess.MultiProcessCollector(REGISTRY)


# ============================================
# Application Info
# ============================================
APP_INFO = Info(
    "streamvault_app",
    "Application information",
    registry=REGISTRY,
)


# ============================================
# HTTP Request Metrics
# ============================================
HTTP_REQUESTS_TOTAL = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
    registry=REGISTRY,
)

HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
    registry=REGISTRY,
)

HTTP_REQUESTS_IN_PROGRESS = Gauge(
    "http_requests_in_progress",
    "Number of HTTP requests currently in progress",
    ["method", "endpoint"],
    registry=REGISTRY,
)


# ============================================
# Transcode Queue Metrics
# ============================================
TRANSCODE_QUEUE_DEPTH = Gauge(
    "transcode_queue_depth",
    "Number of transcode jobs waiting for a worker",
    registry=REGISTRY,
)

TRANSCODE_JOBS_IN_PROGRESS = Gauge(
    "transcode_jobs_in_progress",
    "Number of transcode jobs currently running",
    registry=REGISTRY,
)

TRANSCODE_JOBS_TOTAL = Counter(
    "transcode_jobs_total",
    "Total transcode jobs by outcome",
    ["outcome"],  # complete, error, cancelled
    registry=REGISTRY,
)

TRANSCODE_JOB_DURATION_SECONDS = Histogram(
    "transcode_job_duration_seconds",
    "Wall-clock duration of a full transcode job",
    ["outcome"],
    buckets=[5, 15, 30, 60, 120, 300, 600, 1200, 1800, 3600],
    registry=REGISTRY,
)

RENDITION_ENCODE_DURATION_SECONDS = Histogram(
    "rendition_encode_duration_seconds",
    "Duration of the ffmpeg run for one rendition",
    ["resolution"],
    buckets=[1, 5, 15, 30, 60, 120, 300, 600, 1200],
    registry=REGISTRY,
)


# ============================================
# Storage Metrics
# ============================================
SEGMENTS_REPLICATED_TOTAL = Counter(
    "segments_replicated_total",
    "Objects written to a storage backend",
    ["backend"],
    registry=REGISTRY,
)

STORAGE_WRITE_FAILURES_TOTAL = Counter(
    "storage_write_failures_total",
    "Failed writes to a storage backend",
    ["backend"],
    registry=REGISTRY,
)


# ============================================
# Playback URL Metrics
# ============================================
MANIFEST_URL_REQUESTS_TOTAL = Counter(
    "manifest_url_requests_total",
    "Manifest URL requests by cache result",
    ["result"],  # hit, miss
    registry=REGISTRY,
)


def get_metrics() -> bytes:
    """Generate latest metrics in Prometheus format.

    Returns:
        bytes: Prometheus-formatted metrics
    """
    return generate_latest(REGISTRY)


def get_content_type() -> str:
    """Get the content type for Prometheus metrics."""
    return CONTENT_TYPE_LATEST


def set_app_info(version: str, environment: str) -> None:
    """Set application info metrics.

    Args:
        version: Application version
        environment: Deployment environment
    """
    APP_INFO.info({
        "version": version,
        "environment": environment,
    })
