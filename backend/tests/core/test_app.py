"""Tests for application wiring that does not need the lifespan."""

from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from streamvault.main import create_app, create_dispatcher
from streamvault.modules.transcoding.worker import CeleryTranscodeDispatcher, TranscodeWorkerPool


class TestAppRoutes:
    def test_health(self) -> None:
        response = TestClient(create_app()).get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    def test_metrics_exposed(self) -> None:
        client = TestClient(create_app())
        client.get("/health")

        response = client.get("/metrics")

        assert response.status_code == 200
        assert "http_requests_total" in response.text
        assert "transcode_queue_depth" in response.text

    def test_correlation_header_returned(self) -> None:
        response = TestClient(create_app()).get("/health", headers={"X-Correlation-ID": "req-1"})

        assert response.headers["X-Correlation-ID"] == "req-1"


class TestDispatcherSelection:
    def _service(self):
        class Service:
            async def run_transcode_job(self, job, cancel_event=None):
                return None

        return Service()

    def test_local_executor_builds_pool(self) -> None:
        with patch("streamvault.main.settings.TRANSCODE_EXECUTOR", "local"):
            assert isinstance(create_dispatcher(self._service()), TranscodeWorkerPool)

    def test_celery_executor(self) -> None:
        with patch("streamvault.main.settings.TRANSCODE_EXECUTOR", "celery"):
            assert isinstance(create_dispatcher(self._service()), CeleryTranscodeDispatcher)

    def test_unknown_executor_rejected(self) -> None:
        with patch("streamvault.main.settings.TRANSCODE_EXECUTOR", "threads"):
            with pytest.raises(ValueError):
                create_dispatcher(self._service())
