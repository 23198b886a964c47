"""FastAPI application entry point."""

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI, Response

from streamvault.core.config import settings
from streamvault.core.database import async_session_maker, close_db, init_db
from streamvault.core.logging import setup_logging
from streamvault.core.metrics import get_content_type, get_metrics, set_app_info
from streamvault.core.middleware import (
    CorrelationIdMiddleware,
    MetricsMiddleware,
    RequestLoggingMiddleware,
)
from streamvault.core.storage import build_storage_backends, find_local_storage
from streamvault.modules.transcoding.ffmpeg import FFmpegTranscoder
from streamvault.modules.transcoding.pipeline import TranscodePipeline
from streamvault.modules.transcoding.worker import (
    CeleryTranscodeDispatcher,
    TranscodeWorkerPool,
)
from streamvault.modules.video.repository import VideoRepository
from streamvault.modules.video.router import media_router, router as video_router
from streamvault.modules.video.service import VideoService

logger = logging.getLogger(__name__)


def create_dispatcher(service: VideoService):
    """Build the dispatcher selected by TRANSCODE_EXECUTOR."""
    executor = settings.TRANSCODE_EXECUTOR.lower()
    if executor == "local":
        return TranscodeWorkerPool(
            service.run_transcode_job,
            concurrency=settings.TRANSCODE_CONCURRENCY,
            max_queue_size=settings.TRANSCODE_QUEUE_SIZE,
        )
    if executor == "celery":
        return CeleryTranscodeDispatcher()
    raise ValueError(f"Unsupported transcode executor: {settings.TRANSCODE_EXECUTOR}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(level=settings.LOG_LEVEL, json_format=settings.LOG_JSON)
    set_app_info(version=settings.VERSION, environment=settings.ENVIRONMENT)

    transcoder = FFmpegTranscoder(settings.FFMPEG_PATH, settings.FFPROBE_PATH)
    # Refuse to start without an H.264 encoder
    encoder = await asyncio.to_thread(transcoder.select_h264_encoder)
    logger.info("H.264 encoder selected", extra={"encoder": encoder})

    storages = build_storage_backends(settings)
    for storage in storages:
        await asyncio.to_thread(storage.check_available)

    os.makedirs(settings.UPLOAD_DIR, exist_ok=True)
    os.makedirs(settings.TRANSCODE_WORK_DIR, exist_ok=True)
    await init_db()

    service = VideoService(
        repository=VideoRepository(async_session_maker),
        storages=storages,
        transcoder=transcoder,
        pipeline=TranscodePipeline(transcoder, storages, settings.TRANSCODE_WORK_DIR),
        url_cache_ttl=timedelta(minutes=settings.URL_CACHE_TTL_MINUTES),
    )
    dispatcher = create_dispatcher(service)
    service.dispatcher = dispatcher
    if isinstance(dispatcher, TranscodeWorkerPool):
        await dispatcher.start()

    app.state.video_service = service
    app.state.dispatcher = dispatcher
    app.state.local_storage = find_local_storage(storages)
    logger.info(
        "StreamVault started",
        extra={"backends": [s.name for s in storages], "executor": settings.TRANSCODE_EXECUTOR},
    )

    try:
        yield
    finally:
        await dispatcher.stop(timeout=settings.TRANSCODE_SHUTDOWN_TIMEOUT_SECONDS)
        await close_db()


def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=settings.VERSION,
        description="HLS transcoding and signed playback delivery.",
        openapi_url=f"{settings.API_V1_PREFIX}/openapi.json",
        lifespan=lifespan,
    )

    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(CorrelationIdMiddleware)
    app.add_middleware(MetricsMiddleware)

    @app.get("/health", tags=["health"])
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "healthy"}

    @app.get("/metrics", include_in_schema=False)
    async def metrics() -> Response:
        """Prometheus exposition."""
        return Response(content=get_metrics(), media_type=get_content_type())

    app.include_router(video_router, prefix=settings.API_V1_PREFIX)
    app.include_router(media_router, prefix=settings.API_V1_PREFIX)
    return app


app = create_app()
