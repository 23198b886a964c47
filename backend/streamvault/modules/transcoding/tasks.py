"""Celery tasks for transcoding.

Used when TRANSCODE_EXECUTOR=celery. Each task runs one job in a fresh event
loop with its own unpooled database engine.
"""

import asyncio
import logging
import signal
from typing import Optional

from celery import Task

from streamvault.core.celery_app import celery_app
from streamvault.core.config import settings
from streamvault.core.database import create_engine_and_session
from streamvault.core.storage import build_storage_backends
from streamvault.modules.transcoding.ffmpeg import FFmpegTranscoder
from streamvault.modules.transcoding.pipeline import TranscodePipeline
from streamvault.modules.transcoding.worker import TRANSCODE_TASK_NAME, TranscodeJob
from streamvault.modules.video.repository import VideoRepository
from streamvault.modules.video.service import VideoService

logger = logging.getLogger(__name__)


class TranscodeTask(Task):
    """Base task for transcoding operations."""
    abstract = True
    max_retries = 0

    def on_failure(self, exc, task_id, args, kwargs, einfo):
        """Handle task failure."""
        video_id = args[0] if args else kwargs.get("video_id")
        logger.error(
            "Transcode task failed",
            extra={"video_id": video_id, "task_id": task_id, "error": str(exc)},
        )


async def run_transcode(video_id: str, source_path: str) -> Optional[str]:
    """Run one transcode job and return the video's final status."""
    engine, session_maker = create_engine_and_session(
        settings.DATABASE_URL, use_null_pool=True
    )
    transcoder = FFmpegTranscoder(settings.FFMPEG_PATH, settings.FFPROBE_PATH)
    storages = build_storage_backends(settings)
    service = VideoService(
        repository=VideoRepository(session_maker),
        storages=storages,
        transcoder=transcoder,
        pipeline=TranscodePipeline(transcoder, storages, settings.TRANSCODE_WORK_DIR),
    )

    cancel_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    handles_sigterm = False
    try:
        # Revocation with terminate=True delivers SIGTERM
        loop.add_signal_handler(signal.SIGTERM, cancel_event.set)
        handles_sigterm = True
    except (NotImplementedError, RuntimeError):
        logger.debug("SIGTERM cancellation unavailable in this worker")

    try:
        video = await service.run_transcode_job(
            TranscodeJob(video_id=video_id, source_path=source_path),
            cancel_event,
        )
    finally:
        if handles_sigterm:
            loop.remove_signal_handler(signal.SIGTERM)
        await engine.dispose()

    return video.status.value if video is not None else None


@celery_app.task(bind=True, base=TranscodeTask, name=TRANSCODE_TASK_NAME)
def transcode_video_task(self, video_id: str, source_path: str) -> Optional[str]:
    """Transcode an uploaded video into HLS renditions.

    Args:
        video_id: Video ID
        source_path: Path of the uploaded source file

    Returns:
        Final status of the video, or None if it no longer exists
    """
    return asyncio.run(run_transcode(video_id, source_path))
