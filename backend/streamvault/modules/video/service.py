"""Video service for business logic.

Creates videos from uploaded files, runs their transcode jobs to a terminal
status and serves signed manifest URLs with a per-rendition cache.
"""

import asyncio
import logging
import time
from datetime import datetime, timedelta
from typing import Callable, Optional, Protocol

from streamvault.core.errors import (
    NotFoundError,
    PersistError,
    ResolutionInvalidError,
    ResolutionNotFoundError,
    StreamVaultError,
    TranscodeCancelledError,
    TranscodeQueueFullError,
    VideoNotReadyError,
)
from streamvault.core.logging import correlation_scope, log_error, log_info, log_warning
from streamvault.core.metrics import (
    MANIFEST_URL_REQUESTS_TOTAL,
    TRANSCODE_JOB_DURATION_SECONDS,
    TRANSCODE_JOBS_TOTAL,
)
from streamvault.core.storage import StorageBackend
from streamvault.modules.transcoding.ffmpeg import FFmpegTranscoder
from streamvault.modules.transcoding.hls import generate_signed_manifest
from streamvault.modules.transcoding.models import (
    Resolution,
    SUPPORTED_RESOLUTIONS,
    is_valid_resolution,
)
from streamvault.modules.transcoding.pipeline import TranscodePipeline
from streamvault.modules.transcoding.worker import TranscodeJob
from streamvault.modules.video.repository import VideoRepository
from streamvault.modules.video.schemas import Video, VideoPage, VideoStatus, utcnow

logger = logging.getLogger(__name__)

DEFAULT_URL_CACHE_TTL = timedelta(minutes=60)


class TranscodeDispatcher(Protocol):
    def has_capacity(self) -> bool: ...

    async def submit(self, job: TranscodeJob) -> object: ...

    def cancel(self, video_id: str) -> bool: ...

    async def stop(self, timeout: Optional[float] = None) -> None: ...


class VideoService:
    """Orchestrates the video lifecycle."""

    def __init__(
        self,
        repository: VideoRepository,
        storages: list[StorageBackend],
        transcoder: FFmpegTranscoder,
        pipeline: TranscodePipeline,
        dispatcher: Optional[TranscodeDispatcher] = None,
        clock: Optional[Callable[[], datetime]] = None,
        url_cache_ttl: timedelta = DEFAULT_URL_CACHE_TTL,
    ):
        """Initialize service.

        Args:
            repository: Video persistence
            storages: Storage backends; the first one signs manifest URLs
            transcoder: ffmpeg wrapper used for probing
            pipeline: Transcoding pipeline run by background jobs
            dispatcher: Queue that background jobs are submitted to
            clock: Returns the current UTC time
            url_cache_ttl: How long a signed manifest URL is reused
        """
        if not storages:
            raise ValueError("At least one storage backend is required")
        self.repository = repository
        self.storages = storages
        self.transcoder = transcoder
        self.pipeline = pipeline
        self.dispatcher = dispatcher
        self.clock = clock or utcnow
        self.url_cache_ttl = url_cache_ttl

    @property
    def signer(self) -> StorageBackend:
        return self.storages[0]

    async def create_video(self, source_path: str) -> Video:
        """Probe an uploaded file, persist a pending video and queue its transcode.

        Raises:
            MetadataError: If the file cannot be probed
            TranscodeQueueFullError: If no job can be queued
            PersistError: If the pending record cannot be saved
        """
        metadata = await asyncio.to_thread(self.transcoder.probe_metadata, source_path)

        if self.dispatcher is None or not self.dispatcher.has_capacity():
            raise TranscodeQueueFullError("Transcode queue is full, try again later")

        video = Video.new(metadata, now=self.clock())
        await self.repository.save(video)

        try:
            await self.dispatcher.submit(TranscodeJob(video_id=video.id, source_path=source_path))
        except StreamVaultError as e:
            await self._abandon(video, e)
            raise
        except Exception as e:
            await self._abandon(video, e)
            raise TranscodeQueueFullError(
                "Transcode job could not be queued",
                details={"video_id": video.id, "error": str(e)},
            ) from e

        log_info(logger, "Video created", video_id=video.id, source=metadata.name)
        return video

    async def _abandon(self, video: Video, error: Exception) -> None:
        log_error(logger, "Failed to queue transcode job", error, video_id=video.id)
        video.mark_error(now=self.clock())
        try:
            await self.repository.save(video)
        except PersistError as e:
            log_error(logger, "Failed to save errored video", e, video_id=video.id)

    async def cancel_video(self, video_id: str) -> Video:
        """Mark a pending video as errored and stop its transcode job.

        The error status is saved before the job is signalled; the job's own
        terminal save then loses the version check and is only logged.

        Raises:
            VideoNotFoundError: If the video does not exist
            InvalidStatusTransitionError: If the video is no longer pending
            ConcurrentUpdateError: If the job settled the video first
        """
        video = await self.repository.get(video_id)
        video.mark_error(now=self.clock())
        await self.repository.save(video)

        if self.dispatcher is not None and not self.dispatcher.cancel(video_id):
            log_warning(logger, "No running transcode job to cancel", video_id=video_id)
        log_info(logger, "Video cancelled", video_id=video_id)
        return video

    async def get_video(self, video_id: str) -> Video:
        """Get a video by id.

        Raises:
            VideoNotFoundError: If the video does not exist
        """
        return await self.repository.get(video_id)

    async def list_videos(self, page: int = 1, size: int = 10) -> VideoPage:
        return await self.repository.list(page, size)

    async def get_video_url(self, video_id: str, resolution: str) -> str:
        """Return a signed manifest URL for one rendition of a ready video.

        Checks run in a fixed order: resolution name, existence, readiness,
        rendition presence. A cached URL is reused until it expires.

        Raises:
            ResolutionInvalidError: If resolution is not a supported tier
            VideoNotFoundError: If the video does not exist
            VideoNotReadyError: If the video is not complete
            ResolutionNotFoundError: If the video lacks the rendition
            SigningError: If the manifest cannot be signed
            StorageWriteError: If the manifest cannot be stored
        """
        if not is_valid_resolution(resolution):
            raise ResolutionInvalidError(
                f"Unsupported resolution: {resolution}",
                details={"supported": [r.value for r in SUPPORTED_RESOLUTIONS]},
            )
        resolution = Resolution(resolution)

        video = await self.repository.get(video_id)
        if not video.is_ready():
            raise VideoNotReadyError(
                f"Video {video_id} is not ready",
                details={"video_id": video_id, "status": video.status.value},
            )

        record = video.get_resolution(resolution)
        if record is None:
            raise ResolutionNotFoundError(
                f"Video {video_id} has no {resolution.value} rendition",
                details={"video_id": video_id, "resolution": resolution.value},
            )

        now = self.clock()
        cached = video.cached_url(resolution, now)
        if cached is not None:
            MANIFEST_URL_REQUESTS_TOTAL.labels(result="hit").inc()
            return cached

        MANIFEST_URL_REQUESTS_TOTAL.labels(result="miss").inc()
        signed = await generate_signed_manifest(video.id, record, self.signer)
        video.assign_url(resolution, signed.url, now + min(self.url_cache_ttl, signed.ttl))

        try:
            await self.repository.save(video)
        except PersistError as e:
            log_warning(
                logger,
                "Failed to cache manifest URL",
                video_id=video.id,
                resolution=resolution.value,
                error=str(e),
            )

        return signed.url

    async def run_transcode_job(
        self,
        job: TranscodeJob,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Optional[Video]:
        """Run the pipeline for a pending video and persist the terminal status.

        Never raises for pipeline or persistence failures; they end the video in
        the error status and are logged with the video id as correlation id.
        """
        with correlation_scope(job.video_id):
            return await self._run_job(job, cancel_event)

    async def _run_job(
        self, job: TranscodeJob, cancel_event: Optional[asyncio.Event]
    ) -> Optional[Video]:
        start_time = time.perf_counter()

        try:
            video = await self.repository.get(job.video_id)
        except NotFoundError:
            log_warning(logger, "Transcode job for unknown video skipped", video_id=job.video_id)
            return None
        except PersistError as e:
            log_error(logger, "Failed to load video for transcode", e, video_id=job.video_id)
            return None

        if video.status != VideoStatus.PENDING:
            log_warning(
                logger,
                "Transcode job for settled video skipped",
                video_id=video.id,
                status=video.status.value,
            )
            return video

        outcome = "error"
        try:
            records = await self.pipeline.run(
                job.source_path, video.id, SUPPORTED_RESOLUTIONS, cancel_event
            )
            video.mark_complete(records, now=self.clock())
            outcome = "complete"
        except asyncio.CancelledError:
            video.mark_error(now=self.clock())
            await self._save_terminal(video)
            self._record_job_metrics("cancelled", start_time)
            raise
        except TranscodeCancelledError as e:
            log_warning(logger, "Transcode cancelled", video_id=video.id, error=e.message)
            outcome = "cancelled"
            video.mark_error(now=self.clock())
        except Exception as e:
            log_error(logger, "Transcode failed", e, video_id=video.id)
            video.mark_error(now=self.clock())

        await self._save_terminal(video)
        self._record_job_metrics(outcome, start_time)
        log_info(logger, "Transcode job finished", video_id=video.id, status=video.status.value)
        return video

    async def _save_terminal(self, video: Video) -> None:
        try:
            await self.repository.save(video)
        except PersistError as e:
            log_error(logger, "Failed to save transcode result", e, video_id=video.id)

    def _record_job_metrics(self, outcome: str, start_time: float) -> None:
        TRANSCODE_JOBS_TOTAL.labels(outcome=outcome).inc()
        TRANSCODE_JOB_DURATION_SECONDS.labels(outcome=outcome).observe(
            time.perf_counter() - start_time
        )
