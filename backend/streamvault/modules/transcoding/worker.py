"""Dispatchers that run transcode jobs in the background.

``TranscodeWorkerPool`` runs jobs in-process on a bounded asyncio queue;
``CeleryTranscodeDispatcher`` hands them to Celery workers instead. Both
expose ``has_capacity``, ``submit``, ``cancel`` and ``stop``.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from streamvault.core.celery_app import TRANSCODE_TASK_NAME, celery_app
from streamvault.core.errors import TranscodeQueueFullError
from streamvault.core.metrics import TRANSCODE_JOBS_IN_PROGRESS, TRANSCODE_QUEUE_DEPTH

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TranscodeJob:
    """A request to transcode one uploaded source."""
    video_id: str
    source_path: str


JobHandler = Callable[[TranscodeJob, asyncio.Event], Awaitable[object]]


class TranscodeWorkerPool:
    """Bounded in-process queue drained by a fixed number of worker tasks.

    Every job gets its own cancellation event, passed to the handler.
    """

    def __init__(
        self,
        handler: JobHandler,
        concurrency: int = 2,
        max_queue_size: int = 100,
    ):
        if concurrency < 1:
            raise ValueError("Concurrency must be at least 1")
        if max_queue_size < 1:
            raise ValueError("Queue size must be at least 1")
        self.handler = handler
        self.concurrency = concurrency
        self._queue: asyncio.Queue[tuple[TranscodeJob, asyncio.Event]] = asyncio.Queue(
            maxsize=max_queue_size
        )
        self._tokens: dict[str, asyncio.Event] = {}
        self._workers: list[asyncio.Task] = []
        self._accepting = False

    async def start(self) -> None:
        """Spawn the worker tasks."""
        if self._workers:
            return
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"transcode-worker-{i}")
            for i in range(self.concurrency)
        ]
        self._accepting = True
        logger.info("Transcode worker pool started", extra={"concurrency": self.concurrency})

    def has_capacity(self) -> bool:
        return self._accepting and not self._queue.full()

    async def submit(self, job: TranscodeJob) -> asyncio.Event:
        """Queue a job and return its cancellation event.

        Raises:
            TranscodeQueueFullError: If the queue is full or the pool is stopped
        """
        if not self._accepting:
            raise TranscodeQueueFullError(
                "Transcode pool is not accepting jobs",
                details={"video_id": job.video_id},
            )

        token = asyncio.Event()
        try:
            self._queue.put_nowait((job, token))
        except asyncio.QueueFull as e:
            raise TranscodeQueueFullError(
                "Transcode queue is full",
                details={"video_id": job.video_id, "queue_size": self._queue.maxsize},
            ) from e

        self._tokens[job.video_id] = token
        TRANSCODE_QUEUE_DEPTH.set(self._queue.qsize())
        return token

    def cancel(self, video_id: str) -> bool:
        """Signal a queued or running job to stop. Returns False if unknown."""
        token = self._tokens.get(video_id)
        if token is None:
            return False
        token.set()
        return True

    async def stop(self, timeout: Optional[float] = None) -> None:
        """Cancel every job and stop the workers.

        Running and queued jobs see their token set. Whatever is still queued
        when ``timeout`` expires is handed to the handler after the workers are
        cancelled, so every accepted job reaches the handler exactly once.
        """
        self._accepting = False
        for token in self._tokens.values():
            token.set()

        if self._workers:
            try:
                await asyncio.wait_for(self._queue.join(), timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    "Transcode queue did not drain before shutdown",
                    extra={"remaining": self._queue.qsize()},
                )

        for worker in self._workers:
            worker.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []

        await self._drain_cancelled()
        logger.info("Transcode worker pool stopped")

    async def _drain_cancelled(self) -> None:
        while True:
            try:
                job, token = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            token.set()
            await self._handle(job, token, worker="shutdown")
        TRANSCODE_QUEUE_DEPTH.set(0)

    async def _worker(self, index: int) -> None:
        while True:
            job, token = await self._queue.get()
            TRANSCODE_QUEUE_DEPTH.set(self._queue.qsize())
            await self._handle(job, token, worker=index)

    async def _handle(self, job: TranscodeJob, token: asyncio.Event, worker) -> None:
        TRANSCODE_JOBS_IN_PROGRESS.inc()
        try:
            await self.handler(job, token)
        except Exception:
            logger.exception(
                "Transcode handler raised",
                extra={"video_id": job.video_id, "worker": worker},
            )
        finally:
            TRANSCODE_JOBS_IN_PROGRESS.dec()
            self._tokens.pop(job.video_id, None)
            self._queue.task_done()


class CeleryTranscodeDispatcher:
    """Sends jobs to Celery; the task id is the video id so it can be revoked."""

    def has_capacity(self) -> bool:
        return True

    async def submit(self, job: TranscodeJob) -> None:
        await asyncio.to_thread(
            celery_app.send_task,
            TRANSCODE_TASK_NAME,
            args=[job.video_id, job.source_path],
            task_id=job.video_id,
        )

    def cancel(self, video_id: str) -> bool:
        # SIGTERM reaches the task's event loop, which stops ffmpeg and records the error
        celery_app.control.revoke(video_id, terminate=True, signal="SIGTERM")
        return True

    async def stop(self, timeout: Optional[float] = None) -> None:
        return None
