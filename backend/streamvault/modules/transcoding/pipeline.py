"""Transcoding pipeline: source file in, replicated HLS renditions out.

A run is all-or-nothing. Renditions are produced one after another and the
first failure aborts the run without returning any records, even for
renditions that were already uploaded.
"""

import asyncio
import logging
import os
import time
from typing import Iterable, Optional

from streamvault.core.errors import (
    EncodingProcessError,
    StorageWriteError,
    TranscodeCancelledError,
)
from streamvault.core.metrics import RENDITION_ENCODE_DURATION_SECONDS
from streamvault.core.storage import SEGMENT_CONTENT_TYPE, StorageBackend
from streamvault.modules.transcoding.ffmpeg import FFmpegTranscoder, SegmentEncodeConfig
from streamvault.modules.transcoding.hls import manifest_key, segment_key
from streamvault.modules.transcoding.models import Resolution, SUPPORTED_RESOLUTIONS
from streamvault.modules.transcoding.storage import (
    cleanup_local_path,
    read_local_file,
    replicate_object,
)
from streamvault.modules.video.schemas import ResolutionRecord

logger = logging.getLogger(__name__)


class TranscodePipeline:
    """Encodes every rendition of a source and writes segments to all backends."""

    def __init__(
        self,
        transcoder: FFmpegTranscoder,
        storages: list[StorageBackend],
        work_root: str,
    ):
        """Initialize pipeline.

        Args:
            transcoder: ffmpeg wrapper
            storages: Backends every segment is written to
            work_root: Directory holding one working directory per video
        """
        self.transcoder = transcoder
        self.storages = storages
        self.work_root = work_root

    def workdir_for(self, video_id: str) -> str:
        return os.path.join(self.work_root, video_id)

    async def run(
        self,
        source_path: str,
        video_id: str,
        resolutions: Optional[Iterable[Resolution]] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> list[ResolutionRecord]:
        """Transcode and upload every rendition.

        The working directory is removed whatever the outcome; the source file
        is removed only after a successful run.

        Raises:
            EncoderUnavailableError: If no H.264 encoder is available
            EncodingProcessError: If ffmpeg fails or its output is unusable
            StorageWriteError: If any backend rejects a segment
            TranscodeCancelledError: If cancel_event is set
        """
        if not self.storages:
            raise StorageWriteError("No storage backends configured")

        resolutions = list(resolutions or SUPPORTED_RESOLUTIONS)
        encoder = await asyncio.to_thread(self.transcoder.select_h264_encoder)
        workdir = self.workdir_for(video_id)

        records = []
        try:
            for resolution in resolutions:
                if cancel_event is not None and cancel_event.is_set():
                    raise TranscodeCancelledError(
                        f"Transcode of {video_id} cancelled",
                        details={"video_id": video_id},
                    )
                record = await self._transcode_resolution(
                    source_path, video_id, Resolution(resolution), encoder, workdir, cancel_event
                )
                records.append(record)
        except (Exception, asyncio.CancelledError):
            await asyncio.to_thread(cleanup_local_path, workdir)
            raise

        await asyncio.to_thread(cleanup_local_path, workdir)
        await asyncio.to_thread(cleanup_local_path, source_path)
        return records

    async def _transcode_resolution(
        self,
        source_path: str,
        video_id: str,
        resolution: Resolution,
        encoder: str,
        workdir: str,
        cancel_event: Optional[asyncio.Event],
    ) -> ResolutionRecord:
        config = SegmentEncodeConfig(
            input_path=source_path,
            output_dir=workdir,
            resolution=resolution,
            encoder=encoder,
        )

        start_time = time.perf_counter()
        segment_names = await self.transcoder.encode_segments(config, cancel_event)
        RENDITION_ENCODE_DURATION_SECONDS.labels(resolution=resolution.value).observe(
            time.perf_counter() - start_time
        )

        for index, name in enumerate(segment_names):
            await asyncio.to_thread(
                self._upload_segment,
                os.path.join(workdir, name),
                segment_key(video_id, resolution, index),
            )

        logger.info(
            "Rendition uploaded",
            extra={
                "video_id": video_id,
                "resolution": resolution.value,
                "total_segments": len(segment_names),
            },
        )
        return ResolutionRecord(
            resolution=resolution,
            manifest_path=manifest_key(video_id, resolution),
            total_segments=len(segment_names),
        )

    def _upload_segment(self, path: str, key: str) -> None:
        try:
            content = read_local_file(path)
        except OSError as e:
            raise EncodingProcessError(
                f"Cannot read segment {path}: {e}",
                details={"key": key},
            ) from e
        replicate_object(self.storages, key, content, SEGMENT_CONTENT_TYPE)
