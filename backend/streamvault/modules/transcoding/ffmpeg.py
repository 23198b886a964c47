"""FFmpeg utilities: metadata probing, encoder selection and HLS segmenting."""

import asyncio
import logging
import os
import signal
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

from streamvault.core.errors import (
    EncoderUnavailableError,
    EncodingProcessError,
    MetadataError,
    TranscodeCancelledError,
)
from streamvault.modules.transcoding.models import (
    Resolution,
    SEGMENT_DURATION_SECONDS,
    get_resolution_height,
)
from streamvault.modules.video.schemas import VideoMetadata

logger = logging.getLogger(__name__)

# Lines of ffmpeg stderr kept on EncodingProcessError
STDERR_TAIL_LINES = 40


@dataclass
class SegmentEncodeConfig:
    """Configuration for segmenting one rendition."""
    input_path: str
    output_dir: str
    resolution: Resolution
    encoder: str = "libx264"

    @property
    def segment_prefix(self) -> str:
        return f"video_{Resolution(self.resolution).value}_"

    @property
    def segment_pattern(self) -> str:
        return os.path.join(self.output_dir, f"{self.segment_prefix}%03d.ts")

    @property
    def segment_list_path(self) -> str:
        return os.path.join(
            self.output_dir, f"segments_{Resolution(self.resolution).value}.txt"
        )


def parse_probe_output(output: str, path: str) -> VideoMetadata:
    """Parse ffprobe ``nokey`` output into metadata.

    Expects width, height and duration on their own lines.

    Raises:
        MetadataError: If fewer than three values are present or the
            dimensions are not integers
    """
    lines = [line.strip() for line in output.splitlines() if line.strip()]
    if len(lines) < 3:
        raise MetadataError(
            f"ffprobe returned incomplete metadata for {path}",
            details={"output": output},
        )

    try:
        width = int(lines[0])
        height = int(lines[1])
    except ValueError as e:
        raise MetadataError(
            f"ffprobe returned non-numeric dimensions for {path}",
            details={"output": output},
        ) from e

    return VideoMetadata(
        width=width,
        height=height,
        name=os.path.basename(path),
        duration=lines[2],
    )


def parse_encoder_names(output: str) -> set[str]:
    """Extract encoder names from ``ffmpeg -encoders`` output."""
    names = set()
    in_table = False
    for line in output.splitlines():
        stripped = line.strip()
        if not in_table:
            # Legend ends with a " ------" separator line
            if stripped.startswith("---"):
                in_table = True
            continue
        parts = stripped.split()
        if len(parts) >= 2:
            names.add(parts[1])
    return names


def validate_segment_entries(entries: Iterable[str], resolution: Resolution) -> list[str]:
    """Check that the encoder's segment list is a gap-free sequence.

    Returns:
        Segment file names in index order

    Raises:
        EncodingProcessError: On an empty list or an out-of-sequence entry
    """
    prefix = f"video_{Resolution(resolution).value}_"
    names = [os.path.basename(e.strip()) for e in entries if e.strip()]
    if not names:
        raise EncodingProcessError(
            f"Encoder produced no segments for {Resolution(resolution).value}"
        )

    for index, name in enumerate(names):
        expected = f"{prefix}{index:03d}.ts"
        if name != expected:
            raise EncodingProcessError(
                f"Unexpected segment {name}, expected {expected}",
                details={"resolution": Resolution(resolution).value, "index": index},
            )
    return names


class FFmpegTranscoder:
    """Thin wrapper around the ffmpeg and ffprobe binaries."""

    PREFERRED_H264_ENCODERS = ("libx264", "h264_nvenc", "h264_qsv")

    def __init__(
        self,
        ffmpeg_path: str = "ffmpeg",
        ffprobe_path: str = "ffprobe",
        terminate_grace_seconds: float = 5.0,
    ):
        """Initialize transcoder.

        Args:
            ffmpeg_path: Path to ffmpeg binary
            ffprobe_path: Path to ffprobe binary
            terminate_grace_seconds: Wait after each stop signal before escalating
        """
        self.ffmpeg_path = ffmpeg_path
        self.ffprobe_path = ffprobe_path
        self.terminate_grace_seconds = terminate_grace_seconds

    def build_probe_command(self, input_path: str) -> list[str]:
        return [
            self.ffprobe_path,
            "-v", "error",
            "-select_streams", "v:0",
            "-show_entries", "stream=width,height,duration",
            "-of", "default=noprint_wrappers=1:nokey=1",
            input_path,
        ]

    def probe_metadata(self, input_path: str) -> VideoMetadata:
        """Read width, height and duration of the first video stream.

        Blocking; callers on the event loop should use a thread.

        Raises:
            MetadataError: If ffprobe cannot run, fails or prints unusable output
        """
        cmd = self.build_probe_command(input_path)
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, check=True)
        except subprocess.CalledProcessError as e:
            raise MetadataError(
                f"ffprobe failed for {input_path}",
                details={"returncode": e.returncode, "stderr": (e.stderr or "").strip()},
            ) from e
        except OSError as e:
            raise MetadataError(f"Cannot run ffprobe: {e}") from e

        return parse_probe_output(result.stdout, input_path)

    def list_encoders(self) -> set[str]:
        """List the encoders compiled into ffmpeg.

        Raises:
            EncoderUnavailableError: If ffmpeg cannot be run
        """
        cmd = [self.ffmpeg_path, "-hide_banner", "-encoders"]
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, check=True)
        except (OSError, subprocess.CalledProcessError) as e:
            raise EncoderUnavailableError(f"Cannot list ffmpeg encoders: {e}") from e
        return parse_encoder_names(result.stdout)

    def select_h264_encoder(self, available: Optional[set[str]] = None) -> str:
        """Pick the first available H.264 encoder in preference order.

        Raises:
            EncoderUnavailableError: If none of the preferred encoders exist
        """
        if available is None:
            available = self.list_encoders()

        for encoder in self.PREFERRED_H264_ENCODERS:
            if encoder in available:
                return encoder

        raise EncoderUnavailableError(
            "No H.264 encoder available",
            details={"preferred": list(self.PREFERRED_H264_ENCODERS)},
        )

    def build_segment_command(self, config: SegmentEncodeConfig) -> list[str]:
        """Build the ffmpeg command that scales and segments one rendition."""
        height = get_resolution_height(config.resolution)
        return [
            self.ffmpeg_path,
            "-y",
            "-i", config.input_path,
            "-vf", f"scale=-2:{height}",
            "-c:v", config.encoder,
            "-c:a", "aac",
            "-map", "0:v:0",
            "-map", "0:a?",
            "-f", "segment",
            "-segment_time", str(SEGMENT_DURATION_SECONDS),
            "-segment_format", "mpegts",
            "-reset_timestamps", "1",
            "-segment_list", config.segment_list_path,
            "-segment_list_type", "flat",
            config.segment_pattern,
        ]

    async def encode_segments(
        self,
        config: SegmentEncodeConfig,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> list[str]:
        """Run ffmpeg for one rendition and return the produced segment names.

        Raises:
            EncodingProcessError: On a non-zero exit or an unusable segment list
            TranscodeCancelledError: If cancel_event is set before or during the run
        """
        if cancel_event is not None and cancel_event.is_set():
            raise TranscodeCancelledError("Transcode cancelled before encoding")

        Path(config.output_dir).mkdir(parents=True, exist_ok=True)
        cmd = self.build_segment_command(config)
        logger.info(
            "Running ffmpeg",
            extra={"resolution": Resolution(config.resolution).value, "encoder": config.encoder},
        )

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise EncodingProcessError(f"Cannot start ffmpeg: {e}") from e

        communicate_task = asyncio.create_task(process.communicate())
        cancel_task = None
        if cancel_event is not None:
            cancel_task = asyncio.create_task(cancel_event.wait())

        try:
            waiters = {communicate_task}
            if cancel_task is not None:
                waiters.add(cancel_task)
            await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)

            if not communicate_task.done():
                logger.info("Cancellation requested, stopping ffmpeg")
                await self._graceful_terminate(process)
                await communicate_task
                raise TranscodeCancelledError(
                    f"Transcode cancelled while encoding {Resolution(config.resolution).value}"
                )

            _, stderr = communicate_task.result()
        except asyncio.CancelledError:
            await self._graceful_terminate(process)
            communicate_task.cancel()
            raise
        finally:
            if cancel_task is not None:
                cancel_task.cancel()

        if process.returncode != 0:
            stderr_text = (stderr or b"").decode("utf-8", errors="replace")
            tail = "\n".join(stderr_text.splitlines()[-STDERR_TAIL_LINES:])
            raise EncodingProcessError(
                f"ffmpeg exited with code {process.returncode}",
                details={
                    "resolution": Resolution(config.resolution).value,
                    "returncode": process.returncode,
                    "stderr": tail,
                },
            )

        return read_segment_list(config.segment_list_path, config.resolution)

    async def _graceful_terminate(self, process: asyncio.subprocess.Process) -> None:
        """Stop ffmpeg with SIGINT, then SIGTERM, then SIGKILL."""
        if process.returncode is not None:
            return

        # SIGINT lets ffmpeg close the current segment
        try:
            process.send_signal(signal.SIGINT)
            await asyncio.wait_for(process.wait(), timeout=self.terminate_grace_seconds)
            return
        except ProcessLookupError:
            return
        except asyncio.TimeoutError:
            pass

        try:
            process.terminate()
            await asyncio.wait_for(process.wait(), timeout=self.terminate_grace_seconds)
            return
        except ProcessLookupError:
            return
        except asyncio.TimeoutError:
            pass

        try:
            process.kill()
            await process.wait()
            logger.warning("ffmpeg killed forcefully")
        except ProcessLookupError:
            pass


def read_segment_list(path: str, resolution: Resolution) -> list[str]:
    """Read and validate a flat segment list written by ffmpeg.

    Raises:
        EncodingProcessError: If the list is missing, unreadable or out of sequence
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            entries = f.read().splitlines()
    except OSError as e:
        raise EncodingProcessError(
            f"Cannot read segment list {path}: {e}",
            details={"resolution": Resolution(resolution).value},
        ) from e
    return validate_segment_entries(entries, resolution)
