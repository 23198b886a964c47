"""Error taxonomy shared by the pipeline, the video service and the API layer.

Every error carries an ``ErrorKind`` so the HTTP boundary can choose the
response status without string matching on messages.
"""

from enum import Enum
from typing import Any, Optional


class ErrorKind(str, Enum):
    """Machine-readable error categories."""
    METADATA = "metadata_error"
    ENCODER_UNAVAILABLE = "encoder_unavailable"
    ENCODING_PROCESS = "encoding_process_error"
    TRANSCODE_CANCELLED = "transcode_cancelled"
    QUEUE_FULL = "queue_full"
    STORAGE_WRITE = "storage_write_error"
    SIGNING = "signing_error"
    PERSIST = "persist_error"
    CONCURRENT_UPDATE = "concurrent_update"
    NOT_FOUND = "not_found"
    VIDEO_NOT_FOUND = "video_not_found"
    RESOLUTION_INVALID = "resolution_invalid"
    RESOLUTION_NOT_FOUND = "resolution_not_found"
    VIDEO_NOT_READY = "video_not_ready"
    INVALID_STATUS_TRANSITION = "invalid_status_transition"


class StreamVaultError(Exception):
    """Base exception for all domain errors."""

    kind: ErrorKind = ErrorKind.PERSIST

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class MetadataError(StreamVaultError):
    """Raised when ffprobe cannot produce width, height and duration."""
    kind = ErrorKind.METADATA


class EncoderUnavailableError(StreamVaultError):
    """Raised when no usable H.264 encoder is available."""
    kind = ErrorKind.ENCODER_UNAVAILABLE


class EncodingProcessError(StreamVaultError):
    """Raised when the encoder exits non-zero or produces unusable output."""
    kind = ErrorKind.ENCODING_PROCESS


class TranscodeCancelledError(StreamVaultError):
    """Raised when a transcode job is cancelled through its token."""
    kind = ErrorKind.TRANSCODE_CANCELLED


class TranscodeQueueFullError(StreamVaultError):
    """Raised when the transcode queue cannot accept another job."""
    kind = ErrorKind.QUEUE_FULL


class StorageWriteError(StreamVaultError):
    """Raised when an object cannot be written to a storage backend."""
    kind = ErrorKind.STORAGE_WRITE


class SigningError(StreamVaultError):
    """Raised when a storage backend cannot sign a URL."""
    kind = ErrorKind.SIGNING


class PersistError(StreamVaultError):
    """Raised when a video record cannot be saved."""
    kind = ErrorKind.PERSIST


class ConcurrentUpdateError(PersistError):
    """Raised when a save loses an optimistic version check."""
    kind = ErrorKind.CONCURRENT_UPDATE


class NotFoundError(StreamVaultError):
    """Raised when a requested record does not exist."""
    kind = ErrorKind.NOT_FOUND


class VideoNotFoundError(NotFoundError):
    """Raised when a video id is unknown."""
    kind = ErrorKind.VIDEO_NOT_FOUND


class ResolutionInvalidError(StreamVaultError):
    """Raised when a resolution string is not one of the supported tiers."""
    kind = ErrorKind.RESOLUTION_INVALID


class ResolutionNotFoundError(StreamVaultError):
    """Raised when a video has no rendition for the requested tier."""
    kind = ErrorKind.RESOLUTION_NOT_FOUND


class VideoNotReadyError(StreamVaultError):
    """Raised when a video has not finished transcoding."""
    kind = ErrorKind.VIDEO_NOT_READY


class InvalidStatusTransitionError(StreamVaultError):
    """Raised on any status change other than pending -> complete/error."""
    kind = ErrorKind.INVALID_STATUS_TRANSITION
