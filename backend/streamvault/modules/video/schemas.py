"""Video entity and API schemas.

The ``Video`` model is both the domain entity (it owns the status state
machine and the per-rendition signed URL cache) and the unit the repository
serializes.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from streamvault.core.errors import InvalidStatusTransitionError
from streamvault.modules.transcoding.models import Resolution


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class VideoStatus(str, Enum):
    """Lifecycle of a video: pending until its transcode job ends."""
    PENDING = "pending"
    COMPLETE = "complete"
    ERROR = "error"


class VideoMetadata(BaseModel):
    """Source properties captured by probing before the record exists."""

    width: int
    height: int
    name: str
    duration: str


class ResolutionRecord(BaseModel):
    """One stored rendition plus its most recently signed manifest URL."""

    resolution: Resolution
    manifest_path: str
    total_segments: int = Field(..., ge=0)
    url: Optional[str] = None
    url_expiration: Optional[datetime] = None

    def has_valid_url(self, now: datetime) -> bool:
        """A cached URL is trusted only strictly before its expiration."""
        return (
            self.url is not None
            and self.url_expiration is not None
            and now < self.url_expiration
        )


class Video(BaseModel):
    """Root entity for an uploaded video."""

    id: str
    metadata: VideoMetadata
    status: VideoStatus = VideoStatus.PENDING
    resolutions: list[ResolutionRecord] = Field(default_factory=list)
    version: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def new(cls, metadata: VideoMetadata, now: Optional[datetime] = None) -> "Video":
        """Create a pending video with a fresh id."""
        now = now or utcnow()
        return cls(
            id=str(uuid.uuid4()),
            metadata=metadata,
            created_at=now,
            updated_at=now,
        )

    def is_ready(self) -> bool:
        return self.status == VideoStatus.COMPLETE

    def get_resolution(self, resolution: Resolution) -> Optional[ResolutionRecord]:
        """Return the stored rendition record; changes to it update this video."""
        resolution = Resolution(resolution)
        for record in self.resolutions:
            if record.resolution == resolution:
                return record
        return None

    def cached_url(self, resolution: Resolution, now: datetime) -> Optional[str]:
        record = self.get_resolution(resolution)
        if record is not None and record.has_valid_url(now):
            return record.url
        return None

    def assign_url(
        self,
        resolution: Resolution,
        url: str,
        expiration: datetime,
    ) -> None:
        """Cache a freshly signed manifest URL for a rendition.

        Raises:
            KeyError: If the video has no such rendition
        """
        record = self.get_resolution(resolution)
        if record is None:
            raise KeyError(Resolution(resolution).value)
        record.url = url
        record.url_expiration = expiration

    def mark_complete(
        self,
        records: list[ResolutionRecord],
        now: Optional[datetime] = None,
    ) -> None:
        """Transition pending -> complete, attaching every rendition at once.

        Raises:
            InvalidStatusTransitionError: If the video is not pending
            ValueError: If records is empty or repeats a resolution
        """
        self._check_pending(VideoStatus.COMPLETE)
        if not records:
            raise ValueError("A complete video needs at least one resolution")
        seen = [r.resolution for r in records]
        if len(set(seen)) != len(seen):
            raise ValueError("Resolutions must be unique within a video")

        self.resolutions = list(records)
        self.status = VideoStatus.COMPLETE
        self.updated_at = now or utcnow()

    def mark_error(self, now: Optional[datetime] = None) -> None:
        """Transition pending -> error.

        Raises:
            InvalidStatusTransitionError: If the video is not pending
        """
        self._check_pending(VideoStatus.ERROR)
        self.resolutions = []
        self.status = VideoStatus.ERROR
        self.updated_at = now or utcnow()

    def _check_pending(self, target: VideoStatus) -> None:
        if self.status != VideoStatus.PENDING:
            raise InvalidStatusTransitionError(
                f"Cannot move video {self.id} from {self.status.value} to {target.value}",
                details={"video_id": self.id, "status": self.status.value},
            )


class VideoPage(BaseModel):
    """One page of videos."""

    items: list[Video]
    total: int
    page: int
    size: int
    total_pages: int


# ============================================
# API responses
# ============================================


class ResolutionResponse(BaseModel):
    """Rendition summary; signed URLs are fetched through the manifest route."""

    resolution: Resolution
    total_segments: int


class VideoResponse(BaseModel):
    """Response schema for a video."""

    id: str
    metadata: VideoMetadata
    status: VideoStatus
    resolutions: list[ResolutionResponse]
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_video(cls, video: Video) -> "VideoResponse":
        return cls(
            id=video.id,
            metadata=video.metadata,
            status=video.status,
            resolutions=[
                ResolutionResponse(resolution=r.resolution, total_segments=r.total_segments)
                for r in video.resolutions
            ],
            created_at=video.created_at,
            updated_at=video.updated_at,
        )


class VideoListResponse(BaseModel):
    """Paginated list of videos."""

    items: list[VideoResponse]
    total: int
    page: int
    size: int
    total_pages: int


class ManifestURLResponse(BaseModel):
    """Signed manifest URL for one rendition."""

    url: str
