"""Video repository for database operations.

Saves are guarded by an optimistic ``version`` counter: a video that was never
saved has version 0 and is inserted; later saves only succeed if the stored
row still carries the version the caller loaded.
"""

from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from streamvault.core.errors import (
    ConcurrentUpdateError,
    PersistError,
    VideoNotFoundError,
)
from streamvault.modules.video.models import VideoRecord
from streamvault.modules.video.schemas import (
    ResolutionRecord,
    Video,
    VideoMetadata,
    VideoPage,
    VideoStatus,
)


def total_pages(count: int, size: int) -> int:
    """Number of pages needed for count items, rounding up."""
    if size < 1:
        raise ValueError("Page size must be positive")
    return (count + size - 1) // size


def page_bounds(page: int, size: int, count: int) -> tuple[int, int]:
    """Half-open index range of the items on a 1-based page.

    Pages past the end yield an empty range.
    """
    if page < 1:
        raise ValueError("Page numbers start at 1")
    if size < 1:
        raise ValueError("Page size must be positive")
    start = min((page - 1) * size, count)
    end = min(page * size, count)
    return start, end


def video_to_row_values(video: Video) -> dict[str, Any]:
    return {
        "status": video.status.value,
        "video_metadata": video.metadata.model_dump(mode="json"),
        "resolutions": [r.model_dump(mode="json") for r in video.resolutions],
        "created_at": video.created_at,
        "updated_at": video.updated_at,
    }


def row_to_video(row: VideoRecord) -> Video:
    return Video(
        id=row.id,
        metadata=VideoMetadata.model_validate(row.video_metadata),
        status=VideoStatus(row.status),
        resolutions=[ResolutionRecord.model_validate(r) for r in row.resolutions or []],
        version=row.version,
        created_at=row.created_at,
        updated_at=row.updated_at or row.created_at,
    )


class VideoRepository:
    """Repository for Video persistence.

    Each call runs in its own session so concurrent saves for different
    videos are independent transactions.
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        """Initialize repository with a session factory."""
        self.session_maker = session_maker

    async def save(self, video: Video) -> Video:
        """Insert or update a video and bump its version.

        Raises:
            ConcurrentUpdateError: If the stored version differs from video.version
            PersistError: On any other database failure
        """
        values = video_to_row_values(video)
        new_version = video.version + 1

        try:
            async with self.session_maker() as session:
                if video.version == 0:
                    session.add(VideoRecord(id=video.id, version=new_version, **values))
                    await session.commit()
                else:
                    result = await session.execute(
                        update(VideoRecord)
                        .where(
                            VideoRecord.id == video.id,
                            VideoRecord.version == video.version,
                        )
                        .values(version=new_version, **values)
                    )
                    if result.rowcount == 0:
                        await session.rollback()
                        raise ConcurrentUpdateError(
                            f"Video {video.id} was modified concurrently",
                            details={"video_id": video.id, "version": video.version},
                        )
                    await session.commit()
        except IntegrityError as e:
            raise ConcurrentUpdateError(
                f"Video {video.id} already exists",
                details={"video_id": video.id},
            ) from e
        except SQLAlchemyError as e:
            raise PersistError(
                f"Failed to save video {video.id}",
                details={"video_id": video.id, "error": str(e)},
            ) from e

        video.version = new_version
        return video

    async def get(self, video_id: str) -> Video:
        """Load a video by id.

        Raises:
            VideoNotFoundError: If no such video exists
            PersistError: On a database failure
        """
        try:
            async with self.session_maker() as session:
                row = await session.get(VideoRecord, video_id)
        except SQLAlchemyError as e:
            raise PersistError(
                f"Failed to load video {video_id}",
                details={"video_id": video_id, "error": str(e)},
            ) from e

        if row is None:
            raise VideoNotFoundError(
                f"Video {video_id} not found",
                details={"video_id": video_id},
            )
        return row_to_video(row)

    async def list(self, page: int, size: int) -> VideoPage:
        """Get one page of videos ordered by creation time."""
        try:
            async with self.session_maker() as session:
                count = (
                    await session.execute(select(func.count()).select_from(VideoRecord))
                ).scalar_one()
                start, end = page_bounds(page, size, count)
                rows = []
                if end > start:
                    result = await session.execute(
                        select(VideoRecord)
                        .order_by(VideoRecord.created_at, VideoRecord.id)
                        .offset(start)
                        .limit(end - start)
                    )
                    rows = result.scalars().all()
        except SQLAlchemyError as e:
            raise PersistError(f"Failed to list videos: {e}") from e

        return VideoPage(
            items=[row_to_video(row) for row in rows],
            total=count,
            page=page,
            size=size,
            total_pages=total_pages(count, size),
        )
