"""ORM model for persisted videos.

The row is a pass-through serialization of the ``Video`` entity: metadata and
renditions live in JSON columns and ``version`` guards concurrent saves.
"""

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import DateTime, Integer, String, JSON
from sqlalchemy.orm import Mapped, mapped_column

from streamvault.core.database import Base


class VideoRecord(Base):
    """Row holding one video."""

    __tablename__ = "videos"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, index=True)

    # "metadata" is reserved on declarative classes
    video_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSON, nullable=False
    )
    resolutions: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON, nullable=False, default=list
    )

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    def __repr__(self) -> str:
        return f"<VideoRecord(id={self.id}, status={self.status}, version={self.version})>"
