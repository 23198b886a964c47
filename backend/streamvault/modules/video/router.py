"""Video API router.

Upload, listing, lookup and signed manifest URLs, plus the media route that
serves objects of the local storage backend behind HMAC-signed URLs.
"""

import asyncio
import os
import shutil
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, Request, UploadFile, status
from fastapi.responses import FileResponse

from streamvault.core.config import settings
from streamvault.core.errors import ErrorKind, StreamVaultError
from streamvault.core.storage import LocalStorage, MANIFEST_CONTENT_TYPE, SEGMENT_CONTENT_TYPE
from streamvault.modules.transcoding.storage import cleanup_local_path
from streamvault.modules.video.schemas import (
    ManifestURLResponse,
    VideoListResponse,
    VideoResponse,
)
from streamvault.modules.video.service import VideoService

router = APIRouter(prefix="/videos", tags=["videos"])
media_router = APIRouter(prefix="/media", tags=["media"])

ERROR_STATUS_CODES = {
    ErrorKind.RESOLUTION_INVALID: status.HTTP_400_BAD_REQUEST,
    ErrorKind.RESOLUTION_NOT_FOUND: status.HTTP_400_BAD_REQUEST,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.VIDEO_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.VIDEO_NOT_READY: status.HTTP_409_CONFLICT,
    ErrorKind.INVALID_STATUS_TRANSITION: status.HTTP_409_CONFLICT,
    ErrorKind.CONCURRENT_UPDATE: status.HTTP_409_CONFLICT,
    ErrorKind.METADATA: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorKind.QUEUE_FULL: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def status_code_for(error: StreamVaultError) -> int:
    return ERROR_STATUS_CODES.get(error.kind, status.HTTP_500_INTERNAL_SERVER_ERROR)


def to_http_exception(error: StreamVaultError) -> HTTPException:
    return HTTPException(
        status_code=status_code_for(error),
        detail={"kind": error.kind.value, "message": error.message},
    )


def get_video_service(request: Request) -> VideoService:
    return request.app.state.video_service


def get_local_storage(request: Request) -> Optional[LocalStorage]:
    return getattr(request.app.state, "local_storage", None)


def get_upload_dir() -> str:
    return settings.UPLOAD_DIR


def _save_upload(file: UploadFile, upload_dir: str) -> str:
    os.makedirs(upload_dir, exist_ok=True)
    ext = os.path.splitext(file.filename or "")[1].lower()
    path = os.path.join(upload_dir, f"{uuid.uuid4()}{ext}")
    with open(path, "wb") as out:
        shutil.copyfileobj(file.file, out)
    return path


@router.post("/upload", response_model=VideoResponse, status_code=status.HTTP_202_ACCEPTED)
async def upload_video(
    video: UploadFile = File(...),
    service: VideoService = Depends(get_video_service),
    upload_dir: str = Depends(get_upload_dir),
):
    """Upload a video file and queue it for transcoding.

    The response carries the pending video; poll it until it is complete.
    """
    path = await asyncio.to_thread(_save_upload, video, upload_dir)

    try:
        created = await service.create_video(path)
    except StreamVaultError as e:
        await asyncio.to_thread(cleanup_local_path, path)
        raise to_http_exception(e)
    except Exception:
        await asyncio.to_thread(cleanup_local_path, path)
        raise

    return VideoResponse.from_video(created)


@router.get("", response_model=VideoListResponse)
async def list_videos(
    page: int = Query(1, ge=1),
    size: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    service: VideoService = Depends(get_video_service),
):
    """List videos, oldest first."""
    try:
        result = await service.list_videos(page=page, size=size)
    except StreamVaultError as e:
        raise to_http_exception(e)

    return VideoListResponse(
        items=[VideoResponse.from_video(v) for v in result.items],
        total=result.total,
        page=result.page,
        size=result.size,
        total_pages=result.total_pages,
    )


@router.get("/{video_id}", response_model=VideoResponse)
async def get_video(
    video_id: str,
    service: VideoService = Depends(get_video_service),
):
    """Get a video by ID."""
    try:
        video = await service.get_video(video_id)
    except StreamVaultError as e:
        raise to_http_exception(e)
    return VideoResponse.from_video(video)


@router.post("/{video_id}/cancel", response_model=VideoResponse)
async def cancel_video(
    video_id: str,
    service: VideoService = Depends(get_video_service),
):
    """Stop a pending transcode; the video ends in the error status."""
    try:
        video = await service.cancel_video(video_id)
    except StreamVaultError as e:
        raise to_http_exception(e)
    return VideoResponse.from_video(video)


@router.get("/{video_id}/manifest", response_model=ManifestURLResponse)
async def get_manifest_url(
    video_id: str,
    resolution: str = Query(...),
    service: VideoService = Depends(get_video_service),
):
    """Get a signed HLS manifest URL for one rendition."""
    try:
        url = await service.get_video_url(video_id, resolution)
    except StreamVaultError as e:
        raise to_http_exception(e)
    return ManifestURLResponse(url=url)


@media_router.get("/{key:path}")
async def get_media(
    key: str,
    expires: int = Query(...),
    signature: str = Query(...),
    storage: Optional[LocalStorage] = Depends(get_local_storage),
):
    """Serve an object from local storage if its signed URL is still valid."""
    if storage is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found")

    if not storage.verify_signature(key, expires, signature):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid or expired signature",
        )

    try:
        path = storage.resolve_path(key)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found")
    if not path.is_file():
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found")

    media_type = "application/octet-stream"
    if path.suffix == ".ts":
        media_type = SEGMENT_CONTENT_TYPE
    elif path.suffix == ".m3u8":
        media_type = MANIFEST_CONTENT_TYPE
    return FileResponse(path, media_type=media_type)
