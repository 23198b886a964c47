"""HLS key naming and signed manifest generation."""

import asyncio
import logging

from streamvault.core.storage import MANIFEST_CONTENT_TYPE, SignedURL, StorageBackend
from streamvault.modules.transcoding.models import Resolution, SEGMENT_DURATION_SECONDS
from streamvault.modules.video.schemas import ResolutionRecord

logger = logging.getLogger(__name__)


def segment_name(resolution: Resolution, index: int) -> str:
    return f"video_{Resolution(resolution).value}_{index:03d}.ts"


def segment_key(video_id: str, resolution: Resolution, index: int) -> str:
    """Storage key of a segment, e.g. ``<id>/video_720p_004.ts``."""
    return f"{video_id}/{segment_name(resolution, index)}"


def manifest_key(video_id: str, resolution: Resolution) -> str:
    """Storage key of a rendition manifest, e.g. ``<id>/manifest_720p.m3u8``."""
    return f"{video_id}/manifest_{Resolution(resolution).value}.m3u8"


def build_manifest(video_id: str, record: ResolutionRecord, storage: StorageBackend) -> str:
    """Render a VOD playlist whose segment entries are freshly signed URLs.

    Entries run from index 0 through total_segments inclusive, so the last
    entry points one past the final encoded segment.

    Raises:
        SigningError: If any segment URL cannot be signed
    """
    lines = [
        "#EXTM3U",
        "#EXT-X-VERSION:3",
        f"#EXT-X-TARGETDURATION:{SEGMENT_DURATION_SECONDS}",
        "#EXT-X-MEDIA-SEQUENCE:0",
    ]
    for index in range(record.total_segments + 1):
        signed = storage.signed_url(segment_key(video_id, record.resolution, index))
        lines.append(f"#EXTINF:{SEGMENT_DURATION_SECONDS:.1f},")
        lines.append(signed.url)
    lines.append("#EXT-X-ENDLIST")
    return "\n".join(lines) + "\n"


def publish_manifest(video_id: str, record: ResolutionRecord, storage: StorageBackend) -> SignedURL:
    """Build, store and sign a manifest. Blocking.

    Raises:
        SigningError: If a segment or the manifest cannot be signed
        StorageWriteError: If the manifest cannot be stored
    """
    manifest = build_manifest(video_id, record, storage)
    storage.store(record.manifest_path, manifest.encode("utf-8"), MANIFEST_CONTENT_TYPE)
    signed = storage.signed_url(record.manifest_path)
    logger.info(
        "Manifest published",
        extra={
            "video_id": video_id,
            "resolution": Resolution(record.resolution).value,
            "backend": storage.name,
        },
    )
    return signed


async def generate_signed_manifest(
    video_id: str,
    record: ResolutionRecord,
    storage: StorageBackend,
) -> SignedURL:
    """Regenerate a rendition manifest and return its signed URL."""
    return await asyncio.to_thread(publish_manifest, video_id, record, storage)
