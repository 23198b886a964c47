"""Rendition tiers and segmenting constants."""

from enum import Enum


class Resolution(str, Enum):
    """Supported output resolutions."""
    RES_360P = "360p"
    RES_480P = "480p"
    RES_720P = "720p"
    RES_1080P = "1080p"


# Output height per tier; width follows the source aspect ratio
RESOLUTION_HEIGHTS = {
    Resolution.RES_360P: 360,
    Resolution.RES_480P: 480,
    Resolution.RES_720P: 720,
    Resolution.RES_1080P: 1080,
}

# Transcode order
SUPPORTED_RESOLUTIONS = (
    Resolution.RES_360P,
    Resolution.RES_480P,
    Resolution.RES_720P,
    Resolution.RES_1080P,
)

SEGMENT_DURATION_SECONDS = 10


def is_valid_resolution(value: str) -> bool:
    """Check whether value names one of the supported tiers."""
    return value in {r.value for r in Resolution}


def get_resolution_height(resolution: Resolution) -> int:
    """Get the output height for a tier."""
    return RESOLUTION_HEIGHTS[Resolution(resolution)]
