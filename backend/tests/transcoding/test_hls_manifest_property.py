"""Property-based tests for HLS manifest generation.

**Feature: streamvault, Property 3: Manifest Structure**
"""

import pytest
from hypothesis import given, settings, strategies as st

from streamvault.core.errors import SigningError, StorageWriteError
from streamvault.core.storage import MANIFEST_CONTENT_TYPE
from streamvault.modules.transcoding.hls import (
    build_manifest,
    generate_signed_manifest,
    manifest_key,
    segment_key,
)
from streamvault.modules.transcoding.models import Resolution
from streamvault.modules.video.schemas import ResolutionRecord

from fakes import FakeStorage


resolution_strategy = st.sampled_from(list(Resolution))
VIDEO_ID = "0b6f1c3e-8d2a-4c4e-9a55-0c9f1e2d3b4a"


def make_record(resolution: Resolution, total_segments: int) -> ResolutionRecord:
    return ResolutionRecord(
        resolution=resolution,
        manifest_path=manifest_key(VIDEO_ID, resolution),
        total_segments=total_segments,
    )


class TestKeys:
    def test_segment_key_format(self) -> None:
        assert segment_key("abc", Resolution.RES_720P, 4) == "abc/video_720p_004.ts"

    def test_manifest_key_format(self) -> None:
        assert manifest_key("abc", Resolution.RES_1080P) == "abc/manifest_1080p.m3u8"

    @given(resolution=resolution_strategy, index=st.integers(min_value=0, max_value=5000))
    @settings(max_examples=100)
    def test_segment_key_is_deterministic(self, resolution: Resolution, index: int) -> None:
        assert segment_key(VIDEO_ID, resolution, index) == segment_key(VIDEO_ID, resolution, index)
        assert segment_key(VIDEO_ID, resolution, index).startswith(f"{VIDEO_ID}/video_{resolution.value}_")


class TestManifestStructure:
    """Manifests list one entry per index from 0 through total_segments."""

    def test_three_segments_give_four_entries(self) -> None:
        storage = FakeStorage()
        manifest = build_manifest(VIDEO_ID, make_record(Resolution.RES_360P, 3), storage)
        lines = manifest.splitlines()

        assert lines[:4] == [
            "#EXTM3U",
            "#EXT-X-VERSION:3",
            "#EXT-X-TARGETDURATION:10",
            "#EXT-X-MEDIA-SEQUENCE:0",
        ]
        assert sum(1 for line in lines if line.startswith("#EXTINF")) == 4
        assert lines.count("#EXT-X-ENDLIST") == 1
        assert lines[-1] == "#EXT-X-ENDLIST"

    @given(resolution=resolution_strategy, total=st.integers(min_value=0, max_value=200))
    @settings(max_examples=100)
    def test_each_entry_is_a_signed_segment_url(self, resolution: Resolution, total: int) -> None:
        storage = FakeStorage()
        lines = build_manifest(VIDEO_ID, make_record(resolution, total), storage).splitlines()

        entries = lines[4:-1]
        assert len(entries) == 2 * (total + 1)
        for index in range(total + 1):
            assert entries[2 * index] == "#EXTINF:10.0,"
            assert f"/{segment_key(VIDEO_ID, resolution, index)}?sig=" in entries[2 * index + 1]
        assert storage.sign_calls == total + 1

    def test_signing_failure_propagates(self) -> None:
        with pytest.raises(SigningError):
            build_manifest(VIDEO_ID, make_record(Resolution.RES_360P, 2), FakeStorage(fail_signing=True))


class TestSignedManifest:
    """The manifest is stored under its key and returned as a signed URL."""

    @pytest.mark.asyncio
    async def test_manifest_stored_and_signed(self) -> None:
        storage = FakeStorage(ttl_seconds=600)
        record = make_record(Resolution.RES_720P, 3)

        signed = await generate_signed_manifest(VIDEO_ID, record, storage)

        content, content_type = storage.objects[record.manifest_path]
        assert content_type == MANIFEST_CONTENT_TYPE
        assert content.decode().startswith("#EXTM3U\n")
        assert record.manifest_path in signed.url
        assert signed.ttl.total_seconds() == 600

    @pytest.mark.asyncio
    async def test_store_failure_propagates(self) -> None:
        storage = FakeStorage(fail_writes=True)

        with pytest.raises(StorageWriteError):
            await generate_signed_manifest(VIDEO_ID, make_record(Resolution.RES_480P, 1), storage)
