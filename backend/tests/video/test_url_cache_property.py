"""Property-based tests for the signed manifest URL cache.

**Feature: streamvault, Property 6: URL Cache Expiry**
"""

from datetime import timedelta

import pytest
from hypothesis import given, settings, strategies as st

from streamvault.modules.transcoding.models import Resolution
from streamvault.modules.transcoding.pipeline import TranscodePipeline
from streamvault.modules.video.service import VideoService

from fakes import (
    FakeStorage,
    FakeTranscoder,
    FixedClock,
    InMemoryVideoRepository,
    T0,
    make_complete_video,
)


async def make_service(
    storage_ttl_seconds: int = 3600,
    cache_ttl: timedelta = timedelta(minutes=60),
):
    repository = InMemoryVideoRepository()
    video = make_complete_video()
    await repository.save(video)
    storage = FakeStorage(ttl_seconds=storage_ttl_seconds)
    transcoder = FakeTranscoder()
    clock = FixedClock(T0)
    service = VideoService(
        repository=repository,
        storages=[storage],
        transcoder=transcoder,
        pipeline=TranscodePipeline(transcoder, [storage], "/unused"),
        clock=clock,
        url_cache_ttl=cache_ttl,
    )
    return service, repository, storage, clock, video.id


class TestUrlCache:
    """A signed URL is reused until it expires, then regenerated."""

    @given(elapsed=st.integers(min_value=0, max_value=3599))
    @settings(max_examples=50)
    @pytest.mark.asyncio
    async def test_same_url_within_ttl(self, elapsed: int) -> None:
        service, _, storage, clock, video_id = await make_service()

        first = await service.get_video_url(video_id, "720p")
        signs_after_first = storage.sign_calls
        clock.advance(timedelta(seconds=elapsed))
        second = await service.get_video_url(video_id, "720p")

        assert second == first
        assert storage.sign_calls == signs_after_first

    @pytest.mark.asyncio
    async def test_regenerated_after_ttl_with_later_expiration(self) -> None:
        service, repository, _, clock, video_id = await make_service()

        first = await service.get_video_url(video_id, "360p")
        first_expiration = repository.videos[video_id].get_resolution(Resolution.RES_360P).url_expiration
        clock.advance(timedelta(minutes=60))
        second = await service.get_video_url(video_id, "360p")
        second_expiration = repository.videos[video_id].get_resolution(Resolution.RES_360P).url_expiration

        assert second != first
        assert second_expiration > first_expiration

    @pytest.mark.asyncio
    async def test_first_request_caches_with_expiration(self) -> None:
        service, repository, _, _, video_id = await make_service()

        url = await service.get_video_url(video_id, "1080p")

        record = repository.videos[video_id].get_resolution(Resolution.RES_1080P)
        assert record.url == url
        assert record.url_expiration == T0 + timedelta(minutes=60)
        # Other renditions stay uncached
        assert repository.videos[video_id].get_resolution(Resolution.RES_720P).url is None

    @pytest.mark.asyncio
    async def test_cache_ttl_capped_by_signer_ttl(self) -> None:
        service, repository, _, _, video_id = await make_service(storage_ttl_seconds=600)

        await service.get_video_url(video_id, "480p")

        record = repository.videos[video_id].get_resolution(Resolution.RES_480P)
        assert record.url_expiration == T0 + timedelta(minutes=10)

    @pytest.mark.asyncio
    async def test_save_failure_still_returns_fresh_url(self) -> None:
        service, repository, storage, _, video_id = await make_service()
        repository.fail_saves = True

        url = await service.get_video_url(video_id, "720p")

        assert url.startswith("https://fake.example/")
        assert f"{video_id}/manifest_720p.m3u8" in storage.objects
