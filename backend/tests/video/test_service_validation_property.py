"""Property-based tests for manifest URL request validation.

**Feature: streamvault, Property 7: Validation Order**
"""

import pytest
from hypothesis import assume, given, settings, strategies as st

from streamvault.core.errors import (
    ResolutionInvalidError,
    ResolutionNotFoundError,
    VideoNotFoundError,
    VideoNotReadyError,
)
from streamvault.modules.transcoding.models import Resolution
from streamvault.modules.transcoding.pipeline import TranscodePipeline
from streamvault.modules.video.schemas import Video
from streamvault.modules.video.service import VideoService

from fakes import (
    FakeStorage,
    FakeTranscoder,
    InMemoryVideoRepository,
    T0,
    make_complete_video,
    make_metadata,
)


VALID_NAMES = {r.value for r in Resolution}


def make_service(repository: InMemoryVideoRepository) -> tuple[VideoService, FakeStorage]:
    storage = FakeStorage()
    transcoder = FakeTranscoder()
    service = VideoService(
        repository=repository,
        storages=[storage],
        transcoder=transcoder,
        pipeline=TranscodePipeline(transcoder, [storage], "/unused"),
        clock=lambda: T0,
    )
    return service, storage


class TestValidationOrder:
    """Resolution name, existence, readiness and rendition are checked in that order."""

    @pytest.mark.asyncio
    async def test_4k_invalid_even_for_unknown_video(self) -> None:
        service, _ = make_service(InMemoryVideoRepository())

        with pytest.raises(ResolutionInvalidError):
            await service.get_video_url("does-not-exist", "4k")

    @given(resolution=st.text(max_size=8))
    @settings(max_examples=100)
    @pytest.mark.asyncio
    async def test_unsupported_names_always_invalid(self, resolution: str) -> None:
        assume(resolution not in VALID_NAMES)
        repository = InMemoryVideoRepository()
        video = make_complete_video()
        await repository.save(video)
        service, storage = make_service(repository)

        with pytest.raises(ResolutionInvalidError):
            await service.get_video_url(video.id, resolution)
        assert storage.sign_calls == 0

    @given(resolution=st.sampled_from(sorted(VALID_NAMES)))
    @settings(max_examples=20)
    @pytest.mark.asyncio
    async def test_unknown_video_not_found(self, resolution: str) -> None:
        service, _ = make_service(InMemoryVideoRepository())

        with pytest.raises(VideoNotFoundError):
            await service.get_video_url("missing", resolution)

    @pytest.mark.asyncio
    async def test_pending_video_not_ready(self) -> None:
        repository = InMemoryVideoRepository()
        video = Video.new(make_metadata(), now=T0)
        await repository.save(video)
        service, _ = make_service(repository)

        with pytest.raises(VideoNotReadyError):
            await service.get_video_url(video.id, "360p")

    @pytest.mark.asyncio
    async def test_errored_video_not_ready(self) -> None:
        repository = InMemoryVideoRepository()
        video = Video.new(make_metadata(), now=T0)
        video.mark_error(now=T0)
        await repository.save(video)
        service, _ = make_service(repository)

        with pytest.raises(VideoNotReadyError):
            await service.get_video_url(video.id, "360p")

    @pytest.mark.asyncio
    async def test_missing_rendition_not_found(self) -> None:
        repository = InMemoryVideoRepository()
        video = make_complete_video(resolutions=[Resolution.RES_360P, Resolution.RES_480P])
        await repository.save(video)
        service, _ = make_service(repository)

        with pytest.raises(ResolutionNotFoundError):
            await service.get_video_url(video.id, "1080p")

    def test_service_requires_a_backend(self) -> None:
        transcoder = FakeTranscoder()
        with pytest.raises(ValueError):
            VideoService(
                repository=InMemoryVideoRepository(),
                storages=[],
                transcoder=transcoder,
                pipeline=TranscodePipeline(transcoder, [], "/unused"),
            )
