"""Tests for the SQLAlchemy video repository against a mocked session."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from streamvault.core.errors import ConcurrentUpdateError, PersistError, VideoNotFoundError
from streamvault.modules.video.models import VideoRecord
from streamvault.modules.video.repository import (
    VideoRepository,
    row_to_video,
    video_to_row_values,
)
from streamvault.modules.video.schemas import Video, VideoStatus

from fakes import T0, make_complete_video, make_metadata


def make_session(rowcount: int = 1, get_result=None) -> MagicMock:
    session = MagicMock()
    session.add = MagicMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.execute = AsyncMock(return_value=MagicMock(rowcount=rowcount))
    session.get = AsyncMock(return_value=get_result)
    return session


def make_session_maker(session: MagicMock) -> MagicMock:
    context = MagicMock()
    context.__aenter__ = AsyncMock(return_value=session)
    context.__aexit__ = AsyncMock(return_value=False)
    return MagicMock(return_value=context)


class TestSave:
    @pytest.mark.asyncio
    async def test_first_save_inserts(self) -> None:
        session = make_session()
        video = Video.new(make_metadata(), now=T0)

        await VideoRepository(make_session_maker(session)).save(video)

        assert video.version == 1
        [row] = session.add.call_args.args
        assert isinstance(row, VideoRecord)
        assert row.id == video.id
        assert row.version == 1
        assert row.status == "pending"
        session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_update_bumps_version(self) -> None:
        session = make_session(rowcount=1)
        video = make_complete_video()
        video.version = 3

        await VideoRepository(make_session_maker(session)).save(video)

        assert video.version == 4
        session.execute.assert_awaited_once()
        session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_stale_version_conflicts(self) -> None:
        session = make_session(rowcount=0)
        video = make_complete_video()
        video.version = 2

        with pytest.raises(ConcurrentUpdateError):
            await VideoRepository(make_session_maker(session)).save(video)

        assert video.version == 2
        session.rollback.assert_awaited_once()
        session.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_duplicate_insert_conflicts(self) -> None:
        session = make_session()
        session.commit = AsyncMock(side_effect=IntegrityError("INSERT", {}, Exception("dup")))
        video = Video.new(make_metadata(), now=T0)

        with pytest.raises(ConcurrentUpdateError):
            await VideoRepository(make_session_maker(session)).save(video)
        assert video.version == 0

    @pytest.mark.asyncio
    async def test_database_failure_is_persist_error(self) -> None:
        session = make_session()
        session.commit = AsyncMock(side_effect=OperationalError("INSERT", {}, Exception("down")))

        with pytest.raises(PersistError):
            await VideoRepository(make_session_maker(session)).save(Video.new(make_metadata(), now=T0))


class TestGet:
    @pytest.mark.asyncio
    async def test_missing_row_not_found(self) -> None:
        repository = VideoRepository(make_session_maker(make_session(get_result=None)))

        with pytest.raises(VideoNotFoundError):
            await repository.get("missing")

    @pytest.mark.asyncio
    async def test_row_converted_to_video(self) -> None:
        video = make_complete_video()
        row = VideoRecord(id=video.id, version=5, **video_to_row_values(video))
        repository = VideoRepository(make_session_maker(make_session(get_result=row)))

        loaded = await repository.get(video.id)

        assert loaded.status == VideoStatus.COMPLETE
        assert loaded.version == 5
        assert loaded.resolutions == video.resolutions
        assert loaded.metadata == video.metadata


class TestRowMapping:
    def test_row_values_are_json_ready(self) -> None:
        video = make_complete_video()
        video.resolutions[0].url = "https://u"
        video.resolutions[0].url_expiration = T0

        values = video_to_row_values(video)

        assert values["status"] == "complete"
        assert values["resolutions"][0]["resolution"] == "360p"
        assert values["resolutions"][0]["url_expiration"] == T0.isoformat().replace("+00:00", "Z")
        assert row_to_video(VideoRecord(id=video.id, version=1, **values)).resolutions[0].url_expiration == T0
