"""
crud.py 单元测试

测试视频记录的创建、租户隔离查询、筛选分页和删除
"""

import pytest
from sqlmodel import Session

from app.core.models import Video, VideoStatus, SensitivityStatus
from app.crud import create_video, delete_video, get_video_for_organization, list_videos

from fakes import make_video


@pytest.fixture
def db(in_memory_db):
    with Session(in_memory_db) as session:
        yield session


def test_create_video(db):
    video = create_video(
        db,
        user_id="user-1",
        organization_id="org-1",
        original_name="clip.mp4",
        object_key="org-1/user-1/1-clip.mp4",
        bucket="bucket-a",
        size=42,
        mime_type="video/mp4",
    )

    assert video.id is not None
    assert video.status == VideoStatus.UPLOADING
    assert video.sensitivity_status is None
    assert video.processing_progress == 0
    assert video.filename == "clip.mp4"
    assert video.created_at is not None


def test_get_video_scoped_to_organization(db, db_session_factory):
    video = make_video(db_session_factory)

    assert get_video_for_organization(db, video.id, "org-1").id == video.id
    assert get_video_for_organization(db, video.id, "org-2") is None
    assert get_video_for_organization(db, 9999, "org-1") is None


def test_list_videos_filters_and_pages(db, db_session_factory):
    for i in range(5):
        make_video(db_session_factory, object_key=f"org-1/user-1/{i}-a.mp4")
    make_video(
        db_session_factory,
        status=VideoStatus.COMPLETED,
        sensitivity_status=SensitivityStatus.FLAGGED,
        object_key="org-1/user-1/9-flagged.mp4",
    )
    make_video(db_session_factory, organization_id="org-2", object_key="org-2/user-3/1-x.mp4")

    videos, total = list_videos(db, "org-1", skip=0, limit=4)
    assert total == 6
    assert len(videos) == 4
    assert videos[0].object_key == "org-1/user-1/9-flagged.mp4"

    videos, total = list_videos(db, "org-1", skip=4, limit=4)
    assert total == 6
    assert len(videos) == 2

    videos, total = list_videos(db, "org-1", status=VideoStatus.COMPLETED)
    assert total == 1

    videos, total = list_videos(db, "org-1", sensitivity_status=SensitivityStatus.SAFE)
    assert (videos, total) == ([], 0)

    assert list_videos(db, "org-2")[1] == 1


def test_delete_video(db, db_session_factory):
    video = make_video(db_session_factory)

    delete_video(db, db.get(Video, video.id))

    assert db.get(Video, video.id) is None
