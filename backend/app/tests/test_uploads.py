"""
uploads.py 单元测试

测试上传文件校验和入库
"""

import io

import pytest
from sqlmodel import Session

from app.core.exceptions import UploadValidationError
from app.core.models import VideoStatus
from app.services.media.uploads import measure_size, store_upload, validate_upload


def test_measure_size_rewinds():
    fileobj = io.BytesIO(b"abcdef")
    fileobj.read(2)

    assert measure_size(fileobj) == 6
    assert fileobj.tell() == 0


class TestValidateUpload:
    """测试上传校验"""

    def test_valid(self, test_settings):
        validate_upload("clip.mp4", "video/mp4", 100, test_settings)

    def test_content_type_case_insensitive(self, test_settings):
        validate_upload("clip.mov", "Video/QuickTime", 100, test_settings)

    @pytest.mark.parametrize("filename,content_type,size", [
        (None, "video/mp4", 100),
        ("", "video/mp4", 100),
        ("notes.txt", "text/plain", 100),
        ("clip.mp4", None, 100),
        ("clip.mp4", "video/mp4", 0),
    ])
    def test_rejected_with_400(self, test_settings, filename, content_type, size):
        with pytest.raises(UploadValidationError) as exc_info:
            validate_upload(filename, content_type, size, test_settings)
        assert exc_info.value.status_code == 400

    def test_too_large(self, test_settings):
        size = test_settings.upload_max_size_bytes + 1

        with pytest.raises(UploadValidationError) as exc_info:
            validate_upload("clip.mp4", "video/mp4", size, test_settings)
        assert exc_info.value.status_code == 413


@pytest.mark.asyncio
async def test_store_upload(in_memory_db, blob_store, test_settings):
    with Session(in_memory_db) as db:
        video = await store_upload(
            db,
            blob_store,
            test_settings,
            fileobj=io.BytesIO(b"x" * 64),
            filename="holiday clip.mp4",
            content_type="video/mp4",
            user_id="user-1",
            organization_id="org-1",
        )

        assert video.status == VideoStatus.UPLOADING
        assert video.size == 64
        assert video.bucket == "test-bucket"
        assert video.original_name == "holiday clip.mp4"
        assert video.object_key.startswith("org-1/user-1/")
        assert blob_store.objects[video.object_key] == (b"x" * 64, "video/mp4")


@pytest.mark.asyncio
async def test_store_upload_rejects_before_storing(in_memory_db, blob_store, test_settings):
    with Session(in_memory_db) as db:
        with pytest.raises(UploadValidationError):
            await store_upload(
                db,
                blob_store,
                test_settings,
                fileobj=io.BytesIO(b""),
                filename="empty.mp4",
                content_type="video/mp4",
                user_id="user-1",
                organization_id="org-1",
            )

    assert blob_store.calls == []
