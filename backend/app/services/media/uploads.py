"""上传校验与入库模块

校验上传文件 -> 写入对象存储 -> 创建 uploading 状态的视频记录。
校验失败时抛出 UploadValidationError，流水线不会启动。
"""

from typing import BinaryIO, Optional

from sqlmodel import Session
from loguru import logger

from ...config import Settings
from ...core.exceptions import UploadValidationError
from ...core.models import Video
from ...core.storage import BlobStore
from ...crud import create_video
from .key_generator import generate_object_key


def measure_size(fileobj: BinaryIO) -> int:
    """通过 seek 获取文件对象大小，并把读指针移回开头"""
    fileobj.seek(0, 2)
    size = fileobj.tell()
    fileobj.seek(0)
    return size


def validate_upload(
    filename: Optional[str],
    content_type: Optional[str],
    size: int,
    settings: Settings,
) -> None:
    """
    校验上传文件。

    Raises:
        UploadValidationError: 缺少文件(400)、类型不支持(400)、超出大小上限(413)
    """
    if not filename:
        raise UploadValidationError("未上传文件")

    allowed = settings.get_allowed_mime_types()
    if (content_type or "").lower() not in allowed:
        raise UploadValidationError(
            f"不支持的文件类型: {content_type}。支持的类型: {', '.join(allowed)}"
        )

    if size <= 0:
        raise UploadValidationError("上传文件为空")

    if size > settings.upload_max_size_bytes:
        raise UploadValidationError(
            f"文件大小超出上限 {settings.UPLOAD_MAX_SIZE_MB}MB",
            status_code=413,
        )


async def store_upload(
    db: Session,
    blob_store: BlobStore,
    settings: Settings,
    *,
    fileobj: BinaryIO,
    filename: Optional[str],
    content_type: Optional[str],
    user_id: str,
    organization_id: str,
) -> Video:
    """校验并保存上传文件，返回新建的视频记录"""
    size = measure_size(fileobj)
    validate_upload(filename, content_type, size, settings)

    object_key = generate_object_key(user_id, organization_id, filename)
    await blob_store.upload_fileobj(fileobj, object_key, content_type)
    logger.info(f"上传文件已写入对象存储: key={object_key}, size={size}")

    return create_video(
        db,
        user_id=user_id,
        organization_id=organization_id,
        original_name=filename,
        object_key=object_key,
        bucket=blob_store.bucket,
        size=size,
        mime_type=content_type,
    )
