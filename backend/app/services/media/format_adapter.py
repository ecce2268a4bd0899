"""格式适配模块

审核服务只接受部分容器格式。不支持时下载原始对象、用 ffmpeg 转为 MP4、
以临时键上传，并把临时键交给审核轮询器。

`prepared_for_moderation` 是包裹整个 "适配 + 审核" 过程的异步上下文管理器，
无论成功还是失败，退出时都会删除临时对象和本地临时文件。
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path, PurePosixPath
from typing import AsyncIterator, Optional

from loguru import logger

from ...config import Settings
from ...core.exceptions import TerminalPipelineError, TransientExternalError
from ...core.storage import BlobStore
from ...core.transcoder import transcode_to_mp4
from .key_generator import converted_object_key
from .types import Progress, ProgressCallback

ACCEPTED_EXTENSIONS = (".mp4", ".mov", ".mpeg4")
ACCEPTED_MIME_TYPES = ("video/mp4", "video/quicktime", "video/mpeg")


def needs_conversion(object_key: str, content_type: Optional[str] = None) -> bool:
    """判断审核服务是否需要转换后的视频

    有扩展名时按扩展名判断；没有扩展名时按声明的 MIME 类型判断。
    """
    extension = PurePosixPath(object_key).suffix.lower()
    if extension:
        return extension not in ACCEPTED_EXTENSIONS
    return (content_type or "").lower() not in ACCEPTED_MIME_TYPES


@asynccontextmanager
async def prepared_for_moderation(
    video_id: int,
    object_key: str,
    content_type: str,
    blob_store: BlobStore,
    settings: Settings,
    on_progress: ProgressCallback,
) -> AsyncIterator[str]:
    """产出可以交给审核服务的对象键

    Raises:
        TerminalPipelineError: 下载、转码或上传失败
    """
    ctx_logger = logger.bind(video_id=video_id)

    if not needs_conversion(object_key, content_type):
        yield object_key
        return

    ctx_logger.info(f"审核服务不支持该格式，转换为 MP4: {object_key}")
    await on_progress(Progress.CONVERTING, "Converting video format...")

    scratch_dir = Path(settings.SCRATCH_DIR)
    scratch_dir.mkdir(parents=True, exist_ok=True)
    original_path = scratch_dir / f"{video_id}_original{PurePosixPath(object_key).suffix}"
    converted_path = scratch_dir / f"{video_id}_converted.mp4"
    temp_key: Optional[str] = None

    try:
        try:
            await blob_store.download_to_file(object_key, original_path, settings.STREAM_CHUNK_SIZE)
        except TransientExternalError as e:
            raise TerminalPipelineError(f"下载原始视频失败: {e}") from e

        await transcode_to_mp4(
            original_path,
            converted_path,
            ffmpeg_binary=settings.FFMPEG_BINARY,
            timeout=settings.TRANSCODE_TIMEOUT_SECONDS,
        )

        temp_key = converted_object_key(object_key)
        try:
            await blob_store.upload_file(converted_path, temp_key, "video/mp4")
        except TransientExternalError as e:
            raise TerminalPipelineError(f"上传转码视频失败: {e}") from e

        ctx_logger.info(f"转码视频已上传: {temp_key}")
        yield temp_key

    finally:
        if temp_key is not None:
            try:
                await blob_store.delete(temp_key)
                ctx_logger.info(f"已清理临时转码对象: {temp_key}")
            except Exception as e:
                ctx_logger.error(f"清理临时转码对象失败 {temp_key}: {e}")

        for path in (original_path, converted_path):
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                ctx_logger.error(f"清理临时文件失败 {path}: {e}")
