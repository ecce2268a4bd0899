"""
视频API路由模块

提供视频上传、列表、详情、流式播放和删除的REST API端点。
所有查询都限定在调用者所属的组织内。
"""

import math
from typing import Optional

from fastapi import APIRouter, Depends, File, Header, HTTPException, Query, UploadFile
from fastapi.responses import StreamingResponse
from sqlmodel import Session
from loguru import logger

from ...config import Settings
from ...db import get_db
from ...core.exceptions import StreamingError, TransientExternalError, UploadValidationError
from ...core.models import VideoStatus
from ...core.schemas import DeleteResponse, VideoDetail, VideoResponse, VideosResponse
from ...core.storage import BlobStore
from ...crud import delete_video, get_video_for_organization, list_videos
from ...services.media.processor import PipelineOrchestrator
from ...services.media.streaming import invalidate_metadata, open_stream
from ...services.media.uploads import store_upload
from ..deps import (
    CurrentUser,
    Role,
    get_app_settings,
    get_blob_store,
    get_current_user,
    get_orchestrator,
    require_role,
    validate_sensitivity_parameter,
    validate_status_parameter,
)


video_router = APIRouter(prefix="/api/videos", tags=["videos"])


def _get_video_or_404(db: Session, video_id: int, user: CurrentUser):
    video = get_video_for_organization(db, video_id, user.organization_id)
    if not video:
        raise HTTPException(
            status_code=404,
            detail=f"视频不存在: ID={video_id}"
        )
    return video


@video_router.post("/upload", response_model=VideoResponse, status_code=201)
async def upload_video(
    video: Optional[UploadFile] = File(None, description="视频文件"),
    user: CurrentUser = Depends(require_role(Role.EDITOR, Role.ADMIN)),
    db: Session = Depends(get_db),
    blob_store: BlobStore = Depends(get_blob_store),
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
    app_settings: Settings = Depends(get_app_settings),
):
    """
    上传视频并启动后台处理流水线。

    响应不等待审核结果，处理进度通过实时频道推送。

    Raises:
        HTTPException:
            - 400: 未上传文件或文件类型不支持
            - 413: 文件超出大小上限
            - 502: 写入对象存储失败
            - 503: 视频无法进入处理流程
    """
    if video is None:
        raise HTTPException(status_code=400, detail="未上传文件")

    try:
        record = await store_upload(
            db,
            blob_store,
            app_settings,
            fileobj=video.file,
            filename=video.filename,
            content_type=video.content_type,
            user_id=user.user_id,
            organization_id=user.organization_id,
        )
    except UploadValidationError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    except TransientExternalError as e:
        logger.error(f"保存上传文件失败: {e}")
        raise HTTPException(status_code=502, detail="保存上传文件失败，请稍后重试")

    if not await orchestrator.accept(record.id):
        # 未能进入处理流程的上传会一直停在 uploading，撤销记录和对象
        logger.error(f"视频 {record.id} 无法进入处理流程，撤销本次上传")
        object_key = record.object_key
        delete_video(db, record)
        try:
            await blob_store.delete(object_key)
        except TransientExternalError as e:
            logger.error(f"撤销上传时删除存储对象失败 {object_key}: {e}")
        raise HTTPException(status_code=503, detail="视频处理服务暂不可用，请稍后重试")

    db.refresh(record)

    return {"video": record}


@video_router.get("", response_model=VideosResponse)
def get_videos(
    page: int = Query(1, ge=1, description="页码，从1开始"),
    limit: int = Query(10, ge=1, le=100, description="每页数量（最大100）"),
    status: Optional[str] = Depends(validate_status_parameter),
    sensitivity_status: Optional[str] = Depends(validate_sensitivity_parameter),
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    查询本组织的视频列表，支持按处理状态和审核结论筛选，按创建时间倒序分页。
    """
    videos, total = list_videos(
        db,
        user.organization_id,
        status=status,
        sensitivity_status=sensitivity_status,
        skip=(page - 1) * limit,
        limit=limit,
    )

    return {
        "videos": videos,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": math.ceil(total / limit),
        },
    }


@video_router.get("/{video_id}", response_model=VideoResponse)
async def get_video(
    video_id: int,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    blob_store: BlobStore = Depends(get_blob_store),
    app_settings: Settings = Depends(get_app_settings),
):
    """
    获取单个视频详情，附带限时有效的签名播放地址。

    Raises:
        HTTPException: 当视频不存在或不属于本组织时返回404错误
    """
    video = _get_video_or_404(db, video_id, user)

    detail = VideoDetail.model_validate(video)
    try:
        detail.stream_url = await blob_store.signed_url(
            video.object_key, app_settings.SIGNED_URL_TTL_SECONDS
        )
    except TransientExternalError as e:
        logger.warning(f"生成视频 {video_id} 的签名地址失败: {e}")

    return {"video": detail}


@video_router.get("/{video_id}/stream")
async def stream_video(
    video_id: int,
    range_header: Optional[str] = Header(None, alias="Range"),
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    blob_store: BlobStore = Depends(get_blob_store),
    app_settings: Settings = Depends(get_app_settings),
):
    """
    按 HTTP Range 语义流式播放已完成处理的视频。

    Raises:
        HTTPException:
            - 404: 视频不存在、不属于本组织或对象缺失
            - 400: 视频尚未处理完成
            - 416: 请求范围无法满足
            - 502: 读取对象存储失败
    """
    video = _get_video_or_404(db, video_id, user)

    if video.status != VideoStatus.COMPLETED:
        raise HTTPException(
            status_code=400,
            detail=f"视频尚不可播放: 当前状态={video.status}"
        )

    try:
        plan = await open_stream(
            blob_store,
            video.object_key,
            range_header,
            chunk_size=app_settings.STREAM_CHUNK_SIZE,
        )
    except StreamingError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e), headers=e.headers or None)
    except TransientExternalError as e:
        logger.error(f"读取视频 {video_id} 失败: {e}")
        raise HTTPException(status_code=502, detail="读取视频失败")

    return StreamingResponse(
        plan.body,
        status_code=plan.status_code,
        headers=plan.headers,
        media_type=plan.content_type,
    )


@video_router.delete("/{video_id}", response_model=DeleteResponse)
async def remove_video(
    video_id: int,
    user: CurrentUser = Depends(require_role(Role.EDITOR, Role.ADMIN)),
    db: Session = Depends(get_db),
    blob_store: BlobStore = Depends(get_blob_store),
):
    """
    删除视频记录及其存储对象。

    Raises:
        HTTPException:
            - 403: 调用者既不是管理员也不是上传者
            - 404: 视频不存在或不属于本组织
    """
    video = _get_video_or_404(db, video_id, user)

    if user.role != Role.ADMIN and video.user_id != user.user_id:
        raise HTTPException(status_code=403, detail="无权删除该视频")

    object_key = video.object_key
    delete_video(db, video)
    logger.info(f"视频记录 {video_id} 已删除")

    invalidate_metadata(blob_store, object_key)
    try:
        await blob_store.delete(object_key)
    except Exception as e:
        logger.error(f"删除视频 {video_id} 的存储对象失败 {object_key}: {e}")

    return {"message": "视频已删除", "video_id": video_id}
