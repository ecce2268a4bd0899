"""
数据库CRUD操作模块

提供Video模型的创建、查询和删除操作。所有查询都按组织（租户）限定范围。
状态相关字段不在此处修改，由 services.media.status_manager 统一写入。
"""

from typing import Optional

from sqlmodel import Session, select, func

from .core.models import Video, VideoStatus


def create_video(
    db: Session,
    *,
    user_id: str,
    organization_id: str,
    original_name: str,
    object_key: str,
    bucket: str,
    size: int,
    mime_type: str,
) -> Video:
    """
    创建新的Video记录，初始状态为 uploading。

    Args:
        db: 数据库会话
        user_id: 上传者ID
        organization_id: 所属组织ID
        original_name: 原始文件名
        object_key: 对象存储中的键
        bucket: 对象存储桶名
        size: 文件大小（字节）
        mime_type: 声明的内容类型

    Returns:
        Video: 创建的Video记录
    """
    video = Video(
        user_id=user_id,
        organization_id=organization_id,
        filename=original_name,
        original_name=original_name,
        object_key=object_key,
        bucket=bucket,
        size=size,
        mime_type=mime_type,
        status=VideoStatus.UPLOADING,
    )

    db.add(video)
    db.commit()
    db.refresh(video)

    return video


def get_video_for_organization(
    db: Session, video_id: int, organization_id: str
) -> Optional[Video]:
    """
    查询属于指定组织的视频；不存在或不属于该组织时返回None。
    """
    statement = select(Video).where(
        Video.id == video_id,
        Video.organization_id == organization_id
    )
    return db.exec(statement).first()


def list_videos(
    db: Session,
    organization_id: str,
    *,
    status: Optional[str] = None,
    sensitivity_status: Optional[str] = None,
    skip: int = 0,
    limit: int = 10,
) -> tuple[list[Video], int]:
    """
    分页查询组织内的视频，按创建时间倒序。

    Returns:
        tuple: (当前页的视频列表, 满足条件的总数)
    """
    statement = select(Video).where(Video.organization_id == organization_id)
    count_statement = select(func.count(Video.id)).where(Video.organization_id == organization_id)

    if status:
        statement = statement.where(Video.status == status)
        count_statement = count_statement.where(Video.status == status)

    if sensitivity_status:
        statement = statement.where(Video.sensitivity_status == sensitivity_status)
        count_statement = count_statement.where(Video.sensitivity_status == sensitivity_status)

    total = db.exec(count_statement).one()

    statement = statement.order_by(Video.created_at.desc(), Video.id.desc()).offset(skip).limit(limit)
    videos = list(db.exec(statement).all())

    return videos, total


def delete_video(db: Session, video: Video) -> None:
    db.delete(video)
    db.commit()
