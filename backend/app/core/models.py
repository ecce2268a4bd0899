import datetime
from typing import Optional
from sqlmodel import Field, SQLModel


def utc_now() -> datetime.datetime:
    """获取当前UTC时间，用于数据库时间戳"""
    return datetime.datetime.now(datetime.timezone.utc)


# 定义视频状态的枚举值，便于管理和引用
class VideoStatus:
    UPLOADING = "uploading"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


# 内容审核结论；未审核时字段为 None
class SensitivityStatus:
    SAFE = "safe"
    FLAGGED = "flagged"


class Video(SQLModel, table=True):
    """
    代表一个上传的视频及其处理、审核状态。
    """
    # 基础信息
    id: Optional[int] = Field(default=None, primary_key=True)
    created_at: datetime.datetime = Field(default_factory=utc_now, nullable=False, index=True)
    updated_at: datetime.datetime = Field(default_factory=utc_now, nullable=False, sa_column_kwargs={"onupdate": utc_now})

    # --------------------------------------------------------------------------
    # 归属 (创建后不可变)
    # --------------------------------------------------------------------------
    user_id: str = Field(index=True, nullable=False, description="上传者的用户ID")
    organization_id: str = Field(index=True, nullable=False, description="所属组织（租户）ID")

    # 存储对象信息
    filename: str = Field(nullable=False, description="存储时使用的文件名")
    original_name: str = Field(nullable=False, description="用户上传时的原始文件名")
    object_key: str = Field(index=True, nullable=False, description="对象存储中的键")
    bucket: str = Field(nullable=False, description="对象存储桶名")
    size: int = Field(nullable=False, description="文件大小（字节）")
    mime_type: str = Field(nullable=False, description="上传时声明的内容类型")
    duration: float = Field(default=0, nullable=False, description="视频时长（秒）")

    # --------------------------------------------------------------------------
    # 状态与处理流程管理 (仅由状态机写入)
    # --------------------------------------------------------------------------
    status: str = Field(
        default=VideoStatus.UPLOADING,
        index=True,
        nullable=False,
        description=f"视频当前处理状态: {VideoStatus.UPLOADING}, {VideoStatus.PROCESSING}, {VideoStatus.COMPLETED}, {VideoStatus.FAILED}"
    )
    sensitivity_status: Optional[str] = Field(
        default=None,
        index=True,
        description=f"内容审核结论: {SensitivityStatus.SAFE}, {SensitivityStatus.FLAGGED}；未审核时为空"
    )
    processing_progress: int = Field(default=0, ge=0, le=100, nullable=False, description="处理进度 0-100")

    # 记录最后一次失败的原因，仅用于排查
    error_message: Optional[str] = Field(default=None, description="记录最后一次失败的原因")
