"""
Pydantic模型（Schemas）模块

定义用于API请求/响应数据校验、序列化和文档生成的Pydantic模型。
与数据库模型（models.py）分离，以实现更灵活的API接口定义。
"""

from pydantic import BaseModel
from typing import List, Optional
import datetime


# 基础视频信息（用于列表项）
class VideoItem(BaseModel):
    id: int
    filename: str
    original_name: str
    size: int
    mime_type: str
    duration: float
    status: str  # 使用 str 而不是 VideoStatus，因为 VideoStatus 不是真正的枚举
    sensitivity_status: Optional[str] = None
    processing_progress: int
    user_id: str
    organization_id: str
    created_at: datetime.datetime
    updated_at: datetime.datetime

    class Config:
        from_attributes = True


# 完整的视频详情模型
class VideoDetail(VideoItem):
    object_key: str
    bucket: str
    stream_url: Optional[str] = None


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


# 视频列表响应模型
class VideosResponse(BaseModel):
    videos: List[VideoItem]
    pagination: Pagination


# 上传/详情响应模型
class VideoResponse(BaseModel):
    video: VideoDetail


# 删除操作响应模型
class DeleteResponse(BaseModel):
    message: str
    video_id: int
