"""SafeReel API 聚合器包

此包负责聚合各 endpoints 子模块的路由，并向外暴露统一的 `router` 变量，
供 `main.py` 及测试用例 `from app.api import router` 使用。
"""

from fastapi import APIRouter

from .endpoints.videos import video_router  # noqa: E402  pylint: disable=wrong-import-position
from .endpoints.realtime import realtime_router  # noqa: E402  pylint: disable=wrong-import-position

# 创建聚合路由器
router = APIRouter()
router.include_router(video_router)
router.include_router(realtime_router)

# OpenAPI 标签元数据，供 FastAPI 应用在生成文档时使用
tags_metadata = [
    {
        "name": "videos",
        "description": "视频相关接口：上传、列表、详情、Range 流式播放与删除",
    },
    {
        "name": "realtime",
        "description": "实时事件接口：通过 WebSocket 推送视频处理进度与审核结果",
    },
]

__all__ = ["router", "tags_metadata"]
