"""服务层包

按领域组织的服务层模块：
- media: 视频上传、格式适配、内容审核、状态机与流式播放
- realtime: 实时进度推送的频道连接管理
"""

from .media import (
    PipelineOrchestrator,
    ProcessResult,
    StatusManager,
    ModerationPoller,
    ProgressNotifier,
)
from .realtime import ChannelHub

__all__ = [
    # Media services
    "PipelineOrchestrator",
    "ProcessResult",
    "StatusManager",
    "ModerationPoller",
    "ProgressNotifier",
    # Realtime services
    "ChannelHub",
]
