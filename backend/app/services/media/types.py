"""视频流水线相关的数据结构和类型定义"""

import datetime
from dataclasses import dataclass, field
from typing import Awaitable, Callable, NamedTuple, Optional


class ProcessResult(NamedTuple):
    """处理结果"""
    success: bool
    message: str
    video_id: int


class VideoEvent(NamedTuple):
    """状态机每次成功写入后产生的事件，交给通知器推送"""
    name: str
    video_id: int
    user_id: str
    organization_id: str
    payload: dict


@dataclass
class ModerationJob:
    """一次外部审核调用的临时状态，仅在单次流水线运行中存在"""
    video_id: int
    object_key: str
    job_id: Optional[str] = None
    submitted_at: datetime.datetime = field(
        default_factory=lambda: datetime.datetime.now(datetime.timezone.utc)
    )
    attempts: int = 0
    verdict: Optional[str] = None
    failure_reason: Optional[str] = None


# 进度回调：(进度, 提示信息)
ProgressCallback = Callable[[int, Optional[str]], Awaitable[object]]


# 进度里程碑
class Progress:
    ACCEPTED = 0
    PREPARING = 10
    CONVERTING = 20
    ANALYSIS_STARTED = 30
    ANALYSIS_CEILING = 97
    FINALIZING = 98
    COMPLETED = 100
