"""视频处理服务模块

按职责拆分为多个子模块：
- types: 数据结构和类型定义
- key_generator: 对象键生成
- uploads: 上传校验与入库
- status_manager: 处理状态机
- notifier: 进度事件推送
- format_adapter: 审核前的格式转换
- poller: 审核任务提交与轮询
- processor: 流水线协调器与工作者
- streaming: Range 流式播放
"""


from .processor import PipelineOrchestrator, worker_loop
from .types import ProcessResult, VideoEvent, ModerationJob
from .key_generator import generate_object_key, sanitize_filename
from .status_manager import StatusManager
from .notifier import ProgressNotifier
from .poller import ModerationPoller
from . import streaming

__all__ = [
    "PipelineOrchestrator",
    "worker_loop",
    "ProcessResult",
    "VideoEvent",
    "ModerationJob",
    "generate_object_key",
    "sanitize_filename",
    "StatusManager",
    "ProgressNotifier",
    "ModerationPoller",
    "streaming",
]
