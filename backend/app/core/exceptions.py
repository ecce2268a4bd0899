"""视频处理相关的异常类型

- UploadValidationError: 上传参数不合法，同步返回给上传者，流水线不会启动
- TransientExternalError: 与对象存储/审核服务通信时的网络或超时错误，由轮询循环吸收
- TerminalPipelineError: 转码失败、审核任务失败或超时，视频状态转为 failed
- StreamingError: 播放时的对象缺失或范围无法满足，仅影响本次请求
"""

from typing import Optional


class MediaError(Exception):
    """所有视频处理异常的基类"""


class UploadValidationError(MediaError):
    """上传文件校验失败"""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


class TransientExternalError(MediaError):
    """外部服务的临时性错误"""


class TerminalPipelineError(MediaError):
    """流水线不可恢复的错误"""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class StreamingError(MediaError):
    """流式播放错误，携带应返回的 HTTP 状态码"""

    status_code = 500

    def __init__(self, message: str, headers: Optional[dict[str, str]] = None):
        super().__init__(message)
        self.headers = headers or {}


class ObjectNotFoundError(StreamingError):
    """对象存储中不存在该键"""

    status_code = 404


class RangeNotSatisfiableError(StreamingError):
    """请求的字节范围超出对象大小"""

    status_code = 416

    def __init__(self, size: int):
        super().__init__(
            f"请求范围无法满足，对象大小为 {size} 字节",
            headers={"Content-Range": f"bytes */{size}"},
        )
        self.size = size
