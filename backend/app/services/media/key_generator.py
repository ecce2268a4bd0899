"""对象存储键生成模块

负责为上传文件和转码临时文件生成对象键
"""

import re
import time
from typing import Optional

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9.-]")


def sanitize_filename(filename: str) -> str:
    """清理文件名中的特殊字符

    Args:
        filename: 原始文件名

    Returns:
        str: 清理后的文件名，只保留字母数字、点号和连字符，其余字符替换为下划线
    """
    return _UNSAFE_CHARS.sub("_", filename)


def generate_object_key(
    user_id: str,
    organization_id: str,
    filename: str,
    timestamp_ms: Optional[int] = None,
) -> str:
    """生成上传文件的对象键

    格式: <组织ID>/<用户ID>/<毫秒时间戳>-<清理后的文件名>

    Args:
        user_id: 上传者ID
        organization_id: 所属组织ID
        filename: 原始文件名
        timestamp_ms: 毫秒时间戳，默认取当前时间

    Returns:
        str: 对象键
    """
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    return f"{organization_id}/{user_id}/{timestamp_ms}-{sanitize_filename(filename)}"


def converted_object_key(object_key: str) -> str:
    """转码后临时对象的键"""
    return f"{object_key}.converted.mp4"
