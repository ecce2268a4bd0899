"""流式播放模块

按 HTTP Range 语义从对象存储读取视频：
- 无 Range 或 Range 格式错误: 200，返回整个对象
- 合法 Range: 206，返回 [start, end] 闭区间，附带 Content-Range
- 格式合法但无法满足 (start 超出对象大小等): 416
对象按块从存储读取，不在内存中拼接整个文件。
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import AsyncIterator, Optional

from async_lru import alru_cache

from ...config import settings as _settings
from ...core.exceptions import ObjectNotFoundError, RangeNotSatisfiableError
from ...core.storage import BlobStore, ObjectMetadata

RANGE_PATTERN = re.compile(r"^bytes=(\d*)-(\d*)$")


@dataclass(frozen=True)
class ByteRange:
    start: int
    end: int

    @property
    def length(self) -> int:
        return self.end - self.start + 1


@dataclass
class StreamPlan:
    """一次播放请求的响应描述"""
    status_code: int
    headers: dict[str, str]
    content_type: str
    body: AsyncIterator[bytes]


def parse_range_header(range_header: Optional[str], size: int) -> Optional[ByteRange]:
    """
    解析 Range 请求头。

    Args:
        range_header: 形如 'bytes=start-end' 的请求头，end 可省略
        size: 对象大小

    Returns:
        Optional[ByteRange]: 解析后的范围；请求头缺失或格式错误时返回 None（按整个文件处理）

    Raises:
        RangeNotSatisfiableError: 格式合法但范围无法满足时
    """
    if not range_header:
        return None

    match = RANGE_PATTERN.match(range_header.strip())
    if not match:
        return None

    first, last = match.groups()
    if not first and not last:
        return None

    if not first:
        # 后缀范围：bytes=-N 表示最后 N 个字节
        suffix_length = int(last)
        if suffix_length == 0 or size == 0:
            raise RangeNotSatisfiableError(size)
        return ByteRange(start=max(size - suffix_length, 0), end=size - 1)

    start = int(first)
    end = int(last) if last else size - 1

    if last and end < start:
        return None
    if start >= size:
        raise RangeNotSatisfiableError(size)

    return ByteRange(start=start, end=min(end, size - 1))


@alru_cache(maxsize=256, ttl=_settings.METADATA_CACHE_TTL_SECONDS)
async def cached_metadata(blob_store: BlobStore, object_key: str) -> ObjectMetadata:
    """带 TTL 的对象元数据缓存，播放器会对同一对象发起大量 Range 请求"""
    return await blob_store.head_metadata(object_key)


def invalidate_metadata(blob_store: BlobStore, object_key: str) -> None:
    cached_metadata.cache_invalidate(blob_store, object_key)


async def open_stream(
    blob_store: BlobStore,
    object_key: str,
    range_header: Optional[str] = None,
    chunk_size: int = 1024 * 1024,
) -> StreamPlan:
    """
    解析元数据和 Range，返回状态码、响应头和按块读取的响应体。

    对象在返回前就已打开，响应头发出之后不会再出现对象缺失之类的错误。

    Raises:
        ObjectNotFoundError: 对象不存在
        RangeNotSatisfiableError: 范围无法满足
        TransientExternalError: 对象存储请求失败
    """
    metadata = await cached_metadata(blob_store, object_key)
    byte_range = parse_range_header(range_header, metadata.size)

    headers = {
        "Accept-Ranges": "bytes",
        "Content-Type": metadata.content_type,
    }

    try:
        if byte_range is None:
            body = await blob_store.open_object(object_key)
        else:
            body = await blob_store.open_object(object_key, byte_range.start, byte_range.end)
    except ObjectNotFoundError:
        # 缓存的元数据已过时
        invalidate_metadata(blob_store, object_key)
        raise

    if byte_range is None:
        status_code = 200
        headers["Content-Length"] = str(metadata.size)
    else:
        status_code = 206
        headers["Content-Length"] = str(byte_range.length)
        headers["Content-Range"] = f"bytes {byte_range.start}-{byte_range.end}/{metadata.size}"

    return StreamPlan(
        status_code=status_code,
        headers=headers,
        content_type=metadata.content_type,
        body=blob_store.iter_chunks(body, chunk_size),
    )
