"""对象存储客户端

对 boto3 S3 客户端的异步薄封装。boto3 为同步库，所有调用都通过
asyncio.to_thread 移出事件循环；读取对象时按块读取，不在内存中拼接整个文件。
"""

from __future__ import annotations

import asyncio
import datetime
from dataclasses import dataclass
from pathlib import Path
from typing import Any, AsyncIterator, BinaryIO, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from loguru import logger

from .exceptions import ObjectNotFoundError, TransientExternalError

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}


@dataclass
class ObjectMetadata:
    """对象元数据"""
    content_type: str
    size: int
    etag: Optional[str] = None
    last_modified: Optional[datetime.datetime] = None


def _is_not_found(error: ClientError) -> bool:
    return str(error.response.get("Error", {}).get("Code")) in _NOT_FOUND_CODES


class BlobStore:
    """S3 对象存储

    每个进程只创建一个实例，在 FastAPI lifespan 中构造后显式传入各组件。
    """

    def __init__(
        self,
        bucket: str,
        *,
        region_name: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        access_key_id: Optional[str] = None,
        secret_access_key: Optional[str] = None,
        client: Any = None,
    ):
        self.bucket = bucket
        self._client = client or boto3.client(
            "s3",
            region_name=region_name,
            endpoint_url=endpoint_url,
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
        )

    async def _call(self, key: str, operation: str, **kwargs) -> Any:
        """在线程池中执行一次 S3 调用，并统一转换异常"""
        method = getattr(self._client, operation)
        try:
            return await asyncio.to_thread(method, Bucket=self.bucket, Key=key, **kwargs)
        except ClientError as e:
            if _is_not_found(e):
                raise ObjectNotFoundError(f"对象不存在: {key}") from e
            raise TransientExternalError(f"S3 {operation} 失败: {e}") from e
        except BotoCoreError as e:
            raise TransientExternalError(f"S3 {operation} 失败: {e}") from e

    async def put(self, key: str, data: bytes, content_type: str) -> str:
        await self._call(key, "put_object", Body=data, ContentType=content_type)
        return key

    async def upload_fileobj(self, fileobj: BinaryIO, key: str, content_type: str) -> str:
        """上传文件对象，大文件由 boto3 自动分片"""
        try:
            await asyncio.to_thread(
                self._client.upload_fileobj,
                fileobj,
                self.bucket,
                key,
                ExtraArgs={"ContentType": content_type},
            )
        except (BotoCoreError, ClientError) as e:
            raise TransientExternalError(f"S3 上传失败: {e}") from e
        return key

    async def upload_file(self, path: Path, key: str, content_type: str) -> str:
        with open(path, "rb") as f:
            return await self.upload_fileobj(f, key, content_type)

    async def head_metadata(self, key: str) -> ObjectMetadata:
        response = await self._call(key, "head_object")
        return ObjectMetadata(
            content_type=response.get("ContentType") or "application/octet-stream",
            size=int(response["ContentLength"]),
            etag=response.get("ETag"),
            last_modified=response.get("LastModified"),
        )

    async def open_object(
        self,
        key: str,
        start: Optional[int] = None,
        end: Optional[int] = None,
    ) -> Any:
        """发起 GetObject 并返回响应体，尚未读取任何内容

        给定 start 时只读取 [start, end] 闭区间（end 为空表示读到末尾），
        范围由 S3 服务端裁剪。对象缺失或请求失败在这里立即抛出。
        """
        kwargs = {}
        if start is not None:
            kwargs["Range"] = f"bytes={start}-{'' if end is None else end}"

        response = await self._call(key, "get_object", **kwargs)
        return response["Body"]

    async def iter_chunks(self, body: Any, chunk_size: int = 1024 * 1024) -> AsyncIterator[bytes]:
        """按块读取 open_object 返回的响应体，读完或中断后关闭"""
        try:
            while True:
                chunk = await asyncio.to_thread(body.read, chunk_size)
                if not chunk:
                    break
                yield chunk
        finally:
            body.close()

    async def get_stream(
        self,
        key: str,
        start: Optional[int] = None,
        end: Optional[int] = None,
        chunk_size: int = 1024 * 1024,
    ) -> AsyncIterator[bytes]:
        body = await self.open_object(key, start, end)
        async for chunk in self.iter_chunks(body, chunk_size):
            yield chunk

    async def download_to_file(self, key: str, path: Path, chunk_size: int = 1024 * 1024) -> Path:
        with open(path, "wb") as f:
            async for chunk in self.get_stream(key, chunk_size=chunk_size):
                f.write(chunk)
        return path

    async def signed_url(self, key: str, ttl: int = 3600) -> str:
        try:
            return await asyncio.to_thread(
                self._client.generate_presigned_url,
                "get_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=ttl,
            )
        except (BotoCoreError, ClientError) as e:
            raise TransientExternalError(f"生成签名地址失败: {e}") from e

    async def delete(self, key: str) -> None:
        await self._call(key, "delete_object")
        logger.debug(f"已删除对象: {key}")
