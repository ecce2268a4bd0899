"""内容审核服务客户端

封装 AWS Rekognition 的异步视频审核接口 (StartContentModeration / GetContentModeration)。
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from loguru import logger
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception

from .exceptions import TransientExternalError


class JobStatus:
    IN_PROGRESS = "IN_PROGRESS"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


_THROTTLING_CODES = {
    "ThrottlingException",
    "ProvisionedThroughputExceededException",
    "LimitExceededException",
    "InternalServerError",
}


def _is_throttling(error: BaseException) -> bool:
    return (
        isinstance(error, ClientError)
        and error.response.get("Error", {}).get("Code") in _THROTTLING_CODES
    )


# 重试装饰器配置：仅对限流类错误重试
retry_config = {
    'stop': stop_after_attempt(3),  # 最多尝试3次
    'wait': wait_exponential(multiplier=1, min=1, max=10),  # 指数退避策略
    'retry': retry_if_exception(_is_throttling),
    'reraise': True,  # 重试失败后抛出原始异常
}


@dataclass
class ModerationLabel:
    """审核标签"""
    name: Optional[str]
    confidence: float
    parent_name: Optional[str] = None
    timestamp: Optional[int] = None


@dataclass
class ModerationJobResult:
    """一次查询审核任务的结果"""
    status: str
    labels: list[ModerationLabel] = field(default_factory=list)
    status_message: Optional[str] = None


def _parse_labels(raw_labels: list[dict]) -> list[ModerationLabel]:
    labels = []
    for item in raw_labels:
        label = item.get("ModerationLabel") or {}
        labels.append(ModerationLabel(
            name=label.get("Name"),
            confidence=float(label.get("Confidence") or 0),
            parent_name=label.get("ParentName"),
            timestamp=item.get("Timestamp"),
        ))
    return labels


class ModerationClient:
    """Rekognition 视频审核客户端

    每个进程只创建一个实例，在 FastAPI lifespan 中构造后显式传入流水线。
    """

    def __init__(
        self,
        bucket: str,
        *,
        region_name: Optional[str] = None,
        access_key_id: Optional[str] = None,
        secret_access_key: Optional[str] = None,
        sns_topic_arn: Optional[str] = None,
        role_arn: Optional[str] = None,
        client: Any = None,
    ):
        self.bucket = bucket
        self.sns_topic_arn = sns_topic_arn
        self.role_arn = role_arn
        self._client = client or boto3.client(
            "rekognition",
            region_name=region_name,
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
        )

    @retry(**retry_config)
    def _start_job_sync(self, object_key: str, min_confidence: float) -> dict:
        kwargs: dict[str, Any] = {
            "Video": {"S3Object": {"Bucket": self.bucket, "Name": object_key}},
            "MinConfidence": min_confidence,
        }
        if self.sns_topic_arn:
            kwargs["NotificationChannel"] = {
                "RoleArn": self.role_arn,
                "SNSTopicArn": self.sns_topic_arn,
            }
        return self._client.start_content_moderation(**kwargs)

    async def start_job(self, object_key: str, min_confidence: float) -> Optional[str]:
        """提交审核任务，返回任务ID（服务未返回时为 None）"""
        try:
            response = await asyncio.to_thread(self._start_job_sync, object_key, min_confidence)
        except (BotoCoreError, ClientError) as e:
            raise TransientExternalError(f"提交审核任务失败: {e}") from e
        return response.get("JobId")

    def _get_job_sync(self, job_id: str) -> ModerationJobResult:
        response = self._client.get_content_moderation(JobId=job_id, SortBy="TIMESTAMP")
        status = response.get("JobStatus", JobStatus.IN_PROGRESS)
        labels = _parse_labels(response.get("ModerationLabels") or [])

        # 任务成功后结果可能分页返回，需要取完所有页
        next_token = response.get("NextToken")
        while status == JobStatus.SUCCEEDED and next_token:
            page = self._client.get_content_moderation(
                JobId=job_id, SortBy="TIMESTAMP", NextToken=next_token
            )
            labels.extend(_parse_labels(page.get("ModerationLabels") or []))
            next_token = page.get("NextToken")

        return ModerationJobResult(
            status=status,
            labels=labels,
            status_message=response.get("StatusMessage"),
        )

    async def get_job(self, job_id: str) -> ModerationJobResult:
        try:
            result = await asyncio.to_thread(self._get_job_sync, job_id)
        except (BotoCoreError, ClientError) as e:
            raise TransientExternalError(f"查询审核任务失败: {e}") from e
        logger.trace(f"审核任务 {job_id} 状态: {result.status}")
        return result
