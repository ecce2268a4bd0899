"""审核任务轮询模块

提交外部审核任务并按固定间隔轮询，直到得到结论或遇到终止性失败。

轮询协议：
- IN_PROGRESS: 按 已轮询次数/上限 推进进度（不超过 97），继续轮询
- SUCCEEDED: 任一标签置信度超过阈值判定为 flagged，否则 safe
- FAILED / 达到轮询上限: 按失败策略处理（默认视为终止性失败，MODERATION_FAIL_OPEN 时放行为 safe）
- 网络/超时错误: 计入轮询次数，但不会提前终止
- 提交任务未返回任务ID: 直接判定为 safe，不进行轮询
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional

from loguru import logger

from ...config import Settings
from ...core.exceptions import TerminalPipelineError, TransientExternalError
from ...core.models import SensitivityStatus
from ...core.moderation import JobStatus, ModerationClient, ModerationLabel
from .types import ModerationJob, Progress, ProgressCallback

FORMAT_ERROR_MARKERS = ("unsupported codec/format",)


def is_format_error(message: Optional[str]) -> bool:
    """审核服务返回的错误是否由视频格式引起"""
    if not message:
        return False
    lowered = message.lower()
    return any(marker in lowered for marker in FORMAT_ERROR_MARKERS)


def compute_verdict(labels: list[ModerationLabel], min_confidence: float) -> str:
    """任一标签置信度严格大于阈值即为 flagged"""
    if any(label.confidence > min_confidence for label in labels):
        return SensitivityStatus.FLAGGED
    return SensitivityStatus.SAFE


def poll_progress(attempts: int, max_attempts: int) -> int:
    """根据轮询次数计算分析阶段的进度"""
    span = Progress.ANALYSIS_CEILING - Progress.ANALYSIS_STARTED
    progress = Progress.ANALYSIS_STARTED + (attempts * span) // max_attempts
    return min(progress, Progress.ANALYSIS_CEILING)


class ModerationPoller:
    """审核任务提交与轮询"""

    def __init__(
        self,
        client: ModerationClient,
        settings: Settings,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._client = client
        self._min_confidence = settings.REKOGNITION_MIN_CONFIDENCE
        self._interval = settings.REKOGNITION_POLL_INTERVAL_SECONDS
        self._max_attempts = settings.REKOGNITION_MAX_POLL_ATTEMPTS
        self._request_timeout = settings.REKOGNITION_REQUEST_TIMEOUT_SECONDS
        self._fail_open = settings.MODERATION_FAIL_OPEN
        self._sleep = sleep

    async def moderate(
        self,
        video_id: int,
        object_key: str,
        content_type: str,
        on_progress: ProgressCallback,
    ) -> str:
        """对对象进行内容审核

        Returns:
            str: safe 或 flagged

        Raises:
            TerminalPipelineError: 审核无法得出结论且不放行时
        """
        job = ModerationJob(video_id=video_id, object_key=object_key)
        ctx_logger = logger.bind(video_id=video_id)
        ctx_logger.info(f"开始内容审核: key={object_key}, content_type={content_type}")

        await on_progress(Progress.ANALYSIS_STARTED, "Starting content analysis...")

        try:
            job.job_id = await self._client.start_job(object_key, self._min_confidence)
        except TransientExternalError as e:
            if is_format_error(str(e)):
                job.failure_reason = str(e)
                ctx_logger.error(f"审核服务拒绝该视频格式: {e}")
                raise TerminalPipelineError(f"审核服务不支持该视频格式: {e}") from e
            return self._resolve_failure(job, f"提交审核任务失败: {e}")

        if not job.job_id:
            ctx_logger.error("审核服务未返回任务ID，跳过审核并判定为 safe")
            job.verdict = SensitivityStatus.SAFE
            return job.verdict

        ctx_logger.info(f"审核任务已提交: job_id={job.job_id}")
        return await self._poll(job, on_progress)

    async def _poll(self, job: ModerationJob, on_progress: ProgressCallback) -> str:
        ctx_logger = logger.bind(video_id=job.video_id, job_id=job.job_id)
        last_progress = Progress.ANALYSIS_STARTED

        while job.attempts < self._max_attempts:
            await self._sleep(self._interval)

            try:
                result = await asyncio.wait_for(
                    self._client.get_job(job.job_id), timeout=self._request_timeout
                )
            except (TransientExternalError, asyncio.TimeoutError) as e:
                job.attempts += 1
                ctx_logger.warning(f"轮询审核任务出错（第 {job.attempts} 次）: {e!r}")
                continue

            if result.status == JobStatus.SUCCEEDED:
                await on_progress(Progress.FINALIZING, "Finalizing analysis...")
                job.verdict = compute_verdict(result.labels, self._min_confidence)
                flagged = [
                    (label.name, label.confidence)
                    for label in result.labels
                    if label.confidence > self._min_confidence
                ]
                ctx_logger.info(
                    f"审核完成: 结论={job.verdict}, 标签总数={len(result.labels)}, "
                    f"超过阈值 {self._min_confidence} 的标签={flagged}"
                )
                return job.verdict

            if result.status == JobStatus.FAILED:
                reason = result.status_message or "审核任务失败"
                if is_format_error(reason):
                    job.failure_reason = reason
                    ctx_logger.error(f"审核服务不支持该视频格式: {reason}")
                    raise TerminalPipelineError(f"审核服务不支持该视频格式: {reason}")
                return self._resolve_failure(job, reason)

            job.attempts += 1
            progress = poll_progress(job.attempts, self._max_attempts)
            if progress != last_progress:
                await on_progress(progress, "Analyzing video content...")
                last_progress = progress

        return self._resolve_failure(job, f"审核任务超时（已轮询 {job.attempts} 次）")

    def _resolve_failure(self, job: ModerationJob, reason: str) -> str:
        """按失败策略处理审核失败"""
        job.failure_reason = reason
        ctx_logger = logger.bind(video_id=job.video_id, job_id=job.job_id)

        if self._fail_open:
            ctx_logger.warning(f"审核失败，按放行策略判定为 safe: {reason}")
            job.verdict = SensitivityStatus.SAFE
            return job.verdict

        ctx_logger.error(f"审核失败: {reason}")
        raise TerminalPipelineError(reason)
