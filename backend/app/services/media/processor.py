"""视频处理流水线模块

上传完成后由 PipelineOrchestrator 接收视频：立即转为 processing 并放入队列，
工作者从队列取出视频ID后按顺序执行：
格式适配 -> 内容审核 -> 状态写入 -> 事件推送
"""

from __future__ import annotations

import asyncio
from typing import Callable, Optional

from sqlmodel import Session
from loguru import logger

from ...config import Settings
from ...core.exceptions import TerminalPipelineError
from ...core.models import Video, VideoStatus
from ...core.storage import BlobStore
from .format_adapter import prepared_for_moderation
from .poller import ModerationPoller
from .status_manager import StatusManager
from .types import ProcessResult, Progress


class PipelineOrchestrator:
    """视频处理流水线的协调器"""

    def __init__(
        self,
        db_session_factory: Callable[[], Session],
        queue: asyncio.Queue,
        status_manager: StatusManager,
        poller: ModerationPoller,
        blob_store: BlobStore,
        settings: Settings,
    ):
        self._db_session_factory = db_session_factory
        self._queue = queue
        self._status_manager = status_manager
        self._poller = poller
        self._blob_store = blob_store
        self._settings = settings

    @property
    def queue(self) -> asyncio.Queue:
        return self._queue

    async def accept(self, video_id: int) -> bool:
        """接收上传完成的视频：转为 processing 并放入处理队列

        不等待审核结果，上传接口据此快速返回。
        """
        if not await self._status_manager.set_processing(video_id):
            logger.bind(video_id=video_id).warning("视频无法进入处理状态，未加入队列")
            return False

        await self._queue.put(video_id)
        logger.bind(video_id=video_id).info(f"视频已加入处理队列，当前队列长度 {self._queue.qsize()}")
        return True

    async def run(self, video_id: int) -> ProcessResult:
        """执行一次完整的流水线

        Returns:
            ProcessResult: 处理结果，包含成功状态、消息和视频ID
        """
        ctx_logger = logger.bind(video_id=video_id)
        ctx_logger.info("开始处理视频")

        snapshot = await asyncio.to_thread(self._load_snapshot, video_id)
        if snapshot is None:
            return ProcessResult(
                success=False,
                message=f"未找到ID为 {video_id} 的视频",
                video_id=video_id
            )

        status, object_key, mime_type = snapshot
        if status != VideoStatus.PROCESSING:
            ctx_logger.warning(f"视频状态为 {status}，跳过处理")
            return ProcessResult(
                success=False,
                message=f"视频状态为 {status}，不在处理中",
                video_id=video_id
            )

        async def on_progress(progress: int, message: Optional[str] = None) -> bool:
            return await self._status_manager.report_progress(video_id, progress, message)

        try:
            await on_progress(Progress.PREPARING, "Preparing video for analysis...")

            async with prepared_for_moderation(
                video_id,
                object_key,
                mime_type,
                self._blob_store,
                self._settings,
                on_progress,
            ) as moderation_key:
                verdict = await self._poller.moderate(
                    video_id, moderation_key, mime_type, on_progress
                )

        except TerminalPipelineError as e:
            ctx_logger.error(f"流水线失败: {e.reason}")
            await self._status_manager.set_failed(video_id, e.reason)
            return ProcessResult(
                success=False,
                message=f"处理失败: {e.reason}",
                video_id=video_id
            )
        except Exception as e:
            ctx_logger.exception(f"处理过程中发生未预期的错误: {e}")
            await self._status_manager.set_failed(video_id, str(e))
            return ProcessResult(
                success=False,
                message=f"处理失败: {e}",
                video_id=video_id
            )

        if not await self._status_manager.set_completed(video_id, verdict):
            # 仍在 processing 时（如写入出错）转为 failed；已被其他流程改变则不会生效
            await self._status_manager.set_failed(video_id, "写入审核结论失败")
            return ProcessResult(
                success=False,
                message="视频状态已被修改，未写入审核结论",
                video_id=video_id
            )

        ctx_logger.info(f"视频处理成功完成，审核结论: {verdict}")
        return ProcessResult(
            success=True,
            message=f"处理成功: {verdict}",
            video_id=video_id
        )

    def _load_snapshot(self, video_id: int) -> Optional[tuple[str, str, str]]:
        with self._db_session_factory() as db:
            video = db.get(Video, video_id)
            if not video:
                return None
            return video.status, video.object_key, video.mime_type


async def worker_loop(
    worker_id: int,
    queue: asyncio.Queue,
    orchestrator: PipelineOrchestrator,
) -> None:
    """工作者协程循环

    从队列中获取视频 ID 并执行流水线；单个视频的异常不会终止工作者。

    Args:
        worker_id: 工作者ID（用于日志标识）
        queue: 包含视频ID的异步队列
        orchestrator: 流水线协调器
    """
    worker_logger = logger.bind(worker_id=worker_id)
    worker_logger.info(f"Worker-{worker_id} 启动")

    while True:
        try:
            video_id = await queue.get()
            worker_logger.info(f"Worker-{worker_id} 获取到任务: video_id={video_id}")

            try:
                result = await orchestrator.run(video_id)

                if result.success:
                    worker_logger.info(f"Worker-{worker_id} 成功处理视频 {video_id}")
                else:
                    worker_logger.warning(f"Worker-{worker_id} 处理视频 {video_id} 失败: {result.message}")

            except Exception as e:
                worker_logger.error(f"Worker-{worker_id} 处理视频 {video_id} 时发生异常: {e}")
            finally:
                # 标记任务完成
                queue.task_done()

        except asyncio.CancelledError:
            worker_logger.info(f"Worker-{worker_id} 被取消")
            break
        except Exception as e:
            worker_logger.error(f"Worker-{worker_id} 发生异常: {e}")
            await asyncio.sleep(1)  # 避免快速循环
