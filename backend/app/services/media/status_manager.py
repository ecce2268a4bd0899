"""视频状态管理模块（处理状态机）

唯一负责写入 status / sensitivity_status / processing_progress 的组件。

状态流转：uploading -> processing -> {completed, failed}
- completed 必须带有审核结论，并把进度置为 100
- failed 不记录审核结论，进度保持最后的值

所有写入都是按视频ID的条件更新 (UPDATE ... WHERE id = ? AND status IN (...))，
不读取缓存副本再写回；更新行数为 0 即表示转换被拒绝。
每次成功写入都会在返回前同步调用通知器。
"""

from __future__ import annotations

import asyncio
from typing import Callable, Optional

from sqlalchemy import update
from sqlmodel import Session, select
from loguru import logger

from ...core.models import Video, VideoStatus, SensitivityStatus
from .notifier import ProgressNotifier
from .types import VideoEvent, Progress


# 合法的状态转换表
ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    VideoStatus.UPLOADING: frozenset({VideoStatus.PROCESSING}),
    VideoStatus.PROCESSING: frozenset({VideoStatus.COMPLETED, VideoStatus.FAILED}),
    VideoStatus.COMPLETED: frozenset(),
    VideoStatus.FAILED: frozenset(),
}

VALID_VERDICTS = (SensitivityStatus.SAFE, SensitivityStatus.FLAGGED)


def source_statuses(new_status: str) -> list[str]:
    """返回可以转换到 new_status 的所有源状态"""
    return [source for source, targets in ALLOWED_TRANSITIONS.items() if new_status in targets]


def is_allowed(current_status: str, new_status: str) -> bool:
    return new_status in ALLOWED_TRANSITIONS.get(current_status, frozenset())


class StatusManager:
    """视频处理状态机"""

    def __init__(
        self,
        db_session_factory: Callable[[], Session],
        notifier: ProgressNotifier,
    ):
        self._db_session_factory = db_session_factory
        self._notifier = notifier

    # ------------------------------------------------------------------
    # 状态转换
    # ------------------------------------------------------------------

    async def advance(
        self,
        video_id: int,
        new_status: str,
        *,
        sensitivity_status: Optional[str] = None,
        error_message: Optional[str] = None,
        message: Optional[str] = None,
    ) -> bool:
        """统一的状态转换入口

        Args:
            video_id: 视频ID
            new_status: 目标状态
            sensitivity_status: 审核结论，仅在转换到 completed 时使用且必填
            error_message: 失败原因，仅在转换到 failed 时记录
            message: 随进度事件推送给前端的提示信息

        Returns:
            bool: 转换是否生效；不合法的转换不做任何修改，只记录日志
        """
        ctx_logger = logger.bind(video_id=video_id)

        if new_status == VideoStatus.COMPLETED and sensitivity_status not in VALID_VERDICTS:
            ctx_logger.warning(f"拒绝转换到 completed：审核结论无效 ({sensitivity_status})")
            return False
        if new_status != VideoStatus.COMPLETED and sensitivity_status is not None:
            ctx_logger.warning(f"拒绝转换到 {new_status}：只有 completed 可以写入审核结论")
            return False

        sources = source_statuses(new_status)
        if not sources:
            ctx_logger.warning(f"拒绝转换：{new_status} 不是任何状态的合法目标")
            return False

        values: dict = {"status": new_status}
        if new_status == VideoStatus.PROCESSING:
            values["processing_progress"] = Progress.ACCEPTED
            values["error_message"] = None
        elif new_status == VideoStatus.COMPLETED:
            values["processing_progress"] = Progress.COMPLETED
            values["sensitivity_status"] = sensitivity_status
        elif new_status == VideoStatus.FAILED:
            values["error_message"] = error_message

        try:
            owner = await asyncio.to_thread(
                self._conditional_update,
                video_id,
                Video.status.in_(sources),
                values,
            )
        except Exception as e:
            ctx_logger.error(f"写入状态 {new_status} 失败: {e}")
            return False

        if owner is None:
            current = await asyncio.to_thread(self._current_status, video_id)
            if current is None:
                ctx_logger.warning(f"拒绝转换到 {new_status}：视频不存在")
            elif not is_allowed(current, new_status):
                ctx_logger.warning(f"拒绝非法转换：{current} -> {new_status}")
            else:
                # 条件更新时状态尚不满足，读取时已被其他流程改变
                ctx_logger.warning(f"拒绝转换到 {new_status}：状态在写入期间发生变化")
            return False

        ctx_logger.info(f"状态已转换为 {new_status}")
        await self._notifier.notify(
            self._build_event(video_id, owner, new_status, sensitivity_status, message)
        )
        return True

    async def report_progress(
        self,
        video_id: int,
        progress: int,
        message: Optional[str] = None,
    ) -> bool:
        """更新处理进度

        进度只在 processing 状态下写入，且不会回退；100 保留给 completed。
        """
        progress = max(0, min(int(progress), Progress.COMPLETED - 1))

        try:
            owner = await asyncio.to_thread(
                self._conditional_update,
                video_id,
                (Video.status == VideoStatus.PROCESSING) & (Video.processing_progress <= progress),
                {"processing_progress": progress},
            )
        except Exception as e:
            logger.bind(video_id=video_id).error(f"写入进度 {progress} 失败: {e}")
            return False

        if owner is None:
            logger.bind(video_id=video_id).debug(f"忽略进度 {progress}：视频不在处理中或进度已更高")
            return False

        await self._notifier.notify(
            self._build_event(video_id, owner, VideoStatus.PROCESSING, None, message, progress)
        )
        return True

    # ------------------------------------------------------------------
    # 便捷方法
    # ------------------------------------------------------------------

    async def set_processing(self, video_id: int, message: Optional[str] = None) -> bool:
        """设置为处理中状态"""
        return await self.advance(video_id, VideoStatus.PROCESSING, message=message)

    async def set_completed(self, video_id: int, sensitivity_status: str) -> bool:
        """设置为完成状态"""
        return await self.advance(
            video_id, VideoStatus.COMPLETED, sensitivity_status=sensitivity_status
        )

    async def set_failed(self, video_id: int, error_message: str) -> bool:
        """设置为失败状态"""
        return await self.advance(video_id, VideoStatus.FAILED, error_message=error_message)

    async def fail_stuck_videos(self, reason: str = "服务重启，处理被中断") -> int:
        """把遗留在 processing 状态的视频标记为 failed，返回受影响数量"""

        def _sync_find() -> list[int]:
            with self._db_session_factory() as session:
                return list(session.exec(
                    select(Video.id).where(Video.status == VideoStatus.PROCESSING)
                ).all())

        stuck_ids = await asyncio.to_thread(_sync_find)
        failed = 0
        for video_id in stuck_ids:
            if await self.set_failed(video_id, reason):
                failed += 1
        return failed

    # ------------------------------------------------------------------
    # 内部实现
    # ------------------------------------------------------------------

    def _conditional_update(self, video_id: int, guard, values: dict) -> Optional[tuple[str, str]]:
        """在线程池中执行条件更新

        Returns:
            (user_id, organization_id)；没有行被更新时返回 None
        """
        with self._db_session_factory() as session:
            statement = update(Video).where(Video.id == video_id).where(guard).values(**values)
            result = session.connection().execute(statement)
            if result.rowcount == 0:
                session.rollback()
                return None

            owner = session.exec(
                select(Video.user_id, Video.organization_id).where(Video.id == video_id)
            ).one()
            session.commit()
            return owner[0], owner[1]

    def _current_status(self, video_id: int) -> Optional[str]:
        with self._db_session_factory() as session:
            return session.exec(select(Video.status).where(Video.id == video_id)).first()

    @staticmethod
    def _build_event(
        video_id: int,
        owner: tuple[str, str],
        status: str,
        sensitivity_status: Optional[str],
        message: Optional[str],
        progress: int = Progress.ACCEPTED,
    ) -> VideoEvent:
        user_id, organization_id = owner

        if status == VideoStatus.PROCESSING:
            payload = {"videoId": str(video_id), "progress": progress, "status": status}
            if message:
                payload["message"] = message
        elif status == VideoStatus.COMPLETED:
            payload = {
                "videoId": str(video_id),
                "status": status,
                "sensitivityStatus": sensitivity_status,
            }
        else:
            payload = {"videoId": str(video_id), "status": status}

        return VideoEvent(
            name=f"video:{status}",
            video_id=video_id,
            user_id=user_id,
            organization_id=organization_id,
            payload=payload,
        )
