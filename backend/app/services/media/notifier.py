"""进度通知模块

把状态机产生的事件推送到用户频道 user:<id>（以及可选的组织频道 org:<id>）。
推送是尽力而为的：不等待确认、不重试，错过的事件会被下一次状态变化覆盖。
"""

from typing import Awaitable, Protocol

from loguru import logger

from .types import VideoEvent


class ChannelPublisher(Protocol):
    def publish(self, channel: str, event: str, payload: dict) -> Awaitable[int]: ...


def user_channel(user_id: str) -> str:
    return f"user:{user_id}"


def organization_channel(organization_id: str) -> str:
    return f"org:{organization_id}"


class ProgressNotifier:
    """把视频事件分发到有权查看的频道"""

    def __init__(self, publisher: ChannelPublisher, *, include_organization: bool = False):
        self._publisher = publisher
        self._include_organization = include_organization

    def channels_for(self, event: VideoEvent) -> list[str]:
        channels = [user_channel(event.user_id)]
        if self._include_organization and event.organization_id:
            channels.append(organization_channel(event.organization_id))
        return channels

    async def notify(self, event: VideoEvent) -> None:
        for channel in self.channels_for(event):
            try:
                delivered = await self._publisher.publish(channel, event.name, event.payload)
            except Exception as e:
                logger.warning(f"推送事件 {event.name} 到 {channel} 失败: {e}")
                continue
            logger.debug(f"事件 {event.name} (video_id={event.video_id}) 已推送到 {channel}，连接数 {delivered}")
