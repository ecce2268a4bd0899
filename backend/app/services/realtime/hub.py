"""频道连接注册表

连接加入时按用户和组织登记到频道，断开时移除。
publish 只负责把事件发给频道当前的所有连接，发送失败的连接直接移除，不重试。
"""

from __future__ import annotations

from collections import defaultdict
from typing import Optional

from fastapi import WebSocket
from loguru import logger

from ..media.notifier import organization_channel, user_channel


class ChannelHub:
    """频道 -> WebSocket 连接集合"""

    def __init__(self):
        self._channels: dict[str, set[WebSocket]] = defaultdict(set)
        self._memberships: dict[WebSocket, set[str]] = defaultdict(set)

    def join(self, websocket: WebSocket, channel: str) -> None:
        self._channels[channel].add(websocket)
        self._memberships[websocket].add(channel)

    async def connect(
        self,
        websocket: WebSocket,
        user_id: str,
        organization_id: Optional[str] = None,
    ) -> list[str]:
        """接受连接并加入用户频道（及组织频道）"""
        await websocket.accept()
        channels = [user_channel(user_id)]
        if organization_id:
            channels.append(organization_channel(organization_id))
        for channel in channels:
            self.join(websocket, channel)
        logger.info(f"实时连接已建立: user_id={user_id}, 频道={channels}")
        return channels

    def disconnect(self, websocket: WebSocket) -> None:
        for channel in self._memberships.pop(websocket, set()):
            members = self._channels.get(channel)
            if members is None:
                continue
            members.discard(websocket)
            if not members:
                del self._channels[channel]

    def subscribers(self, channel: str) -> int:
        return len(self._channels.get(channel, ()))

    async def publish(self, channel: str, event: str, payload: dict) -> int:
        """向频道广播事件，返回成功发送的连接数"""
        if not self.subscribers(channel):
            logger.debug(f"频道 {channel} 当前没有连接，事件 {event} 未发送")
            return 0

        message = {"event": event, "data": payload}
        delivered = 0
        # 复制一份，发送过程中可能有连接断开
        for websocket in list(self._channels.get(channel, ())):
            try:
                await websocket.send_json(message)
                delivered += 1
            except Exception as e:
                logger.warning(f"向 {channel} 的连接发送事件失败，移除该连接: {e}")
                self.disconnect(websocket)
        return delivered
