"""
实时事件 WebSocket 端点

客户端连接后加入 user:<id>（以及 org:<id>）频道，接收 video:processing /
video:completed / video:failed 事件。消息格式: {"event": 名称, "data": 载荷}
"""

from typing import Optional

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect, status
from loguru import logger

from ...services.realtime import ChannelHub
from ..deps import get_hub


realtime_router = APIRouter(prefix="/api", tags=["realtime"])


@realtime_router.websocket("/ws")
async def realtime_events(
    websocket: WebSocket,
    user_id: Optional[str] = None,
    organization_id: Optional[str] = None,
    hub: ChannelHub = Depends(get_hub),
):
    if not user_id:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await hub.connect(websocket, user_id, organization_id)
    try:
        while True:
            # 客户端消息仅用于保持连接
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.info(f"实时连接已断开: user_id={user_id}")
    finally:
        hub.disconnect(websocket)
