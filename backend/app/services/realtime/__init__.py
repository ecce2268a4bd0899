"""实时推送服务

维护 WebSocket 连接与频道 (user:<id> / org:<id>) 的对应关系，并向频道广播事件。
"""

from .hub import ChannelHub

__all__ = ["ChannelHub"]
