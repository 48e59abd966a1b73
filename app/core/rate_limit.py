"""
app.core.rate_limit
~~~~~~~~~~~~~~~~~~~

REST 接口与 WebSocket 弹幕的限流配置。
"""
from __future__ import annotations

import time

from slowapi import Limiter
from slowapi.util import get_remote_address

# --------- HTTP 接口限流器 ---------
# 基于客户端 IP 地址进行限流
limiter = Limiter(
    key_func=get_remote_address,
    storage_uri="memory://",
)


# --------- WebSocket 限流器 ---------
class WebSocketRateLimiter:
    """基于内存的简单 WebSocket 弹幕限流器。

    记录每个会话上一次发送弹幕的时间，间隔不足则拒绝。
    只约束 ``chat_message``，进出房间事件不受限。
    """

    def __init__(self, interval_seconds: float = 0.5) -> None:
        self.interval_seconds = interval_seconds
        self._last_message_time: dict[str, float] = {}

    def is_allowed(self, session_id: str) -> bool:
        """检查会话是否允许发送弹幕。

        Args:
            session_id: 会话唯一标识。

        Returns:
            是否允许发送。如果允许，则同时更新上次发送时间。
        """
        now = time.monotonic()
        last_time = self._last_message_time.get(session_id)

        if last_time is None or now - last_time >= self.interval_seconds:
            self._last_message_time[session_id] = now
            return True
        return False

    def remove_client(self, session_id: str) -> None:
        """清理断开连接的会话记录。"""
        self._last_message_time.pop(session_id, None)
