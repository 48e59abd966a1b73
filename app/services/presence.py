"""
app.services.presence
~~~~~~~~~~~~~~~~~~~~~

在线状态与弹幕协调器 —— 把传输层事件翻译成名单变更和广播。

事件与效果:
  - ``on_connect``    → 登记会话（初始化反向索引）
  - ``on_join``       → 加入房间，广播 ``viewer_count``，可选单播 ``chat_history``
  - ``on_leave``      → 离开房间，广播 ``viewer_count``
  - ``on_chat_message`` → 广播 ``new_message``，后台追加到历史缓存
  - ``on_disconnect`` → 离开所有房间，对每个受影响房间广播 ``viewer_count``

广播总是在名单变更提交之后发出，不会推送过期的人数。
本模块的任何错误都不会以失败响应的形式暴露给客户端。
"""
from __future__ import annotations

import itertools
import time
from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError

from app.core.logging import get_logger
from app.schemas.live_events import (
    ChatHistory,
    ChatMessage,
    ChatMessageIn,
    ClientEvent,
    ServerEvent,
    StreamRef,
    ViewerCount,
    normalize_stream_id,
)
from app.services.history_cache import ChatHistoryCache
from app.services.room_broadcaster import RoomBroadcaster
from app.services.room_registry import RoomRegistry

logger = get_logger(__name__)

# 进程内递增序号，避免同一毫秒内的 ID 冲突
_message_seq = itertools.count(1)


def new_message_id() -> str:
    """生成弹幕 ID：``<毫秒时间戳>-<进程内序号>``。"""
    return f"{int(time.time() * 1000)}-{next(_message_seq)}"


class PresenceCoordinator:
    """直播间在线状态与弹幕协调器。

    同一会话的事件必须按到达顺序依次调用（WebSocket 端点用单个处理协程保证），
    不同会话之间可以任意交错。

    Attributes:
        registry: 在线名单（唯一的共享可变状态）。
        broadcaster: 传输层分组广播能力。
        history: 最近弹幕缓存。
        backfill_on_join: 加入房间时是否单播最近弹幕。
    """

    def __init__(
        self,
        registry: RoomRegistry,
        broadcaster: RoomBroadcaster,
        history: ChatHistoryCache,
        backfill_on_join: bool = True,
    ) -> None:
        self.registry = registry
        self.broadcaster = broadcaster
        self.history = history
        self.backfill_on_join = backfill_on_join

    # ── 生命周期事件 ──────────────────────────────────────────────────

    def on_connect(self, session_id: str) -> None:
        self.registry.register(session_id)
        logger.debug("会话已连接 | session=%s", session_id)

    async def on_join(self, session_id: str, stream_id: Any) -> int | None:
        """会话加入直播间。

        Returns:
            加入后的在线人数；``stream_id`` 非法时返回 ``None``（事件被丢弃）。
        """
        room = self._normalize(stream_id, "join_stream", session_id)
        if room is None:
            return None

        count = self.registry.join(room, session_id)
        self.broadcaster.join_group(session_id, room)
        logger.info("观众进入直播间 | stream=%s | 在线: %d", room, count)
        await self._broadcast_count(room, count)

        if self.backfill_on_join:
            messages = await self.history.recent(room)
            await self.broadcaster.send_to(
                session_id,
                ServerEvent(
                    event="chat_history",
                    data=ChatHistory(stream_id=room, messages=messages).model_dump(by_alias=True),
                ),
            )
        return count

    async def on_leave(self, session_id: str, stream_id: Any) -> int | None:
        """会话离开直播间。房间被清空删除时仍会广播一次 0。"""
        room = self._normalize(stream_id, "leave_stream", session_id)
        if room is None:
            return None

        count = self.registry.leave(room, session_id)
        self.broadcaster.leave_group(session_id, room)
        logger.info("观众离开直播间 | stream=%s | 在线: %d", room, count)
        await self._broadcast_count(room, count)
        return count

    async def on_chat_message(
        self,
        session_id: str,
        stream_id: Any,
        user_id: str | int | None,
        username: str | None,
        avatar: str | None,
        text: str,
    ) -> ChatMessage | None:
        """广播一条弹幕，并在后台写入历史缓存。

        username / avatar 直接采用客户端提供的值，仅作展示用途。
        """
        room = self._normalize(stream_id, "chat_message", session_id)
        if room is None:
            return None

        message = ChatMessage(
            id=new_message_id(),
            user_id=user_id,
            username=username,
            avatar=avatar,
            message=text,
            timestamp=datetime.now(timezone.utc).isoformat(),
        )
        # 派发即忘：写缓存失败只记日志，不影响广播
        self.history.append_nowait(room, message)
        await self.broadcaster.broadcast(
            room,
            ServerEvent(event="new_message", data=message.model_dump(by_alias=True)),
        )
        return message

    async def on_disconnect(self, session_id: str) -> list[tuple[str, int]]:
        """会话断开：强制离开所有房间，并逐个房间广播新人数。

        对从未加入任何房间（甚至从未登记）的会话是安全的空操作。
        """
        affected = self.registry.leave_all(session_id)
        for room, count in affected:
            self.broadcaster.leave_group(session_id, room)
            logger.info("观众断线离开 | stream=%s | 在线: %d", room, count)
            await self._broadcast_count(room, count)
        logger.debug("会话已断开 | session=%s | 影响房间: %d", session_id, len(affected))
        return affected

    # ── 上行事件分发 ──────────────────────────────────────────────────

    async def handle_event(self, session_id: str, event: ClientEvent) -> None:
        """解析并分发一条客户端事件。负载不合法时记录日志并丢弃。"""
        try:
            if event.event == "join_stream":
                ref = self._parse_stream_ref(event.data)
                await self.on_join(session_id, ref.stream_id)
            elif event.event == "leave_stream":
                ref = self._parse_stream_ref(event.data)
                await self.on_leave(session_id, ref.stream_id)
            elif event.event == "chat_message":
                payload = ChatMessageIn.model_validate(event.data)
                await self.on_chat_message(
                    session_id,
                    payload.stream_id,
                    payload.user_id,
                    payload.username,
                    payload.avatar,
                    payload.message,
                )
            else:
                logger.warning("未知事件，已丢弃 | event=%s", event.event)
        except ValidationError as e:
            logger.warning(
                "事件负载不合法，已丢弃 | event=%s | errors=%d",
                event.event, e.error_count(),
            )

    # ── 内部方法 ──────────────────────────────────────────────────────

    @staticmethod
    def _parse_stream_ref(data: Any) -> StreamRef:
        # 兼容两种写法：``"data": 42`` 与 ``"data": {"streamId": 42}``
        if isinstance(data, dict):
            return StreamRef.model_validate(data)
        return StreamRef.model_validate({"streamId": data})

    @staticmethod
    def _normalize(stream_id: Any, event: str, session_id: str) -> str | None:
        try:
            return normalize_stream_id(stream_id)
        except ValueError as e:
            logger.warning("streamId 非法，已丢弃 | event=%s | session=%s | %s", event, session_id, e)
            return None

    async def _broadcast_count(self, room: str, count: int) -> None:
        await self.broadcaster.broadcast(
            room,
            ServerEvent(
                event="viewer_count",
                data=ViewerCount(stream_id=room, count=count).model_dump(by_alias=True),
            ),
        )
