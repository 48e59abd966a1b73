"""
app.services.room_broadcaster
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

WebSocket 分组广播器 —— 协调器与具体传输层之间的能力接口。

协调器只依赖 ``RoomBroadcaster`` 协议（加入分组 / 离开分组 / 分组广播 /
单播），因此可以脱离真实 socket 做单元测试。
"""
from __future__ import annotations

import asyncio
from typing import Protocol

from fastapi import WebSocket

from app.core.logging import get_logger
from app.schemas.live_events import ServerEvent

logger = get_logger(__name__)


class RoomBroadcaster(Protocol):
    """传输层分组能力。"""

    def join_group(self, session_id: str, group: str) -> None:
        ...

    def leave_group(self, session_id: str, group: str) -> None:
        ...

    async def broadcast(self, group: str, event: ServerEvent) -> None:
        ...

    async def send_to(self, session_id: str, event: ServerEvent) -> None:
        ...


class WebSocketRoomBroadcaster:
    """基于 FastAPI ``WebSocket`` 的分组广播器（进程内）。

    连接由传输层（WebSocket 端点）注册和注销；某个连接发送失败时只记录日志，
    不在这里清理 —— 死连接由它自己的断开事件负责清理。

    Attributes:
        connections: ``session_id → WebSocket``。
    """

    def __init__(self) -> None:
        self.connections: dict[str, WebSocket] = {}
        self._groups: dict[str, set[str]] = {}

    def register(self, session_id: str, websocket: WebSocket) -> None:
        """登记一个已 accept 的连接。"""
        self.connections[session_id] = websocket

    def unregister(self, session_id: str) -> None:
        """注销连接，并把它从所有分组中移除。"""
        self.connections.pop(session_id, None)
        for group in [g for g, members in self._groups.items() if session_id in members]:
            self.leave_group(session_id, group)

    def join_group(self, session_id: str, group: str) -> None:
        self._groups.setdefault(group, set()).add(session_id)

    def leave_group(self, session_id: str, group: str) -> None:
        members = self._groups.get(group)
        if members is None:
            return
        members.discard(session_id)
        if not members:
            del self._groups[group]

    async def broadcast(self, group: str, event: ServerEvent) -> None:
        """向分组内所有连接广播事件，单个连接失败不影响其他连接。"""
        recipients = [
            (sid, self.connections[sid])
            for sid in list(self._groups.get(group, ()))
            if sid in self.connections
        ]
        if not recipients:
            return
        payload = event.to_json()
        results = await asyncio.gather(
            *(ws.send_text(payload) for _, ws in recipients),
            return_exceptions=True,
        )
        for (sid, _), result in zip(recipients, results):
            if isinstance(result, Exception):
                logger.warning(
                    "广播失败，跳过该连接 | group=%s | session=%s | %s",
                    group, sid, result,
                )

    async def send_to(self, session_id: str, event: ServerEvent) -> None:
        """单独发给某一个连接（例如加入时的历史回填）。"""
        websocket = self.connections.get(session_id)
        if websocket is None:
            return
        try:
            await websocket.send_text(event.to_json())
        except Exception as e:
            logger.warning("单播失败 | session=%s | %s", session_id, e)
