"""
app.services.room_registry
~~~~~~~~~~~~~~~~~~~~~~~~~~

直播间在线名单 —— 进程内唯一的共享可变状态。

维护 ``stream_id → {session_id}`` 的正向映射，以及
``session_id → {stream_id}`` 的反向索引，使断线清理的开销只与
该会话自己加入的房间数成正比，而不是与全部房间数成正比。

所有操作都在同一把 ``threading.Lock`` 内完成且互不嵌套、不 await，
因此既可以在事件循环里直接调用，也可以在工作线程里调用。
外部调用方只能通过这里的原子操作修改状态，不能“先读再改”。
"""
from __future__ import annotations

import threading
from collections.abc import Hashable

from app.core.logging import get_logger

logger = get_logger(__name__)


class RoomRegistry:
    """直播间在线名单。

    房间在第一个会话加入时隐式创建，最后一个会话离开时立即删除，
    不会留下空房间。本类不校验 ``stream_id``，归一化由协调器负责。
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._rooms: dict[Hashable, set[str]] = {}
        self._session_rooms: dict[str, set[Hashable]] = {}

    def register(self, session_id: str) -> None:
        """登记一个刚建立的会话（初始化反向索引）。重复登记无副作用。"""
        with self._lock:
            self._session_rooms.setdefault(session_id, set())

    def join(self, stream_id: Hashable, session_id: str) -> int:
        """把会话加入房间，返回加入后的在线人数。重复加入不会重复计数。"""
        with self._lock:
            members = self._rooms.setdefault(stream_id, set())
            members.add(session_id)
            self._session_rooms.setdefault(session_id, set()).add(stream_id)
            return len(members)

    def leave(self, stream_id: Hashable, session_id: str) -> int:
        """把会话移出房间，返回移出后的在线人数（房间被删除时为 0）。"""
        with self._lock:
            joined = self._session_rooms.get(session_id)
            if joined is not None:
                joined.discard(stream_id)
            return self._discard_member(stream_id, session_id)

    def leave_all(self, session_id: str) -> list[tuple[Hashable, int]]:
        """把会话移出它加入过的所有房间，并注销该会话。

        Returns:
            每个受影响房间一条 ``(stream_id, 新人数)``。会话未登记时返回空列表。
        """
        with self._lock:
            joined = self._session_rooms.pop(session_id, set())
            return [
                (stream_id, self._discard_member(stream_id, session_id))
                for stream_id in joined
            ]

    def count(self, stream_id: Hashable) -> int:
        """房间当前人数，房间不存在时为 0。"""
        with self._lock:
            members = self._rooms.get(stream_id)
            return len(members) if members else 0

    def snapshot(self) -> dict[Hashable, int]:
        """所有活跃房间及其人数的快照。"""
        with self._lock:
            return {stream_id: len(members) for stream_id, members in self._rooms.items()}

    def _discard_member(self, stream_id: Hashable, session_id: str) -> int:
        # 调用方必须已持有 self._lock
        members = self._rooms.get(stream_id)
        if members is None:
            return 0
        members.discard(session_id)
        if not members:
            del self._rooms[stream_id]
            logger.debug("房间已清空并移除 | stream=%s", stream_id)
            return 0
        return len(members)
