"""
tests.test_room_broadcaster
~~~~~~~~~~~~~~~~~~~~~~~~~~~

WebSocketRoomBroadcaster 单元测试 —— 用 ``AsyncMock`` 模拟 socket。
"""
from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from app.schemas.live_events import ServerEvent
from app.services.room_broadcaster import WebSocketRoomBroadcaster


def make_socket(*, broken: bool = False) -> AsyncMock:
    websocket = AsyncMock()
    if broken:
        websocket.send_text.side_effect = RuntimeError("socket closed")
    return websocket


VIEWER_COUNT = ServerEvent(event="viewer_count", data={"streamId": "42", "count": 2})


class TestBroadcast:
    """分组广播与单播。"""

    @pytest.mark.asyncio
    async def test_failed_recipient_does_not_stop_others(self) -> None:
        broadcaster = WebSocketRoomBroadcaster()
        dead, healthy = make_socket(broken=True), make_socket()
        broadcaster.register("dead", dead)
        broadcaster.register("healthy", healthy)
        broadcaster.join_group("dead", "42")
        broadcaster.join_group("healthy", "42")

        await broadcaster.broadcast("42", VIEWER_COUNT)

        dead.send_text.assert_awaited_once_with(VIEWER_COUNT.to_json())
        healthy.send_text.assert_awaited_once_with(VIEWER_COUNT.to_json())

    @pytest.mark.asyncio
    async def test_broadcast_only_reaches_group_members(self) -> None:
        broadcaster = WebSocketRoomBroadcaster()
        member, outsider = make_socket(), make_socket()
        broadcaster.register("a", member)
        broadcaster.register("b", outsider)
        broadcaster.join_group("a", "42")

        await broadcaster.broadcast("42", VIEWER_COUNT)
        await broadcaster.broadcast("empty", VIEWER_COUNT)

        member.send_text.assert_awaited_once()
        outsider.send_text.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_send_to_swallows_send_failure(self) -> None:
        broadcaster = WebSocketRoomBroadcaster()
        dead = make_socket(broken=True)
        broadcaster.register("dead", dead)

        await broadcaster.send_to("dead", VIEWER_COUNT)
        await broadcaster.send_to("unknown", VIEWER_COUNT)

        dead.send_text.assert_awaited_once()


class TestGroups:
    """分组成员管理，空分组会被移除。"""

    def test_leave_group_removes_empty_group(self) -> None:
        broadcaster = WebSocketRoomBroadcaster()
        broadcaster.join_group("a", "42")
        broadcaster.join_group("b", "42")

        broadcaster.leave_group("a", "42")
        assert broadcaster._groups == {"42": {"b"}}

        broadcaster.leave_group("b", "42")
        broadcaster.leave_group("b", "missing")
        assert broadcaster._groups == {}

    @pytest.mark.asyncio
    async def test_unregister_leaves_every_group(self) -> None:
        broadcaster = WebSocketRoomBroadcaster()
        dead, healthy = make_socket(broken=True), make_socket()
        broadcaster.register("dead", dead)
        broadcaster.register("healthy", healthy)
        for group in ("7", "42"):
            broadcaster.join_group("dead", group)
        broadcaster.join_group("healthy", "42")

        broadcaster.unregister("dead")
        await broadcaster.broadcast("42", VIEWER_COUNT)

        dead.send_text.assert_not_awaited()
        assert broadcaster._groups == {"42": {"healthy"}}

        broadcaster.unregister("healthy")
        assert broadcaster._groups == {}
        assert broadcaster.connections == {}
