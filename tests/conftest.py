"""
tests.conftest
~~~~~~~~~~~~~~

共享 pytest fixtures —— 用内存实现替换 Redis 和 WebSocket 传输层，
使单元测试可在无网络、无 Redis 的环境下快速运行。
"""
from __future__ import annotations

import os
from collections.abc import Iterator
from typing import Any
from unittest.mock import AsyncMock, patch

import pytest

# ── 在所有测试导入前设置环境变量 ─────────────────────────────────────
os.environ.setdefault("ENVIRONMENT", "test")
# 集成测试里会连续发弹幕，关闭限流
os.environ.setdefault("WS_RATE_LIMIT_INTERVAL", "0")

from app.schemas.live_events import ServerEvent  # noqa: E402
from app.services.history_cache import ChatHistoryCache  # noqa: E402
from app.services.presence import PresenceCoordinator  # noqa: E402
from app.services.room_registry import RoomRegistry  # noqa: E402


# ── 键值存储 Fake ─────────────────────────────────────────────────────

class FakeKeyValueStore:
    """内存版 ``KeyValueStore``，记录每次写入的 TTL。"""

    def __init__(self) -> None:
        self.data: dict[str, Any] = {}
        self.ttls: dict[str, int] = {}
        self.set_calls: int = 0

    async def get(self, key: str) -> Any | None:
        return self.data.get(key)

    async def set(self, key: str, value: Any, ttl_seconds: int) -> bool:
        self.set_calls += 1
        self.data[key] = value
        self.ttls[key] = ttl_seconds
        return True


class BrokenKeyValueStore:
    """所有操作都抛异常，模拟 Redis 不可用。"""

    async def get(self, key: str) -> Any | None:
        raise ConnectionError("redis down")

    async def set(self, key: str, value: Any, ttl_seconds: int) -> bool:
        raise ConnectionError("redis down")


# ── 广播器 Fake ───────────────────────────────────────────────────────

class RecordingBroadcaster:
    """记录分组成员和每个会话收到的事件，不涉及真实 socket。"""

    def __init__(self) -> None:
        self.groups: dict[str, set[str]] = {}
        self.inbox: dict[str, list[ServerEvent]] = {}
        self.broadcasts: list[tuple[str, ServerEvent]] = []

    def join_group(self, session_id: str, group: str) -> None:
        self.groups.setdefault(group, set()).add(session_id)

    def leave_group(self, session_id: str, group: str) -> None:
        members = self.groups.get(group)
        if members is not None:
            members.discard(session_id)
            if not members:
                del self.groups[group]

    async def broadcast(self, group: str, event: ServerEvent) -> None:
        self.broadcasts.append((group, event))
        for sid in self.groups.get(group, set()):
            self.inbox.setdefault(sid, []).append(event)

    async def send_to(self, session_id: str, event: ServerEvent) -> None:
        self.inbox.setdefault(session_id, []).append(event)

    def received(self, session_id: str, event_name: str) -> list[Any]:
        """某个会话收到的指定事件负载列表。"""
        return [e.data for e in self.inbox.get(session_id, []) if e.event == event_name]


# ── Fixtures ──────────────────────────────────────────────────────────

@pytest.fixture()
def kv_store() -> FakeKeyValueStore:
    return FakeKeyValueStore()


@pytest.fixture()
def registry() -> RoomRegistry:
    return RoomRegistry()


@pytest.fixture()
def broadcaster() -> RecordingBroadcaster:
    return RecordingBroadcaster()


@pytest.fixture()
def history(kv_store: FakeKeyValueStore) -> ChatHistoryCache:
    return ChatHistoryCache(kv_store, limit=100, ttl_seconds=3600)


@pytest.fixture()
def presence(
    registry: RoomRegistry,
    broadcaster: RecordingBroadcaster,
    history: ChatHistoryCache,
) -> PresenceCoordinator:
    return PresenceCoordinator(
        registry=registry,
        broadcaster=broadcaster,
        history=history,
        backfill_on_join=False,
    )


@pytest.fixture()
def client(kv_store: FakeKeyValueStore) -> Iterator[Any]:
    """启动完整应用（含 lifespan），Redis 换成内存存储。"""
    from fastapi.testclient import TestClient

    from app.main import app

    with patch("app.main.connect_redis", new=AsyncMock(return_value=None)), \
         patch("app.main.close_redis", new=AsyncMock()), \
         patch("app.main.RedisKeyValueStore", return_value=kv_store):
        with TestClient(app) as test_client:
            yield test_client
