"""
tests.test_room_registry
~~~~~~~~~~~~~~~~~~~~~~~~

RoomRegistry 在线名单单元测试。
"""
from __future__ import annotations

import random
import threading

from app.services.room_registry import RoomRegistry


class TestJoinLeave:
    """测试加入 / 离开的计数语义。"""

    def test_join_returns_new_count(self, registry: RoomRegistry) -> None:
        assert registry.join("42", "a") == 1
        assert registry.join("42", "b") == 2
        assert registry.count("42") == 2

    def test_rejoin_is_idempotent(self, registry: RoomRegistry) -> None:
        """同一会话重复加入不会重复计数。"""
        registry.join("42", "a")
        assert registry.join("42", "a") == 1
        assert registry.count("42") == 1

    def test_leave_unknown_session_is_noop(self, registry: RoomRegistry) -> None:
        registry.join("42", "a")
        assert registry.leave("42", "ghost") == 1
        assert registry.leave("nope", "a") == 0

    def test_empty_room_is_removed(self, registry: RoomRegistry) -> None:
        """最后一人离开后房间被删除，count 返回 0 且不报错。"""
        registry.join("42", "a")
        assert registry.leave("42", "a") == 0

        assert registry.count("42") == 0
        assert registry.snapshot() == {}

    def test_keys_are_not_normalised(self, registry: RoomRegistry) -> None:
        """名单本身不做归一化，空字符串也是一个独立的房间 key。"""
        registry.join("", "a")
        registry.join(42, "a")

        assert registry.count("") == 1
        assert registry.count(42) == 1
        assert registry.count("42") == 0

    def test_count_matches_replay(self) -> None:
        """任意 join/leave 序列回放后，人数等于仍在房间内的不同会话数。"""
        rng = random.Random(7)
        registry = RoomRegistry()
        expected: set[str] = set()

        for _ in range(500):
            sid = f"s{rng.randint(0, 15)}"
            if rng.random() < 0.55:
                registry.join("room", sid)
                expected.add(sid)
            else:
                registry.leave("room", sid)
                expected.discard(sid)
            assert registry.count("room") == len(expected) >= 0


class TestLeaveAll:
    """测试断线时的批量离开。"""

    def test_leave_all_one_entry_per_room(self, registry: RoomRegistry) -> None:
        registry.register("c")
        registry.join("7", "c")
        registry.join("9", "c")
        registry.join("9", "d")

        affected = dict(registry.leave_all("c"))

        assert affected == {"7": 0, "9": 1}
        assert "7" not in registry.snapshot()
        assert registry.count("9") == 1
        assert registry.leave_all("c") == []

    def test_leave_all_skips_rooms_already_left(self, registry: RoomRegistry) -> None:
        registry.join("7", "c")
        registry.join("9", "c")
        registry.leave("7", "c")

        assert registry.leave_all("c") == [("9", 0)]

    def test_leave_all_untracked_session(self, registry: RoomRegistry) -> None:
        """从未登记的会话断线是安全的空操作。"""
        assert registry.leave_all("never-seen") == []

    def test_registered_but_never_joined(self, registry: RoomRegistry) -> None:
        registry.register("idle")
        assert registry.leave_all("idle") == []
        assert registry.leave_all("idle") == []


class TestConcurrency:
    """多线程并发修改不会丢失更新。"""

    def test_concurrent_joins_and_leaves(self) -> None:
        registry = RoomRegistry()
        sessions = [f"s{i}" for i in range(200)]

        def worker(chunk: list[str]) -> None:
            for sid in chunk:
                registry.join("hot", sid)
                registry.join("other", sid)
                registry.leave("other", sid)

        threads = [
            threading.Thread(target=worker, args=(sessions[i::8],)) for i in range(8)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert registry.count("hot") == 200
        assert "other" not in registry.snapshot()

        results = []
        lock = threading.Lock()

        def disconnect(chunk: list[str]) -> None:
            for sid in chunk:
                affected = registry.leave_all(sid)
                with lock:
                    results.extend(affected)

        threads = [
            threading.Thread(target=disconnect, args=(sessions[i::8],)) for i in range(8)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(results) == 200
        assert sorted(count for _, count in results) == list(range(200))
        assert registry.snapshot() == {}
