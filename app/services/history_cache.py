"""
app.services.history_cache
~~~~~~~~~~~~~~~~~~~~~~~~~~

最近弹幕缓存 —— 每个直播间一条定长列表，供观众加入时回填。

写入是“派发即忘”的：``append_nowait()`` 只创建后台任务并立即返回，
任何异常都在任务内部记录并丢弃，绝不影响广播路径，也不会回传给发送者。

同一进程内，同一房间的写入按派发顺序串行执行（先读后写不会互相覆盖），
因此列表保持弹幕的到达顺序；跨进程时接受“最后写入者胜出”。
"""
from __future__ import annotations

import asyncio
from collections.abc import Hashable
from typing import Any

from app.core.logging import get_logger
from app.db.kv_store import KeyValueStore
from app.schemas.live_events import ChatMessage

logger = get_logger(__name__)


class ChatHistoryCache:
    """按房间缓存最近弹幕。

    Attributes:
        store: 底层键值存储。
        limit: 每个房间保留的最大条数，超出时淘汰最旧的。
        ttl_seconds: 过期时间，每次写入都会刷新。
    """

    def __init__(
        self,
        store: KeyValueStore,
        limit: int = 100,
        ttl_seconds: int = 3600,
        key_template: str = "room:{stream_id}:messages",
    ) -> None:
        self.store = store
        self.limit = limit
        self.ttl_seconds = ttl_seconds
        self.key_template = key_template
        self._locks: dict[str, asyncio.Lock] = {}
        self._pending: dict[str, int] = {}
        self._tasks: set[asyncio.Task[None]] = set()

    def key_for(self, stream_id: Hashable) -> str:
        return self.key_template.format(stream_id=stream_id)

    async def append(self, stream_id: Hashable, message: ChatMessage) -> None:
        """追加一条弹幕并裁剪到 ``limit`` 条。异常会直接抛出。"""
        key = self.key_for(stream_id)
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._pending[key] = self._pending.get(key, 0) + 1
        try:
            async with lock:
                history = await self.store.get(key)
                if not isinstance(history, list):
                    history = []
                history.append(message.model_dump(by_alias=True))
                if len(history) > self.limit:
                    history = history[-self.limit:]
                await self.store.set(key, history, self.ttl_seconds)
        finally:
            self._pending[key] -= 1
            if self._pending[key] == 0:
                # 没有排队中的写入了，回收这把锁
                del self._pending[key]
                del self._locks[key]

    def append_nowait(self, stream_id: Hashable, message: ChatMessage) -> asyncio.Task[None]:
        """派发一次后台写入并立即返回，必须在事件循环中调用。"""
        task = asyncio.create_task(self._append_safely(stream_id, message))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _append_safely(self, stream_id: Hashable, message: ChatMessage) -> None:
        try:
            await self.append(stream_id, message)
        except Exception as e:
            logger.warning(
                "弹幕历史写入失败，已忽略 | stream=%s | msg_id=%s | %s",
                stream_id, message.id, e,
            )

    async def recent(self, stream_id: Hashable, limit: int | None = None) -> list[ChatMessage]:
        """读取最近的弹幕（按到达顺序）。缓存不可用时返回空列表。"""
        try:
            raw: Any = await self.store.get(self.key_for(stream_id))
        except Exception as e:
            logger.warning("读取弹幕历史失败 | stream=%s | %s", stream_id, e)
            return []
        if not isinstance(raw, list):
            return []

        messages: list[ChatMessage] = []
        for item in raw:
            try:
                messages.append(ChatMessage.model_validate(item))
            except ValueError:
                logger.debug("跳过无法解析的历史弹幕 | stream=%s", stream_id)
        if limit is not None:
            messages = messages[-limit:] if limit > 0 else []
        return messages

    async def drain(self) -> None:
        """等待所有已派发的后台写入完成（关闭服务或测试时使用）。"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
