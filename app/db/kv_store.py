"""
app.db.kv_store
~~~~~~~~~~~~~~~

带 TTL 的键值存储 —— 弹幕历史缓存的底层读写原语。

只暴露 ``get`` / ``set`` 两个操作，值以 JSON 文本存放，
没有事务语义。调用方需要自行处理读改写之间的竞争。
"""
from __future__ import annotations

import json
from typing import Any, Protocol

import redis.asyncio as redis

from app.core.logging import get_logger

logger = get_logger(__name__)


class KeyValueStore(Protocol):
    """键值缓存协议。"""

    async def get(self, key: str) -> Any | None:
        ...

    async def set(self, key: str, value: Any, ttl_seconds: int) -> bool:
        ...


class RedisKeyValueStore:
    """基于 Redis 的 ``KeyValueStore`` 实现。

    Attributes:
        client: ``redis.asyncio.Redis`` 客户端（``decode_responses=True``）。
    """

    def __init__(self, client: redis.Redis) -> None:
        self.client = client

    async def get(self, key: str) -> Any | None:
        """读取并反序列化一个 key，不存在时返回 ``None``。"""
        raw = await self.client.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("缓存值不是合法 JSON，按缺失处理 | key=%s", key)
            return None

    async def set(self, key: str, value: Any, ttl_seconds: int) -> bool:
        """序列化并写入一个 key，同时设置过期时间。"""
        await self.client.set(key, json.dumps(value, ensure_ascii=False), ex=ttl_seconds)
        return True
