"""
app.db.__init__
~~~~~~~~~~~~~~~

Redis 异步连接管理。

使用 ``redis.asyncio`` 在应用生命周期内维护一个全局连接池。
启动时调用 ``connect_redis()`` 取得客户端，关闭时调用 ``close_redis()``。

Redis 只承载弹幕历史这种尽力而为的数据，连不上时只告警、不阻止启动。
"""
from __future__ import annotations

from urllib.parse import urlparse, urlunparse

import redis.asyncio as redis

from app.core.logging import get_logger
from app.core.settings import settings

logger = get_logger(__name__)

_client: redis.Redis | None = None


def _mask_uri(uri: str) -> str:
    """将 Redis URI 中的密码替换为 ``***``，防止日志泄漏凭证。"""
    parsed = urlparse(uri)
    if parsed.password:
        masked = parsed._replace(
            netloc=f"{parsed.username or ''}:***@{parsed.hostname}"
            + (f":{parsed.port}" if parsed.port else ""),
        )
        return urlunparse(masked)
    return uri


async def connect_redis() -> redis.Redis:
    """初始化 Redis 连接池。应在 lifespan startup 中调用。"""
    global _client
    _client = redis.from_url(settings.REDIS_URL, decode_responses=True)

    try:
        await _client.ping()
        logger.info("Redis 已连接 | uri=%s", _mask_uri(settings.REDIS_URL))
    except Exception as e:
        # 历史缓存是尽力而为的，后续写入失败会在调用处单独记录
        logger.warning(
            "Redis 连接失败，弹幕历史将不可用 | uri=%s | %s",
            _mask_uri(settings.REDIS_URL), e,
        )
    return _client


async def close_redis() -> None:
    """关闭 Redis 连接池。应在 lifespan shutdown 中调用。"""
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None
        logger.info("Redis 连接已关闭")
