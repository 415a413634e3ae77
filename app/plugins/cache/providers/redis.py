import json
from typing import Any, List, Optional

import redis.asyncio as redis
from loguru import logger

from app.core.config import settings
from app.plugins.cache.base import CacheProvider


class RedisCache(CacheProvider):
    def __init__(self, url: Optional[str] = None):
        if url is None:
            auth = f":{settings.REDIS_PASSWORD}@" if settings.REDIS_PASSWORD else ""
            url = f"redis://{auth}{settings.REDIS_HOST}:{settings.REDIS_PORT}/{settings.REDIS_DB}"
        self.redis_url = url
        self.client: Optional[redis.Redis] = None

    async def connect(self) -> None:
        """连接到Redis服务器"""
        if self.client is not None:
            return
        self.client = redis.from_url(self.redis_url, decode_responses=True)
        logger.info(f"Redis客户端已创建: {settings.REDIS_HOST}:{settings.REDIS_PORT}/{settings.REDIS_DB}")

    async def disconnect(self) -> None:
        """断开与Redis服务器的连接"""
        if self.client:
            await self.client.aclose()
            self.client = None
            logger.info("Redis连接已关闭")

    async def _client(self) -> redis.Redis:
        if self.client is None:
            await self.connect()
        return self.client

    async def get(self, key: str) -> Any:
        client = await self._client()
        value = await client.get(key)
        if value is None:
            return None
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return value

    async def set(self, key: str, value: Any, expire: Optional[int] = None) -> bool:
        client = await self._client()
        payload = json.dumps(value, ensure_ascii=False)
        if expire:
            return bool(await client.setex(key, expire, payload))
        return bool(await client.set(key, payload))

    async def delete(self, key: str) -> bool:
        client = await self._client()
        return bool(await client.delete(key))

    async def keys(self, pattern: str) -> List[str]:
        client = await self._client()
        # SCAN 不会像 KEYS 一样阻塞服务器
        return [key async for key in client.scan_iter(match=pattern, count=200)]

    async def ping(self) -> bool:
        client = await self._client()
        return bool(await client.ping())
