"""
测试Redis缓存插件
"""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.plugins.cache.providers.redis import RedisCache


async def async_iter(items):
    for item in items:
        yield item


class TestRedisCache:
    """测试Redis缓存插件"""

    def setup_method(self):
        """测试前准备"""
        self.cache = RedisCache(url="redis://localhost:6379/0")
        self.client = MagicMock()
        self.client.get = AsyncMock()
        self.client.set = AsyncMock(return_value=True)
        self.client.setex = AsyncMock(return_value=True)
        self.client.delete = AsyncMock(return_value=1)
        self.cache.client = self.client

    @pytest.mark.asyncio
    async def test_set_with_expire(self):
        """带过期时间时使用 SETEX，值序列化为JSON"""
        assert await self.cache.set("stream_state:s1", {"content": "你好"}, expire=60)

        key, ttl, payload = self.client.setex.await_args.args
        assert (key, ttl) == ("stream_state:s1", 60)
        assert json.loads(payload) == {"content": "你好"}
        self.client.set.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_set_without_expire(self):
        """没有过期时间时使用 SET"""
        await self.cache.set("k", [1, 2])
        self.client.set.assert_awaited_once_with("k", "[1, 2]")

    @pytest.mark.asyncio
    async def test_get(self):
        """JSON值反序列化，非JSON原样返回"""
        self.client.get.return_value = '{"chunkIndex": 3}'
        assert await self.cache.get("k") == {"chunkIndex": 3}

        self.client.get.return_value = "plain"
        assert await self.cache.get("k") == "plain"

        self.client.get.return_value = None
        assert await self.cache.get("k") is None

    @pytest.mark.asyncio
    async def test_keys_uses_scan(self):
        """按模式列出键"""
        self.client.scan_iter = MagicMock(return_value=async_iter(["stream_state:a", "stream_state:b"]))

        assert await self.cache.keys("stream_state:*") == ["stream_state:a", "stream_state:b"]
        self.client.scan_iter.assert_called_once_with(match="stream_state:*", count=200)

    @pytest.mark.asyncio
    async def test_delete(self):
        assert await self.cache.delete("k") is True
