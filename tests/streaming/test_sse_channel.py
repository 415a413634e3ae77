"""
测试SSE事件通道
"""

import json
from uuid import uuid4

import pytest

from app.schemas.chat import ErrorEvent
from app.streaming.sse import SSEChannel, format_sse_event


class TestSSEChannel:
    """测试SSE事件通道"""

    @pytest.mark.asyncio
    async def test_events_in_order(self):
        """事件按投递顺序读出，close 之后结束"""
        channel = SSEChannel()
        for i in range(3):
            assert channel.send({"n": i}) is True
        channel.close()

        events = [e async for e in channel.events()]
        assert events == [{"n": 0}, {"n": 1}, {"n": 2}]
        assert channel.is_connected

    @pytest.mark.asyncio
    async def test_send_after_close(self):
        """关闭后不再接受事件"""
        channel = SSEChannel()
        channel.close()
        assert channel.send({"n": 1}) is False

    def test_detach(self):
        """断开后 send 返回 False"""
        channel = SSEChannel()
        channel.detach()
        assert not channel.is_connected
        assert channel.send({"n": 1}) is False

    @pytest.mark.asyncio
    async def test_early_exit_detaches(self):
        """读取端提前退出视为客户端断开"""
        channel = SSEChannel()
        channel.send({"n": 0})
        channel.send({"n": 1})

        events = channel.events()
        assert await events.__anext__() == {"n": 0}
        await events.aclose()

        assert not channel.is_connected
        assert channel.send({"n": 2}) is False

    @pytest.mark.asyncio
    async def test_schema_events_use_camel_case(self):
        """模型事件序列化为 camelCase，省略空字段"""
        message_id = uuid4()
        channel = SSEChannel()
        channel.send(ErrorEvent(error="boom", message_id=message_id))
        channel.close()

        events = [e async for e in channel.events()]
        assert events == [
            {"type": "error", "error": "boom", "finished": True, "messageId": str(message_id)}
        ]

    def test_format_sse_event(self):
        """data 行格式，非ASCII字符不转义"""
        line = format_sse_event({"content": "你好"})
        assert line.startswith("data: ")
        assert line.endswith("\n\n")
        assert json.loads(line[len("data: "):]) == {"content": "你好"}
        assert "你好" in line
