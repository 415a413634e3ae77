import asyncio
import json
from typing import Any, AsyncGenerator, Dict, Union

from fastapi.responses import StreamingResponse
from loguru import logger

from app.schemas.base import CamelSchema

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

_CLOSED = object()


def format_sse_event(event: Union[CamelSchema, Dict[str, Any]]) -> str:
    if isinstance(event, CamelSchema):
        event = event.to_json_dict()
    return f"data: {json.dumps(event, ensure_ascii=False, default=str)}\n\n"


class SSEChannel:
    """
    流式轮次与 HTTP 响应之间的事件通道

    轮次任务通过 send 投递事件，响应端从 stream 读取。客户端断开后通道被 detach，
    send 返回 False，轮次任务据此停止转发但继续完成处理。
    """

    def __init__(self):
        self._queue: asyncio.Queue = asyncio.Queue()
        self._detached = False
        self._closed = False

    @property
    def is_connected(self) -> bool:
        return not self._detached

    def send(self, event: Union[CamelSchema, Dict[str, Any]]) -> bool:
        if self._detached or self._closed:
            return False
        self._queue.put_nowait(event)
        return True

    def close(self) -> None:
        """轮次结束，读取端在取完已投递事件后退出"""
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(_CLOSED)

    def detach(self) -> None:
        if not self._detached:
            self._detached = True
            logger.info("客户端已断开，停止转发流式事件")

    async def events(self) -> AsyncGenerator[Dict[str, Any], None]:
        completed = False
        try:
            while True:
                item = await self._queue.get()
                if item is _CLOSED:
                    completed = True
                    return
                yield item.to_json_dict() if isinstance(item, CamelSchema) else item
        finally:
            # 被取消或提前关闭都视为客户端断开
            if not completed:
                self.detach()

    async def stream(self) -> AsyncGenerator[str, None]:
        async for event in self.events():
            yield format_sse_event(event)


def sse_response(channel: SSEChannel) -> StreamingResponse:
    return StreamingResponse(
        channel.stream(),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
