import secrets
import time
from typing import Optional
from uuid import UUID

from pydantic import Field

from app.schemas.base import CamelSchema


def generate_stream_id(conversation_id: UUID, message_id: UUID) -> str:
    """
    生成流ID：会话ID + 消息ID + 毫秒时间戳 + 随机后缀

    同一毫秒内对同一消息续传也不会得到相同的ID。
    """
    millis = int(time.time() * 1000)
    return f"stream-{conversation_id}-{message_id}-{millis}-{secrets.token_hex(4)}"


class StreamState(CamelSchema):
    """
    可续传的流快照

    仓库中保存的始终是最新的完整快照，保存时整体替换。
    """

    stream_id: str
    conversation_id: str
    message_id: str
    content: str = ""
    chunk_index: int = 0
    total_tokens: int = 0
    start_time: float = Field(default_factory=time.time)
    last_update_time: float = Field(default_factory=time.time)
    elapsed_time: float = 0.0
    tokens_per_second: float = 0.0
    bytes_received: int = 0
    is_complete: bool = False
    is_paused: bool = False
    error: Optional[str] = None
    model_id: Optional[str] = None
    provider: Optional[str] = None
    original_prompt: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return not self.is_complete and self.error is None

    def advance(self, delta: str, token_count: int) -> "StreamState":
        """应用一个内容增量，返回新的快照"""
        now = time.time()
        elapsed = max(now - self.start_time, 0.0)
        total_tokens = self.total_tokens + token_count
        return self.model_copy(
            update={
                "content": self.content + delta,
                "chunk_index": self.chunk_index + 1,
                "total_tokens": total_tokens,
                "bytes_received": self.bytes_received + len(delta.encode("utf-8")),
                "last_update_time": now,
                "elapsed_time": elapsed,
                "tokens_per_second": round(total_tokens / elapsed, 2) if elapsed > 0 else 0.0,
            }
        )
