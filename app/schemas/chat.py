"""
聊天流式接口的请求体与 SSE 事件模型
"""

from typing import List, Literal, Optional
from uuid import UUID

from pydantic import Field, model_validator

from app.schemas.base import CamelSchema
from app.schemas.message import AttachmentDescriptor, SearchResult


class SendMessageRequest(CamelSchema):
    """
    POST /chat/send

    content 为发送给模型的内容（可能已做搜索增强），display_content 为界面展示的原文。
    带 retry_message_id 时表示在原位置重新生成该助手消息。
    """

    conversation_id: UUID
    content: str = Field(default="", max_length=10000)
    model: str = Field(..., min_length=1)
    display_content: Optional[str] = Field(default=None, max_length=10000)
    search_results: Optional[List[SearchResult]] = None
    search_query: Optional[str] = None
    search_provider: Optional[str] = None
    attachments: Optional[List[AttachmentDescriptor]] = None
    retry_message_id: Optional[UUID] = None

    @model_validator(mode="after")
    def check_content_or_attachments(self):
        if self.retry_message_id is None and not self.content.strip() and not self.attachments:
            raise ValueError("Message content or attachments required")
        return self


class ResumeStreamRequest(CamelSchema):
    """
    POST /chat/resume
    """

    stream_id: str = Field(..., min_length=1)
    from_chunk_index: int = Field(default=0, ge=0)
    conversation_id: UUID
    message_id: UUID
    model: str = Field(..., min_length=1)
    last_known_content: str = ""


class RetryMessageRequest(CamelSchema):
    """
    POST /chat/retry
    """

    conversation_id: UUID
    message_id: UUID
    model: str = Field(..., min_length=1)


class ContentEvent(CamelSchema):
    type: Literal["content"] = "content"
    content: str
    finished: bool = False
    message_id: UUID
    user_message_id: Optional[UUID] = None
    stream_id: str
    chunk_index: int
    total_tokens: int
    provider: str
    model: str
    is_resumed: Optional[bool] = None


class CompletedEvent(CamelSchema):
    type: Literal["completed"] = "completed"
    finished: bool = True
    message_id: UUID
    user_message_id: Optional[UUID] = None
    stream_id: str
    total_tokens: int
    processing_time: float
    final_chunk_index: int
    title_generated: bool = False
    regenerated: Optional[bool] = None
    resumed_from_chunk: Optional[int] = None
    original_stream_id: Optional[str] = None


class ErrorEvent(CamelSchema):
    type: Literal["error"] = "error"
    error: str
    finished: bool = True
    message_id: UUID
    stream_id: Optional[str] = None


class ResumedEvent(CamelSchema):
    type: Literal["resumed"] = "resumed"
    stream_id: str
    original_stream_id: str
    resumed_from_chunk: int
    existing_content: str
    message_id: UUID
