from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from uuid import UUID

from pydantic import Field, TypeAdapter

from app.schemas.base import BaseModelSchema, CamelSchema


class MessageRole(str, Enum):
    """
    消息角色枚举
    """

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class AttachmentDescriptor(CamelSchema):
    """
    客户端上传后随消息提交的附件描述
    """

    id: Optional[str] = None
    name: str
    size: int = 0
    type: str
    url: str
    extracted_text: Optional[str] = None
    thumbnail_url: Optional[str] = None
    category: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    @property
    def kind(self) -> str:
        """附件大类：image / pdf / text ..."""
        return self.category or self.type.split("/")[0]


class StoredAttachment(CamelSchema):
    """
    保存在消息元数据中的附件信息，历史轮次重建上下文时使用
    """

    type: str
    url: str
    filename: str
    size: int = 0
    extracted_text: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    @classmethod
    def from_descriptor(cls, attachment: AttachmentDescriptor) -> "StoredAttachment":
        return cls(
            type=attachment.kind,
            url=attachment.url,
            filename=attachment.name,
            size=attachment.size,
            extracted_text=attachment.extracted_text,
            metadata=attachment.metadata,
        )


class SearchResult(CamelSchema):
    """
    网页搜索结果条目
    """

    title: str
    url: str
    snippet: str = ""
    content: Optional[str] = None
    published_date: Optional[str] = None
    score: Optional[float] = None


class UserTurnMetadata(CamelSchema):
    """用户轮次：附件与搜索增强内容"""

    kind: Literal["user"] = "user"
    streaming_complete: bool = True
    attachments: Optional[List[StoredAttachment]] = None
    # 发送给模型的搜索增强内容；消息 content 只保存展示内容
    enhanced_content: Optional[str] = None
    search_results: Optional[List[SearchResult]] = None
    search_query: Optional[str] = None
    search_provider: Optional[str] = None


class AssistantTurnMetadata(CamelSchema):
    """助手轮次：流式状态、耗时与续传记录"""

    kind: Literal["assistant"] = "assistant"
    streaming_complete: bool = False
    regenerated: bool = False
    processing_time: Optional[float] = None
    provider: Optional[str] = None
    model: Optional[str] = None
    search_results: Optional[List[SearchResult]] = None
    search_query: Optional[str] = None
    search_provider: Optional[str] = None
    resume_attempted: Optional[bool] = None
    original_stream_id: Optional[str] = None
    current_stream_id: Optional[str] = None


class ErrorTurnMetadata(CamelSchema):
    """失败轮次：删除失败时的降级标记，或续传出错后保留的部分内容"""

    kind: Literal["error"] = "error"
    streaming_complete: bool = False
    error: bool = True
    deleted: bool = False
    error_message: Optional[str] = None
    regenerated: bool = False
    provider: Optional[str] = None
    model: Optional[str] = None
    search_results: Optional[List[SearchResult]] = None
    search_query: Optional[str] = None
    search_provider: Optional[str] = None
    resume_attempted: Optional[bool] = None
    original_stream_id: Optional[str] = None
    current_stream_id: Optional[str] = None


MessageMetadata = Annotated[
    Union[UserTurnMetadata, AssistantTurnMetadata, ErrorTurnMetadata],
    Field(discriminator="kind"),
]

_metadata_adapter = TypeAdapter(MessageMetadata)


def parse_message_metadata(raw: Optional[Dict[str, Any]], role: str) -> MessageMetadata:
    """
    解析数据库中的元数据

    旧数据没有 kind 字段时，根据 error 标记和消息角色推断。
    """
    data = dict(raw or {})
    if "kind" not in data:
        if data.get("error"):
            data["kind"] = "error"
        elif role == MessageRole.USER.value:
            data["kind"] = "user"
        else:
            data["kind"] = "assistant"
    return _metadata_adapter.validate_python(data)


# 续传改写元数据时沿用的原轮次信息
CARRIED_TURN_FIELDS = (
    "regenerated", "provider", "model", "search_results", "search_query", "search_provider",
)


def carried_turn_fields(metadata: MessageMetadata) -> Dict[str, Any]:
    return {
        name: getattr(metadata, name)
        for name in CARRIED_TURN_FIELDS
        if getattr(metadata, name, None) is not None
    }


def dump_metadata(metadata: MessageMetadata) -> Dict[str, Any]:
    """序列化为写入 JSONB 的 camelCase 字典"""
    return metadata.model_dump(mode="json", by_alias=True, exclude_none=True)


class MessageResponse(BaseModelSchema):
    """
    API 返回的消息信息
    """

    conversation_id: UUID
    role: MessageRole
    content: str
    model: Optional[str] = None
    token_count: int = 0
    metadata: Optional[Dict[str, Any]] = Field(default=None, validation_alias="msg_metadata")
