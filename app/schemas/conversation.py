from typing import Optional
from uuid import UUID

from pydantic import Field

from app.db.models.conversation import DEFAULT_CONVERSATION_TITLE
from app.schemas.base import BaseModelSchema, BaseSchema


class ConversationCreate(BaseSchema):
    """
    创建会话时的数据格式
    """

    title: str = Field(default=DEFAULT_CONVERSATION_TITLE, min_length=1, max_length=255)
    model_id: str = Field(..., min_length=1)
    system_prompt: Optional[str] = None


class Conversation(BaseModelSchema):
    """
    API 返回的会话信息
    """

    user_id: UUID
    title: str
    model_id: str
    system_prompt: Optional[str] = None
