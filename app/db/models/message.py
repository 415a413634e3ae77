from sqlalchemy import Column, Enum, ForeignKey, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import relationship

from app.db.models.base import Base


class Message(Base):
    """
    聊天消息模型

    助手消息在轮次开始时以空内容占位创建，流式过程中增量写入，
    完成后写入完整内容与token数。
    """

    conversation_id = Column(
        UUID(as_uuid=True), ForeignKey("conversation.id"), nullable=False, index=True
    )
    user_id = Column(UUID(as_uuid=True), ForeignKey("user.id"), nullable=False)
    role = Column(
        Enum("user", "assistant", "system", name="message_role"), nullable=False
    )
    content = Column(Text, nullable=False, default="")
    model = Column(String, nullable=True)  # 用户消息为空
    token_count = Column(Integer, nullable=False, default=0)

    # 结构见 app.schemas.message 中的 MessageMetadata
    msg_metadata = Column("metadata", JSONB, nullable=True)

    conversation = relationship("Conversation", back_populates="messages")
