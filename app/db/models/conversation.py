from sqlalchemy import Column, ForeignKey, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.db.models.base import Base

DEFAULT_CONVERSATION_TITLE = "New Chat"


class Conversation(Base):
    """
    对话会话模型

    model_id 跟随最近一次成功轮次所用的模型；title 在仍为占位标题时由首轮对话自动生成。
    """
    title = Column(String(255), nullable=False, default=DEFAULT_CONVERSATION_TITLE)
    user_id = Column(UUID(as_uuid=True), ForeignKey("user.id"), nullable=False, index=True)
    model_id = Column(String, nullable=False)
    system_prompt = Column(Text, nullable=True)

    user = relationship("User", back_populates="conversations")
    messages = relationship(
        "Message",
        back_populates="conversation",
        cascade="all, delete-orphan",
        order_by="Message.created_at",
    )
