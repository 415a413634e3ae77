from sqlalchemy import Column, Enum, ForeignKey, String, Text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import relationship

from app.db.models.base import Base


class UserApiKey(Base):
    """
    用户自带的提供商API密钥（加密存储）
    """

    user_id = Column(UUID(as_uuid=True), ForeignKey("user.id"), nullable=False, index=True)
    provider = Column(String, nullable=False)
    encrypted_key = Column(Text, nullable=False)
    status = Column(
        Enum("valid", "invalid", "pending", name="api_key_status"),
        nullable=False,
        default="pending",
    )
    key_metadata = Column(JSONB, nullable=True)

    user = relationship("User", back_populates="api_keys")
