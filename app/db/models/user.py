from sqlalchemy import Boolean, Column, String
from sqlalchemy.orm import relationship

from app.db.models.base import Base


class User(Base):
    """
    用户模型（认证由外部负责，这里只保存归属关系所需字段）
    """
    email = Column(String, unique=True, index=True, nullable=False)
    username = Column(String, unique=True, index=True, nullable=False)
    is_active = Column(Boolean, default=True)

    # 用户偏好设置
    default_model_id = Column(String, nullable=True)

    conversations = relationship("Conversation", back_populates="user")
    api_keys = relationship("UserApiKey", back_populates="user", cascade="all, delete-orphan")
