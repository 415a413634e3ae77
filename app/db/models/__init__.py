from app.db.models.base import Base
from app.db.models.conversation import Conversation
from app.db.models.message import Message
from app.db.models.user import User
from app.db.models.user_api_key import UserApiKey

__all__ = ["Base", "Conversation", "Message", "User", "UserApiKey"]
