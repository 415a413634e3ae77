from typing import List
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import BadRequestException, NotFoundException
from app.db.models.conversation import Conversation
from app.db.models.message import Message
from app.db.repositories.conversation_repository import ConversationRepository
from app.db.repositories.message_repository import MessageRepository
from app.llm.gateway import ProviderGateway
from app.schemas.conversation import ConversationCreate


class ConversationService:
    """
    会话服务，处理会话的创建、查询和删除

    不属于当前用户的会话与不存在的会话一样返回 404。
    """

    def __init__(self, db_session: AsyncSession, gateway: ProviderGateway):
        self.conversation_repo = ConversationRepository(db_session)
        self.message_repo = MessageRepository(db_session)
        self.gateway = gateway

    async def create(self, user_id: UUID, conv_create: ConversationCreate) -> Conversation:
        """
        创建新会话
        """
        if self.gateway.get_model_by_id(conv_create.model_id) is None:
            raise BadRequestException(
                detail=f"Model '{conv_create.model_id}' is not available or configured"
            )
        return await self.conversation_repo.create(
            obj_in={**conv_create.model_dump(), "user_id": user_id}
        )

    async def get_by_id(self, conversation_id: UUID, user_id: UUID) -> Conversation:
        conversation = await self.conversation_repo.get_by_id_for_user(conversation_id, user_id)
        if not conversation:
            raise NotFoundException(detail="Conversation not found")
        return conversation

    async def get_by_user_id(self, user_id: UUID, skip: int = 0, limit: int = 100) -> List[Conversation]:
        return await self.conversation_repo.get_by_user_id(user_id, skip=skip, limit=limit)

    async def get_messages(
        self, conversation_id: UUID, user_id: UUID, skip: int = 0, limit: int = 100
    ) -> List[Message]:
        """
        获取会话消息，按时间正序
        """
        await self.get_by_id(conversation_id, user_id)
        return await self.message_repo.get_by_conversation_id(
            conversation_id, skip=skip, limit=limit
        )

    async def delete(self, conversation_id: UUID, user_id: UUID) -> None:
        """
        删除会话及其消息
        """
        conversation = await self.get_by_id(conversation_id, user_id)
        await self.conversation_repo.delete(id=conversation.id)
