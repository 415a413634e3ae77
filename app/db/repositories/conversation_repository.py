from typing import List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.conversation import Conversation
from app.db.repositories.base_repository import BaseRepository


class ConversationRepository(BaseRepository[Conversation]):
    """
    会话仓库类
    """

    def __init__(self, db_session: AsyncSession):
        super().__init__(db_session, Conversation)

    async def get_by_user_id(
        self, user_id: UUID, *, skip: int = 0, limit: int = 100
    ) -> List[Conversation]:
        """
        获取用户的所有会话，最近更新的在前
        """
        query = (
            select(Conversation)
            .where(Conversation.user_id == user_id)
            .order_by(Conversation.updated_at.desc())
            .offset(skip)
            .limit(limit)
        )
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def get_by_id_for_user(
        self, id: UUID, user_id: UUID
    ) -> Optional[Conversation]:
        """
        获取特定用户的特定会话；不属于该用户时与不存在同样返回 None
        """
        query = select(Conversation).where(
            Conversation.id == id, Conversation.user_id == user_id
        )
        result = await self.db.execute(query)
        return result.scalars().first()

    async def update_title(self, conversation: Conversation, title: str) -> Conversation:
        return await self.update(db_obj=conversation, obj_in={"title": title})

    async def update_model(self, conversation: Conversation, model_id: str) -> Conversation:
        return await self.update(db_obj=conversation, obj_in={"model_id": model_id})
