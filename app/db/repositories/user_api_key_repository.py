from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.user_api_key import UserApiKey
from app.db.repositories.base_repository import BaseRepository


class UserApiKeyRepository(BaseRepository[UserApiKey]):
    """
    用户自带API密钥仓库
    """

    def __init__(self, db_session: AsyncSession):
        super().__init__(db_session, UserApiKey)

    async def get_valid_key(self, user_id: UUID, provider: str) -> Optional[UserApiKey]:
        """
        获取用户在某提供商下最早创建的有效密钥
        """
        query = (
            select(UserApiKey)
            .where(
                UserApiKey.user_id == user_id,
                UserApiKey.provider == provider,
                UserApiKey.status == "valid",
            )
            .order_by(UserApiKey.created_at)
            .limit(1)
        )
        result = await self.db.execute(query)
        return result.scalars().first()
