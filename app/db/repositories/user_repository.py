from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.user import User
from app.db.repositories.base_repository import BaseRepository


class UserRepository(BaseRepository[User]):
    """
    用户仓库类
    """

    def __init__(self, db_session: AsyncSession):
        super().__init__(db_session, User)
