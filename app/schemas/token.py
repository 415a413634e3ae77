from typing import Optional
from uuid import UUID

from pydantic import BaseModel


class TokenPayload(BaseModel):
    """
    JWT 令牌的载荷数据，sub 为用户ID
    """
    sub: Optional[UUID] = None
    exp: Optional[int] = None
