"""
用户自带密钥（BYOK）管理

优先使用用户保存的有效密钥，没有时回退到环境变量配置的密钥。
"""

import time
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Tuple
from uuid import UUID

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from app.core.config import settings
from app.core.exceptions import APIKeyDecryptionError
from app.core.security import decrypt_api_key
from app.db.repositories.user_api_key_repository import UserApiKeyRepository
from app.db.session import get_db


@dataclass
class ResolvedApiKey:
    api_key: str
    is_user_key: bool
    metadata: Dict[str, Any] = field(default_factory=dict)


class BYOKManager:
    """
    查询、解密并缓存用户的提供商密钥

    session_factory 返回一个异步上下文管理器，产出独立的数据库会话，
    避免与正在流式写入的会话交叉使用。
    """

    def __init__(
        self,
        session_factory: Callable[[], AbstractAsyncContextManager] = get_db,
        cache_ttl: int = settings.BYOK_CACHE_TTL_SECONDS,
    ):
        self.session_factory = session_factory
        self.cache_ttl = cache_ttl
        self._cache: Dict[Tuple[str, str], Tuple[float, Optional[ResolvedApiKey]]] = {}

    def _get_cached(self, cache_key: Tuple[str, str]) -> Tuple[bool, Optional[ResolvedApiKey]]:
        entry = self._cache.get(cache_key)
        if entry is None:
            return False, None
        cached_at, value = entry
        if time.monotonic() - cached_at > self.cache_ttl:
            del self._cache[cache_key]
            return False, None
        return True, value

    def invalidate(self, user_id: UUID, provider: Optional[str] = None) -> None:
        """用户密钥变更后清除缓存"""
        for key in list(self._cache):
            if key[0] == str(user_id) and (provider is None or key[1] == provider):
                del self._cache[key]

    async def get_user_api_key(self, provider: str, user_id: Optional[UUID]) -> Optional[ResolvedApiKey]:
        # 系统任务（如标题生成）没有真实用户
        if not user_id or not isinstance(user_id, UUID):
            return None

        cache_key = (str(user_id), provider)
        hit, cached = self._get_cached(cache_key)
        if hit:
            return cached

        try:
            async with self.session_factory() as session:
                repo = UserApiKeyRepository(session)
                record = await repo.get_valid_key(user_id, provider)
                if record is None:
                    resolved = None
                else:
                    resolved = ResolvedApiKey(
                        api_key=decrypt_api_key(record.encrypted_key, str(user_id)),
                        is_user_key=True,
                        metadata=dict(record.key_metadata or {}),
                    )
        except APIKeyDecryptionError as e:
            logger.error(f"用户 {user_id} 的 {provider} 密钥解密失败: {e}")
            return None
        except SQLAlchemyError as e:
            logger.error(f"查询用户 {user_id} 的 {provider} 密钥失败: {e}")
            return None

        self._cache[cache_key] = (time.monotonic(), resolved)
        return resolved

    async def get_api_key_with_fallback(
        self, provider: str, fallback_key: Optional[str], user_id: Optional[UUID]
    ) -> Optional[ResolvedApiKey]:
        user_key = await self.get_user_api_key(provider, user_id)
        if user_key:
            return user_key
        if fallback_key:
            return ResolvedApiKey(api_key=fallback_key, is_user_key=False)
        return None


_byok_manager: Optional[BYOKManager] = None


def get_byok_manager() -> BYOKManager:
    global _byok_manager
    if _byok_manager is None:
        _byok_manager = BYOKManager()
    return _byok_manager
