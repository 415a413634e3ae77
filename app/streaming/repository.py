"""
流状态仓库

按流ID保存可续传快照。save 为整体替换（后写覆盖），不做字段合并，
调用方必须传入包含已累积内容的完整状态。
"""

import time
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from loguru import logger
from pydantic import ValidationError

from app.core.config import settings
from app.plugins.cache.base import CacheProvider
from app.plugins.cache.manager import get_cache_client
from app.streaming.state import StreamState


class StreamStateRepository(ABC):
    """流状态仓库接口"""

    @abstractmethod
    async def get_stream_state(self, stream_id: str) -> Optional[StreamState]:
        ...

    @abstractmethod
    async def save_stream_state(self, state: StreamState) -> None:
        ...

    @abstractmethod
    async def mark_stream_complete(self, stream_id: str) -> None:
        ...

    @abstractmethod
    async def remove_stream_state(self, stream_id: str) -> None:
        ...

    @abstractmethod
    async def get_incomplete_streams(self) -> List[StreamState]:
        """未完成且未出错的流，最近更新的在前"""

    async def find_incomplete_stream(
        self, message_id: str, conversation_id: str
    ) -> Optional[StreamState]:
        for state in await self.get_incomplete_streams():
            if state.message_id == message_id and state.conversation_id == conversation_id:
                return state
        return None


def _sort_incomplete(states: List[StreamState]) -> List[StreamState]:
    incomplete = [s for s in states if s.is_active]
    incomplete.sort(key=lambda s: s.last_update_time, reverse=True)
    return incomplete


class InMemoryStreamStateRepository(StreamStateRepository):
    """
    进程内实现，只适用于单实例部署

    读写都复制对象，调用方拿到的快照与仓库内部互不影响。
    """

    def __init__(self, ttl_seconds: int = settings.STREAM_STATE_TTL_SECONDS):
        self.ttl_seconds = ttl_seconds
        self._states: Dict[str, StreamState] = {}

    def _expired(self, state: StreamState, now: float) -> bool:
        return now - state.last_update_time > self.ttl_seconds

    async def get_stream_state(self, stream_id: str) -> Optional[StreamState]:
        state = self._states.get(stream_id)
        if state is None:
            return None
        if self._expired(state, time.time()):
            del self._states[stream_id]
            return None
        return state.model_copy(deep=True)

    async def save_stream_state(self, state: StreamState) -> None:
        self._states[state.stream_id] = state.model_copy(deep=True)

    async def mark_stream_complete(self, stream_id: str) -> None:
        state = self._states.get(stream_id)
        if state is None:
            logger.warning(f"标记完成失败，流状态不存在: {stream_id}")
            return
        self._states[stream_id] = state.model_copy(
            update={"is_complete": True, "is_paused": False, "last_update_time": time.time()}
        )

    async def remove_stream_state(self, stream_id: str) -> None:
        self._states.pop(stream_id, None)

    async def get_incomplete_streams(self) -> List[StreamState]:
        self.cleanup_expired()
        return [s.model_copy(deep=True) for s in _sort_incomplete(list(self._states.values()))]

    def cleanup_expired(self) -> int:
        now = time.time()
        expired = [sid for sid, s in self._states.items() if self._expired(s, now)]
        for stream_id in expired:
            del self._states[stream_id]
        if expired:
            logger.debug(f"清理过期流状态 {len(expired)} 个")
        return len(expired)


class CacheStreamStateRepository(StreamStateRepository):
    """
    基于缓存插件（Redis）的实现，支持多实例部署

    每个流一个键，过期时间交给 Redis 处理。
    """

    def __init__(
        self,
        cache: CacheProvider,
        key_prefix: str = settings.STREAM_STATE_KEY_PREFIX,
        ttl_seconds: int = settings.STREAM_STATE_TTL_SECONDS,
    ):
        self.cache = cache
        self.key_prefix = key_prefix
        self.ttl_seconds = ttl_seconds

    def _key(self, stream_id: str) -> str:
        return f"{self.key_prefix}{stream_id}"

    def _parse(self, key: str, data) -> Optional[StreamState]:
        if not isinstance(data, dict):
            return None
        try:
            return StreamState.model_validate(data)
        except ValidationError as e:
            logger.warning(f"流状态数据无效，已忽略: {key} | {e}")
            return None

    async def get_stream_state(self, stream_id: str) -> Optional[StreamState]:
        key = self._key(stream_id)
        return self._parse(key, await self.cache.get(key))

    async def save_stream_state(self, state: StreamState) -> None:
        await self.cache.set(
            self._key(state.stream_id),
            state.model_dump(mode="json", by_alias=True),
            expire=self.ttl_seconds,
        )

    async def mark_stream_complete(self, stream_id: str) -> None:
        state = await self.get_stream_state(stream_id)
        if state is None:
            logger.warning(f"标记完成失败，流状态不存在: {stream_id}")
            return
        await self.save_stream_state(
            state.model_copy(
                update={"is_complete": True, "is_paused": False, "last_update_time": time.time()}
            )
        )

    async def remove_stream_state(self, stream_id: str) -> None:
        await self.cache.delete(self._key(stream_id))

    async def get_incomplete_streams(self) -> List[StreamState]:
        states = []
        for key in await self.cache.keys(f"{self.key_prefix}*"):
            state = self._parse(key, await self.cache.get(key))
            if state is not None:
                states.append(state)
        return _sort_incomplete(states)


_repository: Optional[StreamStateRepository] = None


def get_stream_state_repository() -> StreamStateRepository:
    """按 STREAM_STATE_BACKEND 创建全局仓库实例"""
    global _repository
    if _repository is None:
        if settings.STREAM_STATE_BACKEND == "redis":
            _repository = CacheStreamStateRepository(get_cache_client())
        else:
            _repository = InMemoryStreamStateRepository()
        logger.info(f"流状态存储后端: {settings.STREAM_STATE_BACKEND}")
    return _repository
