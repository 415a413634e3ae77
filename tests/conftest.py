"""
Pytest配置文件，提供全局fixture以及流式编排测试使用的内存仓库和脚本化提供商
"""

from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence, Union
from uuid import UUID, uuid4

import pytest
from unittest.mock import AsyncMock, MagicMock
from sqlalchemy.exc import SQLAlchemyError

from app.db.models.conversation import Conversation
from app.db.models.message import Message
from app.llm.core.base import (AIModel, BaseProvider, ChatMessage,
                               ModelCapabilities, StreamingChunk,
                               StreamingContext)
from app.llm.gateway import ProviderGateway
from app.schemas.message import MessageRole
from app.streaming.repository import InMemoryStreamStateRepository
from app.streaming.sse import SSEChannel


def pytest_configure(config):
    """配置pytest"""
    config.addinivalue_line("markers", "integration: mark a test as an integration test")
    config.addinivalue_line("markers", "unit: mark a test as a unit test")


class FakeMessageRepository:
    """按 MessageRepository 接口实现的内存消息仓库"""

    def __init__(self):
        self.messages: Dict[UUID, Message] = {}
        self.fail_delete_ids = set()
        self.updates: List[dict] = []
        self._clock = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def _tick(self) -> datetime:
        self._clock += timedelta(seconds=1)
        return self._clock

    async def add_message(
        self,
        *,
        conversation_id: UUID,
        user_id: UUID,
        role: MessageRole,
        content: str,
        model: Optional[str] = None,
        token_count: int = 0,
        metadata: Optional[dict] = None,
    ) -> Message:
        message = Message(
            id=uuid4(),
            conversation_id=conversation_id,
            user_id=user_id,
            role=role.value,
            content=content,
            model=model,
            token_count=token_count,
            msg_metadata=metadata,
        )
        message.created_at = self._tick()
        self.messages[message.id] = message
        return message

    async def get_by_id(self, id: UUID) -> Optional[Message]:
        return self.messages.get(id)

    def _ordered(self, conversation_id: UUID) -> List[Message]:
        return sorted(
            (m for m in self.messages.values() if m.conversation_id == conversation_id),
            key=lambda m: m.created_at,
        )

    async def get_conversation_messages(self, conversation_id: UUID, *, limit: int = 50) -> List[Message]:
        return self._ordered(conversation_id)[-limit:]

    async def get_by_conversation_id(
        self, conversation_id: UUID, *, skip: int = 0, limit: int = 100
    ) -> List[Message]:
        return self._ordered(conversation_id)[skip:skip + limit]

    async def get_preceding_user_message(self, conversation_id: UUID, before: datetime) -> Optional[Message]:
        candidates = [
            m
            for m in self._ordered(conversation_id)
            if m.role == MessageRole.USER.value and m.created_at < before
        ]
        return candidates[-1] if candidates else None

    async def count_by_conversation(self, conversation_id: UUID) -> int:
        return len(self._ordered(conversation_id))

    async def update_message(
        self,
        message_id: UUID,
        *,
        content: Optional[str] = None,
        token_count: Optional[int] = None,
        model: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> Optional[Message]:
        message = self.messages.get(message_id)
        if message is None:
            return None
        self.updates.append(
            {"id": message_id, "content": content, "token_count": token_count, "metadata": metadata}
        )
        if content is not None:
            message.content = content
        if token_count is not None:
            message.token_count = token_count
        if model is not None:
            message.model = model
        if metadata is not None:
            message.msg_metadata = metadata
        return message

    async def mark_streaming_complete(self, message_id: UUID, content: str, token_count: int) -> Optional[Message]:
        message = self.messages.get(message_id)
        if message is None:
            return None
        message.content = content
        message.token_count = token_count
        message.msg_metadata = {**(message.msg_metadata or {}), "streamingComplete": True}
        return message

    async def delete_message(self, message_id: UUID) -> bool:
        if message_id in self.fail_delete_ids:
            raise SQLAlchemyError("delete failed")
        return self.messages.pop(message_id, None) is not None


class FakeConversationRepository:
    """按 ConversationRepository 接口实现的内存会话仓库"""

    def __init__(self):
        self.conversations: Dict[UUID, Conversation] = {}

    def add(self, user_id: UUID, *, title: str = "New Chat", model_id: str = "gpt-4",
            system_prompt: Optional[str] = None) -> Conversation:
        conversation = Conversation(
            id=uuid4(), user_id=user_id, title=title, model_id=model_id, system_prompt=system_prompt
        )
        self.conversations[conversation.id] = conversation
        return conversation

    async def get_by_id_for_user(self, id: UUID, user_id: UUID) -> Optional[Conversation]:
        conversation = self.conversations.get(id)
        if conversation is None or conversation.user_id != user_id:
            return None
        return conversation

    async def update_title(self, conversation: Conversation, title: str) -> Conversation:
        conversation.title = title
        return conversation

    async def update_model(self, conversation: Conversation, model_id: str) -> Conversation:
        conversation.model_id = model_id
        return conversation


ScriptItem = Union[StreamingChunk, Exception]


class ScriptedProvider(BaseProvider):
    """按预设脚本产出块的提供商；脚本中的异常会在对应位置抛出"""

    name = "openai"
    display_name = "OpenAI"
    api_key_env_name = "OPENAI_API_KEY"
    models = {
        "gpt-4": AIModel(
            id="gpt-4", name="GPT-4", provider="openai", max_tokens=8192,
            max_response_tokens=2048, context_window=8192,
        ),
        "gpt-4o": AIModel(
            id="gpt-4o", name="GPT-4o", provider="openai", max_tokens=128000,
            max_response_tokens=4096, context_window=128000,
            capabilities=ModelCapabilities(multi_modal=True),
        ),
        "llama-3.1-8b-instant": AIModel(
            id="llama-3.1-8b-instant", name="Llama 3.1 8B", provider="openai",
            max_tokens=8192, context_window=131072,
        ),
    }

    def __init__(self, script: Sequence[ScriptItem] = (), api_key: Optional[str] = "test-key"):
        super().__init__(api_key=api_key)
        self.script = list(script)
        self.received: List[List[ChatMessage]] = []

    async def _stream(self, messages, model, api_key, context: StreamingContext):
        self.received.append(list(messages))
        for item in self.script:
            if isinstance(item, Exception):
                raise item
            yield item


def content_chunks(*parts: str) -> List[StreamingChunk]:
    """内容块序列，最后一块带 finished"""
    chunks = [StreamingChunk(content=p, token_count=1) for p in parts]
    chunks.append(StreamingChunk(finished=True))
    return chunks


async def run_turn(orchestrator, turn, channel: Optional[SSEChannel] = None) -> List[dict]:
    """同步运行一个轮次并收集客户端收到的事件"""
    channel = channel or SSEChannel()
    await orchestrator.run(turn, channel)
    channel.close()
    if not channel.is_connected:
        return []
    return [event async for event in channel.events()]


@pytest.fixture
def user_id() -> UUID:
    return uuid4()


@pytest.fixture
def message_repo() -> FakeMessageRepository:
    return FakeMessageRepository()


@pytest.fixture
def conversation_repo() -> FakeConversationRepository:
    return FakeConversationRepository()


@pytest.fixture
def stream_states() -> InMemoryStreamStateRepository:
    return InMemoryStreamStateRepository()


@pytest.fixture
def title_service() -> MagicMock:
    service = MagicMock()
    service.maybe_generate_title = AsyncMock(return_value=False)
    return service


def make_gateway(provider: ScriptedProvider) -> ProviderGateway:
    return ProviderGateway([provider])
