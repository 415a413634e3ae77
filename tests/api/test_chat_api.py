"""
测试聊天与模型接口
"""

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.exc import SQLAlchemyError

from app.api.dependencies import (get_chat_send_orchestrator,
                                  get_current_active_user, get_db_session,
                                  get_gateway, get_retry_orchestrator)
from app.core.config import settings
from app.main import app
from app.schemas.message import MessageRole
from app.services.chat_send_orchestrator import ChatSendOrchestrator
from app.services.retry_orchestrator import RetryOrchestrator
from conftest import ScriptedProvider, content_chunks, make_gateway

API = settings.API_V1_STR


def parse_sse(body: str):
    """解析 data: 行"""
    return [
        json.loads(block[len("data: "):])
        for block in body.split("\n\n")
        if block.startswith("data: ")
    ]


async def fake_db_session():
    yield MagicMock()


@pytest_asyncio.fixture
async def client():
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def current_user(user_id):
    return SimpleNamespace(id=user_id, is_active=True)


@pytest.fixture
def gateway():
    return make_gateway(ScriptedProvider(content_chunks("Hello", " there")))


@pytest.fixture
def overrides(current_user, gateway, message_repo, conversation_repo, stream_states, title_service):
    """使用内存仓库替换数据库相关依赖"""

    def orchestrator_factory(cls):
        return lambda: cls(
            message_repo, conversation_repo, gateway, stream_states, title_service=title_service
        )

    app.dependency_overrides[get_db_session] = fake_db_session
    app.dependency_overrides[get_current_active_user] = lambda: current_user
    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[get_chat_send_orchestrator] = orchestrator_factory(ChatSendOrchestrator)
    app.dependency_overrides[get_retry_orchestrator] = orchestrator_factory(RetryOrchestrator)
    return app.dependency_overrides


class TestChatAPI:
    """测试聊天接口"""

    @pytest.mark.asyncio
    async def test_send_requires_token(self, client):
        """未携带令牌返回401"""
        app.dependency_overrides[get_db_session] = fake_db_session
        response = await client.post(
            f"{API}/chat/send", json={"conversationId": str(uuid4()), "content": "Hi", "model": "gpt-4"}
        )
        assert response.status_code == 401
        assert response.headers["www-authenticate"] == "Bearer"

    @pytest.mark.asyncio
    async def test_invalid_body(self, client, overrides):
        """请求体无效返回400"""
        response = await client.post(f"{API}/chat/send", json={"content": "Hi"})

        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid request data"

    @pytest.mark.asyncio
    async def test_send_streams_events(self, client, overrides, conversation_repo, message_repo, user_id):
        """SSE 响应包含内容事件与完成事件"""
        conversation = conversation_repo.add(user_id)

        response = await client.post(
            f"{API}/chat/send",
            json={"conversationId": str(conversation.id), "content": "Hi", "model": "gpt-4"},
        )

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.headers["cache-control"] == "no-cache"

        events = parse_sse(response.text)
        assert [e["type"] for e in events] == ["content", "content", "completed"]
        assert "".join(e["content"] for e in events[:-1]) == "Hello there"

        assistant_id = events[-1]["messageId"]
        stored = [m for m in message_repo.messages.values() if str(m.id) == assistant_id]
        assert stored[0].content == "Hello there"

    @pytest.mark.asyncio
    async def test_send_to_foreign_conversation(self, client, overrides, conversation_repo):
        """其他用户的会话返回404"""
        conversation = conversation_repo.add(uuid4())

        response = await client.post(
            f"{API}/chat/send",
            json={"conversationId": str(conversation.id), "content": "Hi", "model": "gpt-4"},
        )

        assert response.status_code == 404
        assert response.json() == {"detail": "Conversation not found"}

    @pytest.mark.asyncio
    async def test_send_unknown_model(self, client, overrides, conversation_repo, user_id):
        """未知模型返回400"""
        conversation = conversation_repo.add(user_id)

        response = await client.post(
            f"{API}/chat/send",
            json={"conversationId": str(conversation.id), "content": "Hi", "model": "no-such-model"},
        )

        assert response.status_code == 400
        assert response.json()["detail"] == "Model 'no-such-model' is not available or configured"

    @pytest.mark.asyncio
    async def test_retry_user_message(self, client, overrides, conversation_repo, message_repo, user_id):
        """重试用户消息返回404"""
        conversation = conversation_repo.add(user_id)
        question = await message_repo.add_message(
            conversation_id=conversation.id, user_id=user_id, role=MessageRole.USER, content="Hi"
        )

        response = await client.post(
            f"{API}/chat/retry",
            json={"conversationId": str(conversation.id), "messageId": str(question.id), "model": "gpt-4"},
        )

        assert response.status_code == 404
        assert response.json()["detail"] == "Assistant message to retry not found"


class TestModelsAPI:
    """测试模型接口"""

    @pytest.mark.asyncio
    async def test_list_models(self, client, overrides):
        """列出已配置提供商的模型"""
        response = await client.get(f"{API}/models")

        assert response.status_code == 200
        assert "gpt-4" in {m["id"] for m in response.json()}

    @pytest.mark.asyncio
    async def test_unknown_model(self, client, overrides):
        """未知模型返回404"""
        response = await client.get(f"{API}/models/no-such-model")
        assert response.status_code == 404


class TestHealthAPI:
    """测试健康检查接口"""

    @pytest.mark.asyncio
    async def test_healthy(self, client):
        """数据库可用时状态为ok"""
        session = MagicMock()
        session.execute = AsyncMock()

        async def db_session():
            yield session

        app.dependency_overrides[get_db_session] = db_session
        response = await client.get(f"{API}/health")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"
        assert response.json()["database"] is True

    @pytest.mark.asyncio
    async def test_database_down(self, client):
        """数据库不可用时状态为degraded"""
        session = MagicMock()
        session.execute = AsyncMock(side_effect=SQLAlchemyError("connection refused"))

        async def db_session():
            yield session

        app.dependency_overrides[get_db_session] = db_session
        response = await client.get(f"{API}/health")

        assert response.json()["status"] == "degraded"
        assert response.json()["database"] is False
