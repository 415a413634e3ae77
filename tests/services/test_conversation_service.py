"""
测试会话服务
"""

from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest
from fastapi import HTTPException

from app.schemas.conversation import ConversationCreate
from app.schemas.message import MessageRole
from app.services.conversation_service import ConversationService
from conftest import (FakeConversationRepository, FakeMessageRepository,
                      ScriptedProvider, make_gateway)


class TestConversationService:
    """测试会话服务"""

    def setup_method(self):
        """测试前准备"""
        self.user_id = uuid4()
        self.service = ConversationService(MagicMock(), make_gateway(ScriptedProvider()))
        self.service.conversation_repo = FakeConversationRepository()
        self.service.conversation_repo.create = AsyncMock(side_effect=lambda obj_in: obj_in)
        self.service.message_repo = FakeMessageRepository()

    @pytest.mark.asyncio
    async def test_create(self):
        """创建会话时写入当前用户"""
        created = await self.service.create(self.user_id, ConversationCreate(model_id="gpt-4"))
        assert created["user_id"] == self.user_id
        assert created["title"] == "New Chat"

    @pytest.mark.asyncio
    async def test_create_with_unknown_model(self):
        """未知模型返回400"""
        with pytest.raises(HTTPException) as exc_info:
            await self.service.create(self.user_id, ConversationCreate(model_id="no-such-model"))
        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_foreign_conversation_not_found(self):
        """其他用户的会话与不存在的会话一样返回404"""
        conversation = self.service.conversation_repo.add(uuid4())
        with pytest.raises(HTTPException) as exc_info:
            await self.service.get_by_id(conversation.id, self.user_id)
        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_get_messages_in_order(self):
        """消息按时间正序返回"""
        conversation = self.service.conversation_repo.add(self.user_id)
        for role, content in [(MessageRole.USER, "Hi"), (MessageRole.ASSISTANT, "Hello")]:
            await self.service.message_repo.add_message(
                conversation_id=conversation.id, user_id=self.user_id, role=role, content=content
            )

        messages = await self.service.get_messages(conversation.id, self.user_id)
        assert [m.content for m in messages] == ["Hi", "Hello"]
