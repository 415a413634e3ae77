"""
测试会话标题生成
"""

from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest

from app.llm.core.base import StreamingChunk
from app.services.title_service import (TitleService, clean_title,
                                        fallback_title, needs_title)
from conftest import (FakeConversationRepository, ScriptedProvider,
                      content_chunks, make_gateway)


class TestTitleHelpers:
    """测试标题辅助函数"""

    def test_needs_title(self):
        """占位标题需要生成"""
        assert needs_title(None)
        assert needs_title("New Chat")
        assert needs_title("New Chat with GPT-4")
        assert needs_title("Untitled")
        assert not needs_title("Python 装饰器")

    def test_fallback_title_patterns(self):
        """按关键词给出备用标题"""
        assert fallback_title("How to fix this error") == "Getting Help"
        assert fallback_title("Please summarize this article") == "Summarization"

    def test_fallback_title_from_words(self):
        """没有匹配的关键词时使用较长的单词"""
        assert fallback_title("Quantum entanglement basics") == "Quantum Entanglement Basics"
        assert fallback_title("hi") == "New Conversation"

    def test_clean_title(self):
        """去掉引号与多余行，限制长度"""
        assert clean_title('  "Trip Planning"\nextra') == "Trip Planning"
        assert len(clean_title("a" * 100)) == 60


class TestTitleService:
    """测试标题生成服务"""

    def setup_method(self):
        """测试前准备"""
        self.provider = ScriptedProvider(content_chunks('"Weekend', ' Trip Ideas"'))
        self.service = TitleService(make_gateway(self.provider), model_id="llama-3.1-8b-instant")
        self.conversation_repo = FakeConversationRepository()
        self.conversation = self.conversation_repo.add(uuid4())

    @pytest.mark.asyncio
    async def test_generate_title(self):
        """使用快速模型生成并清理标题"""
        title = await self.service.generate_title("周末去哪里玩？", "可以去爬山。")
        assert title == "Weekend Trip Ideas"
        prompt = self.provider.received[0][1].content
        assert "周末去哪里玩？" in prompt
        assert "可以去爬山。" in prompt

    @pytest.mark.asyncio
    async def test_error_chunk_uses_fallback(self):
        """生成失败时使用备用标题"""
        self.provider.script = [StreamingChunk(error="rate limited", finished=True)]
        assert await self.service.generate_title("Can you help with my essay") == "Getting Help"

    @pytest.mark.asyncio
    async def test_unknown_title_model_uses_fallback(self):
        """标题模型不可用时使用备用标题"""
        service = TitleService(make_gateway(self.provider), model_id="missing-model")
        assert await service.generate_title("Quantum entanglement basics") == "Quantum Entanglement Basics"

    @pytest.mark.asyncio
    async def test_too_short_title_uses_fallback(self):
        """过短的标题视为无效"""
        self.provider.script = content_chunks("Hi")
        assert await self.service.generate_title("Please summarize this") == "Summarization"

    @pytest.mark.asyncio
    async def test_maybe_generate_title(self):
        """占位标题被替换"""
        generated = await self.service.maybe_generate_title(
            self.conversation, self.conversation_repo, "周末去哪里玩？", "可以去爬山。"
        )
        assert generated is True
        assert self.conversation.title == "Weekend Trip Ideas"

    @pytest.mark.asyncio
    async def test_existing_title_is_kept(self):
        """已有标题时不生成"""
        self.conversation.title = "旅行计划"
        generated = await self.service.maybe_generate_title(
            self.conversation, self.conversation_repo, "周末去哪里玩？", "可以去爬山。"
        )
        assert generated is False
        assert self.provider.received == []

    @pytest.mark.asyncio
    async def test_save_failure_is_swallowed(self):
        """保存失败不影响对话结果"""
        repo = MagicMock()
        repo.update_title = AsyncMock(side_effect=RuntimeError("db down"))
        generated = await self.service.maybe_generate_title(
            self.conversation, repo, "周末去哪里玩？", "可以去爬山。"
        )
        assert generated is False
