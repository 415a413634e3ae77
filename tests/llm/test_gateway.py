"""
测试提供商网关
"""

import pytest

from app.core.exceptions import (AIProviderError, ModelNotFoundError,
                                 ProviderNotConfiguredError)
from app.llm.core.base import AIModel, ChatMessage, StreamingChunk
from app.llm.gateway import ProviderGateway
from conftest import ScriptedProvider, content_chunks


class UnconfiguredProvider(ScriptedProvider):
    name = "claude"
    display_name = "Anthropic Claude"
    models = {
        "claude-test": AIModel(
            id="claude-test", name="Claude Test", provider="claude",
            max_tokens=1000, context_window=1000,
        )
    }


async def collect(stream):
    return [chunk async for chunk in stream]


class TestProviderGateway:
    """测试提供商网关"""

    def setup_method(self):
        """测试前准备"""
        self.provider = ScriptedProvider(content_chunks("Hello", " world"))
        self.unconfigured = UnconfiguredProvider(api_key=None)
        self.gateway = ProviderGateway([self.provider, self.unconfigured])
        self.messages = [ChatMessage(role="user", content="你好")]

    def test_unknown_model_raises_before_streaming(self):
        """未知模型在返回迭代器之前抛出异常"""
        with pytest.raises(ModelNotFoundError) as exc_info:
            self.gateway.create_streaming_completion(self.messages, "no-such-model")
        assert "no-such-model" in exc_info.value.message

    def test_unconfigured_provider_raises(self):
        """提供商未配置时抛出异常"""
        with pytest.raises(ProviderNotConfiguredError):
            self.gateway.create_streaming_completion(self.messages, "claude-test")

    def test_model_lookup(self):
        """模型描述与已配置提供商的解析"""
        assert self.gateway.get_model_by_id("claude-test").provider == "claude"
        assert self.gateway.get_provider_for_model("claude-test") is None
        assert self.gateway.get_provider_for_model("gpt-4") is self.provider
        assert self.gateway.get_model_by_id("missing") is None

    def test_available_models_only_from_configured_providers(self):
        """只列出已配置提供商的模型"""
        ids = {m.id for m in self.gateway.get_available_models()}
        assert "gpt-4" in ids
        assert "claude-test" not in ids

        status = self.gateway.get_provider_status()
        assert status["openai"]["configured"] is True
        assert status["claude"]["configured"] is False

    @pytest.mark.asyncio
    async def test_streams_chunks(self):
        """正常流式输出"""
        chunks = await collect(self.gateway.create_streaming_completion(self.messages, "gpt-4"))
        assert "".join(c.content for c in chunks) == "Hello world"
        assert chunks[-1].finished
        assert self.provider.received[0][0].content == "你好"

    @pytest.mark.asyncio
    async def test_exception_becomes_error_chunk(self):
        """上游异常转换为终止的错误块"""
        self.provider.script = [
            StreamingChunk(content="partial", token_count=1),
            AIProviderError("OpenAI rate limit exceeded", "openai", 429),
        ]
        chunks = await collect(self.gateway.create_streaming_completion(self.messages, "gpt-4"))

        assert chunks[0].content == "partial"
        assert chunks[-1].finished
        assert chunks[-1].error == "OpenAI rate limit exceeded"

    @pytest.mark.asyncio
    async def test_unexpected_exception_message(self):
        """未知异常使用通用错误信息"""
        self.provider.script = [RuntimeError("socket closed")]
        chunks = await collect(self.gateway.create_streaming_completion(self.messages, "gpt-4"))
        assert chunks == [
            StreamingChunk(finished=True, error="An unexpected error occurred with OpenAI")
        ]

    @pytest.mark.asyncio
    async def test_error_chunk_ends_stream(self):
        """错误块之后不再产出"""
        self.provider.script = [
            StreamingChunk(error="upstream failed", finished=True),
            StreamingChunk(content="ignored"),
        ]
        chunks = await collect(self.gateway.create_streaming_completion(self.messages, "gpt-4"))
        assert [c.error for c in chunks] == ["upstream failed"]

    @pytest.mark.asyncio
    async def test_token_limit_exceeded(self):
        """上下文超出模型上限时返回错误块"""
        long_messages = [ChatMessage(role="user", content="x" * 40000)]
        chunks = await collect(self.gateway.create_streaming_completion(long_messages, "gpt-4"))
        assert len(chunks) == 1
        assert "exceeds maximum" in chunks[0].error
        assert self.provider.received == []
