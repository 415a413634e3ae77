from typing import Any, AsyncGenerator, Dict, List, Optional, Tuple

import anthropic
from anthropic import AsyncAnthropic

from app.core.exceptions import AIProviderError
from app.llm.core.base import (AIModel, BaseProvider, ChatMessage,
                               ModelCapabilities, StreamingChunk,
                               StreamingContext)

CLAUDE_MODELS: Dict[str, AIModel] = {
    "claude-3-5-sonnet-20241022": AIModel(
        id="claude-3-5-sonnet-20241022",
        name="Claude 3.5 Sonnet",
        provider="claude",
        max_tokens=200000,
        max_response_tokens=8192,
        context_window=200000,
        personality="thoughtful",
        description="Anthropic 均衡型旗舰模型",
        capabilities=ModelCapabilities(function_calling=True, multi_modal=True),
    ),
    "claude-3-haiku-20240307": AIModel(
        id="claude-3-haiku-20240307",
        name="Claude 3 Haiku",
        provider="claude",
        max_tokens=200000,
        max_response_tokens=4096,
        context_window=200000,
        personality="concise",
        description="快速、轻量的 Claude 模型",
        capabilities=ModelCapabilities(multi_modal=True),
    ),
}


class AnthropicProvider(BaseProvider):
    """Anthropic 提供商，封装 messages 流式接口"""

    name = "claude"
    display_name = "Anthropic Claude"
    api_key_env_name = "ANTHROPIC_API_KEY"
    models = CLAUDE_MODELS

    def __init__(self, api_key: Optional[str] = None, key_resolver=None):
        super().__init__(api_key=api_key, key_resolver=key_resolver)
        self._clients: Dict[str, AsyncAnthropic] = {}

    def _get_client(self, api_key: str) -> AsyncAnthropic:
        client = self._clients.get(api_key)
        if client is None:
            client = AsyncAnthropic(api_key=api_key)
            self._clients[api_key] = client
        return client

    def _convert_content(self, content: Any) -> Any:
        """OpenAI 风格的内容块转换为 Anthropic 格式"""
        if isinstance(content, str):
            return content
        blocks = []
        for part in content:
            if part.get("type") == "image_url":
                blocks.append(
                    {"type": "image", "source": {"type": "url", "url": part["image_url"]["url"]}}
                )
            elif part.get("type") == "text":
                blocks.append({"type": "text", "text": part.get("text", "")})
        return blocks

    def _convert_messages(
        self, messages: List[ChatMessage], model: AIModel
    ) -> Tuple[Optional[str], List[Dict[str, Any]]]:
        """
        Anthropic 不接受 system 角色的消息，系统提示单独通过 system 参数传递；
        相邻同角色消息合并，保证 user/assistant 交替。
        """
        system_parts: List[str] = []
        converted: List[Dict[str, Any]] = []

        for msg in messages:
            if msg.role == "system":
                system_parts.append(msg.text)
                continue

            role = "assistant" if msg.role == "assistant" else "user"
            content = msg.content if model.capabilities.multi_modal else msg.text
            content = self._convert_content(content)

            if converted and converted[-1]["role"] == role:
                previous = converted[-1]["content"]
                if isinstance(previous, str) and isinstance(content, str):
                    converted[-1]["content"] = f"{previous}\n\n{content}"
                    continue
            converted.append({"role": role, "content": content})

        system = "\n\n".join(part for part in system_parts if part) or None
        return system, converted

    async def _stream(
        self,
        messages: List[ChatMessage],
        model: AIModel,
        api_key: str,
        context: StreamingContext,
    ) -> AsyncGenerator[StreamingChunk, None]:
        client = self._get_client(api_key)
        system, anthropic_messages = self._convert_messages(messages, model)
        params = self._generation_params(model, context)

        request: Dict[str, Any] = {
            "model": model.id,
            "messages": anthropic_messages,
            **params,
        }
        if system:
            request["system"] = system

        async with client.messages.stream(**request) as stream:
            async for text in stream.text_stream:
                if text:
                    yield StreamingChunk(content=text, token_count=self.estimate_tokens(text))

        yield StreamingChunk(finished=True)

    def handle_error(self, error: Exception) -> str:
        if isinstance(error, anthropic.APIStatusError):
            return self.status_error_message(self.display_name, error.status_code, error.message)
        if isinstance(error, anthropic.APIConnectionError):
            return f"Could not connect to {self.display_name}. Please try again later."
        if isinstance(error, AIProviderError):
            return error.message
        return super().handle_error(error)
