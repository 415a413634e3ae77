from typing import Any, AsyncGenerator, Dict, List, Optional

import openai
from openai import AsyncOpenAI

from app.core.config import settings
from app.core.exceptions import AIProviderError
from app.llm.core.base import (AIModel, BaseProvider, ChatMessage,
                               ModelCapabilities, StreamingChunk,
                               StreamingContext)

OPENAI_MODELS: Dict[str, AIModel] = {
    "gpt-4o": AIModel(
        id="gpt-4o",
        name="GPT-4o",
        provider="openai",
        max_tokens=128000,
        max_response_tokens=4096,
        context_window=128000,
        personality="versatile",
        description="OpenAI 旗舰多模态模型",
        capabilities=ModelCapabilities(function_calling=True, multi_modal=True),
    ),
    "gpt-4o-mini": AIModel(
        id="gpt-4o-mini",
        name="GPT-4o mini",
        provider="openai",
        max_tokens=128000,
        max_response_tokens=4096,
        context_window=128000,
        personality="efficient",
        description="低延迟的小型多模态模型",
        capabilities=ModelCapabilities(function_calling=True, multi_modal=True),
    ),
    "gpt-4": AIModel(
        id="gpt-4",
        name="GPT-4",
        provider="openai",
        max_tokens=8192,
        max_response_tokens=2048,
        context_window=8192,
        personality="analytical",
        description="推理能力强的通用模型",
        capabilities=ModelCapabilities(function_calling=True),
    ),
    "gpt-4-turbo-preview": AIModel(
        id="gpt-4-turbo-preview",
        name="GPT-4 Turbo",
        provider="openai",
        max_tokens=128000,
        max_response_tokens=4096,
        context_window=128000,
        personality="analytical",
        description="长上下文的 GPT-4",
        capabilities=ModelCapabilities(function_calling=True),
    ),
    "gpt-3.5-turbo": AIModel(
        id="gpt-3.5-turbo",
        name="GPT-3.5 Turbo",
        provider="openai",
        max_tokens=16385,
        max_response_tokens=4096,
        context_window=16385,
        personality="friendly",
        description="快速、经济的对话模型",
        capabilities=ModelCapabilities(function_calling=True),
    ),
}

DEEPSEEK_MODELS: Dict[str, AIModel] = {
    "deepseek-chat": AIModel(
        id="deepseek-chat",
        name="DeepSeek Chat",
        provider="deepseek",
        max_tokens=64000,
        max_response_tokens=4096,
        context_window=64000,
        personality="analytical",
        description="DeepSeek 通用对话模型",
    ),
    "deepseek-reasoner": AIModel(
        id="deepseek-reasoner",
        name="DeepSeek Reasoner",
        provider="deepseek",
        max_tokens=64000,
        max_response_tokens=8192,
        context_window=64000,
        personality="analytical",
        description="DeepSeek 推理模型",
    ),
}


class OpenAIProvider(BaseProvider):
    """OpenAI 提供商，封装 chat.completions 流式接口"""

    name = "openai"
    display_name = "OpenAI"
    api_key_env_name = "OPENAI_API_KEY"
    models = OPENAI_MODELS
    base_url: Optional[str] = None

    def __init__(self, api_key: Optional[str] = None, key_resolver=None):
        super().__init__(api_key=api_key, key_resolver=key_resolver)
        self._clients: Dict[str, AsyncOpenAI] = {}

    def _get_client(self, api_key: str) -> AsyncOpenAI:
        # 按密钥缓存客户端，BYOK 用户各自使用独立连接池
        client = self._clients.get(api_key)
        if client is None:
            client = AsyncOpenAI(api_key=api_key, base_url=self.base_url)
            self._clients[api_key] = client
        return client

    def _format_messages(self, messages: List[ChatMessage], model: AIModel) -> List[Dict[str, Any]]:
        formatted = []
        for msg in messages:
            content = msg.content
            if not isinstance(content, str) and not model.capabilities.multi_modal:
                content = msg.text
            formatted.append({"role": msg.role, "content": content})
        return formatted

    async def _stream(
        self,
        messages: List[ChatMessage],
        model: AIModel,
        api_key: str,
        context: StreamingContext,
    ) -> AsyncGenerator[StreamingChunk, None]:
        client = self._get_client(api_key)
        params = self._generation_params(model, context)
        stream = await client.chat.completions.create(
            model=model.id,
            messages=self._format_messages(messages, model),
            stream=True,
            **params,
        )

        async for chunk in stream:
            if not chunk.choices:
                continue
            choice = chunk.choices[0]
            content = choice.delta.content or ""
            finished = choice.finish_reason is not None
            if content or finished:
                yield StreamingChunk(
                    content=content,
                    finished=finished,
                    token_count=self.estimate_tokens(content),
                )
            if finished:
                return

    def handle_error(self, error: Exception) -> str:
        if isinstance(error, openai.APIStatusError):
            return self.status_error_message(self.display_name, error.status_code, error.message)
        if isinstance(error, openai.APIConnectionError):
            return f"Could not connect to {self.display_name}. Please try again later."
        if isinstance(error, AIProviderError):
            return error.message
        return super().handle_error(error)


class DeepSeekProvider(OpenAIProvider):
    """DeepSeek 提供商，使用 OpenAI 兼容接口"""

    name = "deepseek"
    display_name = "DeepSeek"
    api_key_env_name = "DEEPSEEK_API_KEY"
    models = DEEPSEEK_MODELS
    base_url = settings.DEEPSEEK_BASE_URL
