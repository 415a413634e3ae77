from typing import AsyncGenerator, Dict, List, Optional

from langchain.chat_models import init_chat_model
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from app.core.exceptions import AIProviderError
from app.llm.core.base import (AIModel, BaseProvider, ChatMessage,
                               ModelCapabilities, StreamingChunk,
                               StreamingContext)

GROQ_MODELS: Dict[str, AIModel] = {
    "llama-3.3-70b-versatile": AIModel(
        id="llama-3.3-70b-versatile",
        name="Llama 3.3 70B",
        provider="groq",
        max_tokens=32768,
        max_response_tokens=4096,
        context_window=128000,
        personality="versatile",
        description="Groq 托管的 Llama 3.3 70B",
    ),
    "llama-3.1-8b-instant": AIModel(
        id="llama-3.1-8b-instant",
        name="Llama 3.1 8B Instant",
        provider="groq",
        max_tokens=8192,
        max_response_tokens=2048,
        context_window=128000,
        personality="efficient",
        description="超低延迟的小模型，适合标题生成等轻量任务",
    ),
    "gemma2-9b-it": AIModel(
        id="gemma2-9b-it",
        name="Gemma 2 9B",
        provider="groq",
        max_tokens=8192,
        max_response_tokens=2048,
        context_window=8192,
        personality="friendly",
        description="Google Gemma 2 指令微调版",
    ),
}

GEMINI_MODELS: Dict[str, AIModel] = {
    "gemini-1.5-pro": AIModel(
        id="gemini-1.5-pro",
        name="Gemini 1.5 Pro",
        provider="gemini",
        max_tokens=2097152,
        max_response_tokens=8192,
        context_window=2097152,
        personality="creative",
        description="超长上下文的多模态模型",
        capabilities=ModelCapabilities(function_calling=True, multi_modal=True),
    ),
    "gemini-1.5-flash": AIModel(
        id="gemini-1.5-flash",
        name="Gemini 1.5 Flash",
        provider="gemini",
        max_tokens=1048576,
        max_response_tokens=8192,
        context_window=1048576,
        personality="efficient",
        description="快速的多模态模型",
        capabilities=ModelCapabilities(multi_modal=True),
    ),
}


def convert_messages_to_langchain(messages: List[ChatMessage]) -> List[BaseMessage]:
    """将通用消息转换为 LangChain 消息"""
    langchain_messages: List[BaseMessage] = []
    for msg in messages:
        role = msg.role.lower()
        if role == "system":
            langchain_messages.append(SystemMessage(content=msg.content))
        elif role in ("assistant", "ai"):
            langchain_messages.append(AIMessage(content=msg.content))
        else:
            langchain_messages.append(HumanMessage(content=msg.content))
    return langchain_messages


class LangChainProvider(BaseProvider):
    """
    基于 LangChain init_chat_model 的提供商

    子类只需声明 langchain_provider（init_chat_model 的 model_provider 参数）与模型表。
    """

    langchain_provider: str = ""

    def create_chat_model(self, model: AIModel, api_key: str, context: StreamingContext) -> BaseChatModel:
        params = self._generation_params(model, context)
        return init_chat_model(
            model=model.id,
            model_provider=self.langchain_provider,
            api_key=api_key,
            **params,
        )

    async def _stream(
        self,
        messages: List[ChatMessage],
        model: AIModel,
        api_key: str,
        context: StreamingContext,
    ) -> AsyncGenerator[StreamingChunk, None]:
        if not model.capabilities.multi_modal:
            messages = [ChatMessage(role=m.role, content=m.text) for m in messages]

        chat_model = self.create_chat_model(model, api_key, context)
        async for chunk in chat_model.astream(convert_messages_to_langchain(messages)):
            content = chunk.content if isinstance(chunk.content, str) else "".join(
                part.get("text", "") for part in chunk.content if isinstance(part, dict)
            )
            if content:
                yield StreamingChunk(content=content, token_count=self.estimate_tokens(content))

        yield StreamingChunk(finished=True)

    def handle_error(self, error: Exception) -> str:
        if isinstance(error, AIProviderError):
            return error.message
        status_code: Optional[int] = getattr(error, "status_code", None)
        if status_code is not None:
            return self.status_error_message(self.display_name, status_code, str(error))
        return super().handle_error(error)


class GroqProvider(LangChainProvider):
    name = "groq"
    display_name = "Groq"
    api_key_env_name = "GROQ_API_KEY"
    langchain_provider = "groq"
    models = GROQ_MODELS


class GeminiProvider(LangChainProvider):
    name = "gemini"
    display_name = "Google Gemini"
    api_key_env_name = "GOOGLE_API_KEY"
    langchain_provider = "google_genai"
    models = GEMINI_MODELS
