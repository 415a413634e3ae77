import math
from abc import ABC, abstractmethod
from typing import Any, AsyncGenerator, AsyncIterator, Dict, List, Optional, Union
from uuid import UUID

from loguru import logger
from pydantic import BaseModel, Field

from app.core.config import settings
from app.core.exceptions import AIProviderError, TokenLimitExceededError


class ChatMessage(BaseModel):
    """发送给提供商的单条消息，content 可以是纯文本或多模态内容块列表"""
    role: str
    content: Union[str, List[Dict[str, Any]]]

    @property
    def text(self) -> str:
        if isinstance(self.content, str):
            return self.content
        return "".join(part.get("text", "") for part in self.content if part.get("type") == "text")


class StreamingChunk(BaseModel):
    """
    流式响应块

    error 非空时为终止块，调用方不应再期待后续块。
    """
    content: str = ""
    finished: bool = False
    error: Optional[str] = None
    token_count: int = 0


class StreamingContext(BaseModel):
    """一次流式调用的上下文：用户（用于BYOK）、会话与可选的生成参数"""
    user_id: Optional[UUID] = None
    conversation_id: Optional[UUID] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None


class ModelCapabilities(BaseModel):
    streaming: bool = True
    function_calling: bool = False
    multi_modal: bool = False


class AIModel(BaseModel):
    """模型描述"""
    id: str
    name: str
    provider: str
    max_tokens: int
    max_response_tokens: Optional[int] = None
    context_window: int
    personality: str = "balanced"
    description: str = ""
    capabilities: ModelCapabilities = Field(default_factory=ModelCapabilities)


def estimate_tokens(text: str) -> int:
    """粗略估算token数：约每4个字符1个token"""
    if not text:
        return 0
    return math.ceil(len(text) / 4)


class BaseProvider(ABC):
    """
    LLM 提供商基类

    子类只需实现 _stream（把上游的块格式转换为 StreamingChunk）和 handle_error。
    密钥解析、token 上限校验以及“异常转错误块”都在 create_streaming_completion 中统一处理。
    """

    name: str = ""
    display_name: str = ""
    api_key_env_name: str = ""
    models: Dict[str, AIModel] = {}

    def __init__(self, api_key: Optional[str] = None, key_resolver=None):
        self.api_key = api_key
        # BYOKManager 或兼容对象，提供 get_api_key_with_fallback
        self.key_resolver = key_resolver

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key) or self.key_resolver is not None

    def get_model(self, model_id: str) -> Optional[AIModel]:
        return self.models.get(model_id)

    def list_models(self) -> List[AIModel]:
        return list(self.models.values())

    def estimate_tokens(self, text: str) -> int:
        return estimate_tokens(text)

    def calculate_conversation_tokens(self, messages: List[ChatMessage]) -> int:
        # 每条消息额外约4个token的格式开销
        return sum(self.estimate_tokens(m.text) + 4 for m in messages)

    def validate_token_limits(self, messages: List[ChatMessage], model: AIModel) -> None:
        reserved = model.max_response_tokens or 0
        token_count = self.calculate_conversation_tokens(messages)
        limit = model.context_window - reserved
        if token_count > limit:
            raise TokenLimitExceededError(token_count, limit, self.name)

    async def resolve_api_key(self, context: StreamingContext) -> Optional[str]:
        if self.key_resolver is not None:
            resolved = await self.key_resolver.get_api_key_with_fallback(
                self.name, self.api_key, context.user_id
            )
            return resolved.api_key if resolved else None
        return self.api_key

    async def create_streaming_completion(
        self,
        messages: List[ChatMessage],
        model_id: str,
        context: StreamingContext,
    ) -> AsyncGenerator[StreamingChunk, None]:
        model = self.get_model(model_id)
        if model is None:
            yield StreamingChunk(finished=True, error=f"Model '{model_id}' not found in provider '{self.name}'")
            return

        try:
            self.validate_token_limits(messages, model)
            api_key = await self.resolve_api_key(context)
            if not api_key:
                raise AIProviderError(f"No API key configured for {self.display_name or self.name}", self.name)

            async for chunk in self._stream(messages, model, api_key, context):
                yield chunk
                if chunk.error:
                    return
        except Exception as e:
            logger.warning(f"{self.name} 流式调用失败: {type(e).__name__}: {e}")
            yield StreamingChunk(finished=True, error=self.handle_error(e))

    @abstractmethod
    def _stream(
        self,
        messages: List[ChatMessage],
        model: AIModel,
        api_key: str,
        context: StreamingContext,
    ) -> AsyncIterator[StreamingChunk]:
        """调用上游API并产出 StreamingChunk"""

    def handle_error(self, error: Exception) -> str:
        """把上游异常转换为可展示给用户的错误信息"""
        if isinstance(error, AIProviderError):
            return error.message
        return f"An unexpected error occurred with {self.display_name or self.name}"

    @staticmethod
    def status_error_message(display_name: str, status_code: Optional[int], detail: str) -> str:
        if status_code == 401:
            return f"Invalid {display_name} API key. Please check your API key settings."
        if status_code == 429:
            return f"{display_name} rate limit exceeded. Please wait a moment and try again."
        if status_code == 503:
            return f"{display_name} service is currently overloaded. Please try again later."
        if status_code is not None and status_code >= 500:
            return f"{display_name} service temporarily unavailable. Please try again later."
        return f"{display_name} API error: {detail}"

    def _generation_params(self, model: AIModel, context: StreamingContext) -> Dict[str, Any]:
        temperature = context.temperature if context.temperature is not None else settings.DEFAULT_TEMPERATURE
        max_tokens = context.max_tokens or model.max_response_tokens or settings.DEFAULT_MAX_TOKENS
        return {"temperature": temperature, "max_tokens": max_tokens}
