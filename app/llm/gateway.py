"""
提供商网关

根据模型ID解析提供商与模型描述，对外暴露统一的流式补全接口。
"""

from typing import AsyncIterator, Dict, List, Optional

from loguru import logger

from app.core.config import settings
from app.core.exceptions import ModelNotFoundError, ProviderNotConfiguredError
from app.llm.byok import get_byok_manager
from app.llm.core.base import (AIModel, BaseProvider, ChatMessage,
                               StreamingChunk, StreamingContext)
from app.llm.providers import (AnthropicProvider, DeepSeekProvider,
                               GeminiProvider, GroqProvider, OpenAIProvider)

DEFAULT_PROVIDER_CLASSES = [
    OpenAIProvider,
    AnthropicProvider,
    GroqProvider,
    GeminiProvider,
    DeepSeekProvider,
]


class ProviderGateway:
    """提供商注册表与统一调用入口"""

    def __init__(self, providers: Optional[List[BaseProvider]] = None):
        self._providers: Dict[str, BaseProvider] = {}
        for provider in providers or []:
            self.register_provider(provider)

    def register_provider(self, provider: BaseProvider) -> None:
        self._providers[provider.name] = provider
        logger.debug(f"注册LLM提供商: {provider.name} (模型数: {len(provider.models)})")

    def register_default_providers(self) -> None:
        """按配置注册默认提供商；启用 BYOK 时未配置环境密钥的提供商也可用"""
        key_resolver = get_byok_manager() if settings.BYOK_ENABLED else None
        for provider_cls in DEFAULT_PROVIDER_CLASSES:
            api_key = getattr(settings, provider_cls.api_key_env_name, None)
            self.register_provider(provider_cls(api_key=api_key, key_resolver=key_resolver))

    @property
    def providers(self) -> List[BaseProvider]:
        return list(self._providers.values())

    def _find_provider(self, model_id: str) -> Optional[BaseProvider]:
        for provider in self._providers.values():
            if provider.get_model(model_id):
                return provider
        return None

    def get_model_by_id(self, model_id: str) -> Optional[AIModel]:
        provider = self._find_provider(model_id)
        if provider is None:
            return None
        return provider.get_model(model_id)

    def get_provider_for_model(self, model_id: str) -> Optional[BaseProvider]:
        """返回模型所属且已配置的提供商"""
        provider = self._find_provider(model_id)
        if provider is None or not provider.is_configured:
            return None
        return provider

    def get_available_models(self) -> List[AIModel]:
        models: List[AIModel] = []
        for provider in self._providers.values():
            if provider.is_configured:
                models.extend(provider.list_models())
        return models

    def get_provider_status(self) -> Dict[str, Dict]:
        return {
            name: {
                "name": provider.display_name,
                "configured": provider.is_configured,
                "model_count": len(provider.models),
            }
            for name, provider in self._providers.items()
        }

    def create_streaming_completion(
        self,
        messages: List[ChatMessage],
        model_id: str,
        context: Optional[StreamingContext] = None,
    ) -> AsyncIterator[StreamingChunk]:
        """
        创建流式补全

        模型或提供商无法解析时在返回迭代器之前直接抛出异常；
        之后的上游错误只会以 error 块的形式出现在迭代结果中。
        """
        provider = self._find_provider(model_id)
        if provider is None:
            raise ModelNotFoundError(model_id)
        if not provider.is_configured:
            raise ProviderNotConfiguredError(model_id, provider.name)

        return provider.create_streaming_completion(messages, model_id, context or StreamingContext())


_gateway: Optional[ProviderGateway] = None


def get_provider_gateway() -> ProviderGateway:
    """获取全局网关实例，首次调用时注册默认提供商"""
    global _gateway
    if _gateway is None:
        _gateway = ProviderGateway()
        _gateway.register_default_providers()
    return _gateway
