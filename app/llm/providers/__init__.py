"""
LLM 提供商实现

- openai_provider: OpenAI 与 OpenAI 兼容接口（DeepSeek）
- anthropic_provider: Anthropic Claude
- langchain_provider: 通过 LangChain 接入的 Groq 与 Gemini
"""

from .anthropic_provider import AnthropicProvider
from .langchain_provider import GeminiProvider, GroqProvider, LangChainProvider
from .openai_provider import DeepSeekProvider, OpenAIProvider

__all__ = [
    "AnthropicProvider",
    "DeepSeekProvider",
    "GeminiProvider",
    "GroqProvider",
    "LangChainProvider",
    "OpenAIProvider",
]
