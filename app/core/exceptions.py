from typing import Optional

from fastapi import HTTPException, status


class ChatAppException(Exception):
    """应用内部异常基类"""

    pass


class AIProviderError(ChatAppException):
    """模型提供商调用异常"""

    def __init__(self, message: str, provider: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.provider = provider
        self.status_code = status_code


class ModelNotFoundError(AIProviderError):
    """模型不存在"""

    def __init__(self, model_id: str, provider: str = "unknown"):
        super().__init__(f"Model '{model_id}' is not available or configured", provider)
        self.model_id = model_id


class ProviderNotConfiguredError(AIProviderError):
    """提供商未配置（缺少API密钥等）"""

    def __init__(self, model_id: str, provider: str = "unknown"):
        super().__init__(f"Provider for model '{model_id}' is not configured", provider)
        self.model_id = model_id


class TokenLimitExceededError(AIProviderError):
    """上下文超出模型的token上限"""

    def __init__(self, token_count: int, max_tokens: int, provider: str):
        super().__init__(
            f"Token count {token_count} exceeds maximum {max_tokens} for provider '{provider}'",
            provider,
        )
        self.token_count = token_count
        self.max_tokens = max_tokens


class APIKeyDecryptionError(ChatAppException):
    """用户API密钥解密失败"""

    pass


class CredentialsException(HTTPException):
    """认证失败异常"""

    def __init__(self, detail: str = "Could not validate credentials"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        )


class NotFoundException(HTTPException):
    """资源不存在异常（同时用于无权访问，避免泄露资源是否存在）"""

    def __init__(self, detail: str = "Resource not found"):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


class BadRequestException(HTTPException):
    """请求参数异常"""

    def __init__(self, detail: str = "Invalid request"):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)
