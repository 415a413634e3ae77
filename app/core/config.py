import secrets
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):

    PROJECT_NAME: str = "多模型流式聊天服务"
    DESCRIPTION: str = "支持断点续传与重试的多模型流式聊天API"
    VERSION: str = "0.1.0"

    API_V1_STR: str = "/api/v1"
    ENVIRONMENT: str = "dev"

    # CORS 配置
    CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:5173",  # Vite 默认端口
        "http://127.0.0.1:5173",
    ]

    # 日志配置
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = "logs/app.log"
    LOG_FILE_LEVEL: str = "DEBUG"

    # JWT设置
    SECRET_KEY: str = Field(default_factory=lambda: secrets.token_urlsafe(32))
    ALGORITHM: str = "HS256"
    # 默认过期时间为 7 天
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24 * 7

    # 数据库配置
    POSTGRES_SERVER: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = "postgres"
    POSTGRES_DB: str = "chatapp"
    DATABASE_URL: Optional[str] = None
    POOL_SIZE: int = 5
    MAX_OVERFLOW: int = 10

    @property
    def SQLALCHEMY_DATABASE_URI(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_SERVER}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"

    # Redis 配置
    REDIS_HOST: str = "localhost"
    REDIS_PORT: str = "6379"
    REDIS_PASSWORD: Optional[str] = None
    REDIS_DB: int = 0

    # LLM 提供商配置
    OPENAI_API_KEY: Optional[str] = None
    ANTHROPIC_API_KEY: Optional[str] = None
    DEEPSEEK_API_KEY: Optional[str] = None
    DEEPSEEK_BASE_URL: str = "https://api.deepseek.com/v1"
    GROQ_API_KEY: Optional[str] = None
    GOOGLE_API_KEY: Optional[str] = None

    # 生成参数默认值
    DEFAULT_TEMPERATURE: float = 0.7
    DEFAULT_MAX_TOKENS: int = 4096

    # 用户自带密钥 (BYOK)
    BYOK_ENABLED: bool = True
    API_KEY_ENCRYPTION_SECRET: Optional[str] = None
    BYOK_CACHE_TTL_SECONDS: int = 300

    # 流式状态存储: memory 或 redis
    STREAM_STATE_BACKEND: str = "memory"
    STREAM_STATE_TTL_SECONDS: int = 2 * 60 * 60
    STREAM_STATE_KEY_PREFIX: str = "stream_state:"

    # 流式检查点: 满足任一条件即写库
    CHECKPOINT_CHUNK_INTERVAL: int = 10
    CHECKPOINT_MIN_INTERVAL_SECONDS: float = 5.0

    # 上下文窗口（最近消息条数）
    CONTEXT_HISTORY_LIMIT: int = 50

    # 标题生成使用的快速模型
    TITLE_MODEL_ID: str = "llama-3.1-8b-instant"

    # 应用关闭时等待进行中流的最长时间
    SHUTDOWN_GRACE_SECONDS: float = 30.0

    # Sentry设置
    SENTRY_DSN: Optional[str] = None

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
