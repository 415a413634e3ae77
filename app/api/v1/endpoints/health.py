from fastapi import APIRouter, Depends
from loguru import logger
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from redis.exceptions import RedisError

from app.api.dependencies import get_db_session
from app.core.config import settings
from app.plugins.cache.manager import get_cache_client

router = APIRouter()


class HealthResponse(BaseModel):
    """健康检查响应模型"""

    status: str
    version: str
    environment: str
    database: bool
    stream_state_backend: str
    cache: bool


@router.get("", response_model=HealthResponse)
async def health_check(db_session: AsyncSession = Depends(get_db_session)):
    """
    健康检查端点

    检查数据库连接；流状态使用 Redis 时同时检查缓存。
    """
    database = True
    try:
        await db_session.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error(f"数据库健康检查失败: {e}")
        database = False

    cache = True
    if settings.STREAM_STATE_BACKEND == "redis":
        try:
            cache = await get_cache_client().ping()
        except RedisError as e:
            logger.error(f"缓存健康检查失败: {e}")
            cache = False

    return {
        "status": "ok" if database and cache else "degraded",
        "version": settings.VERSION,
        "environment": settings.ENVIRONMENT,
        "database": database,
        "stream_state_backend": settings.STREAM_STATE_BACKEND,
        "cache": cache,
    }
