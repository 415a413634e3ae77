from loguru import logger

from app.core.config import settings
from app.db.session import engine
from app.llm.gateway import get_provider_gateway
from app.plugins.cache.manager import get_cache_client
from app.services.stream_orchestrator import wait_for_running_turns
from app.streaming.repository import get_stream_state_repository


async def startup_event_handler() -> None:
    """
    应用启动事件处理函数
    """
    logger.info("启动应用...")

    if settings.STREAM_STATE_BACKEND == "redis":
        await get_cache_client().connect()
    get_stream_state_repository()

    gateway = get_provider_gateway()
    configured = [name for name, s in gateway.get_provider_status().items() if s["configured"]]
    logger.info(f"已配置的LLM提供商: {configured}")

    logger.info("应用启动完成")


async def shutdown_event_handler() -> None:
    """
    应用关闭事件处理函数
    """
    logger.info("关闭应用...")

    # 先等待进行中的流式轮次写完数据库
    await wait_for_running_turns(settings.SHUTDOWN_GRACE_SECONDS)

    await engine.dispose()

    if settings.STREAM_STATE_BACKEND == "redis":
        await get_cache_client().disconnect()

    logger.info("应用已关闭")
