import logging
import sys

from loguru import logger

from app.core.config import settings

LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level} | {name}:{line} | {message}"

# 需要接管的标准库日志器
INTERCEPTED_LOGGERS = ["uvicorn", "uvicorn.error", "uvicorn.access", "fastapi", "sqlalchemy.engine"]


class InterceptHandler(logging.Handler):
    """
    拦截标准库日志并重定向到Loguru
    """

    def emit(self, record):
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # 回溯到真正发出日志的调用栈帧
        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )


def _init_sentry() -> None:
    import sentry_sdk
    from sentry_sdk.integrations.logging import LoggingIntegration

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENVIRONMENT,
        traces_sample_rate=0.1,
        integrations=[
            LoggingIntegration(level=logging.INFO, event_level=logging.ERROR)
        ],
    )


def setup_logging():
    """
    配置应用日志

    控制台与滚动日志文件两个输出；配置了 SENTRY_DSN 时同时上报错误。
    """
    logger.remove()

    logger.add(
        sys.stdout,
        format=LOG_FORMAT,
        level=settings.LOG_LEVEL,
        colorize=True,
    )

    logger.add(
        settings.LOG_FILE,
        rotation="10 MB",
        retention="1 month",
        format=LOG_FORMAT,
        level=settings.LOG_FILE_LEVEL,
        enqueue=True,
    )

    if settings.SENTRY_DSN:
        _init_sentry()

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)

    for name in INTERCEPTED_LOGGERS:
        std_logger = logging.getLogger(name)
        std_logger.handlers = [InterceptHandler()]
        std_logger.propagate = False

    logger.info(f"日志系统已初始化 | 环境: {settings.ENVIRONMENT}")
