import time
from typing import Callable

from fastapi import Request, Response
from loguru import logger
from starlette.middleware.base import BaseHTTPMiddleware


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    请求日志中间件

    记录方法、路径、状态码与耗时。流式响应的耗时为返回响应头之前的时间。
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                f"请求异常 | {request.method} {request.url.path} | "
                f"{type(e).__name__} | {time.perf_counter() - start_time:.4f}s"
            )
            raise

        process_time = time.perf_counter() - start_time
        response.headers["X-Process-Time"] = f"{process_time:.4f}"
        logger.info(
            f"请求完成 | {request.method} {request.url.path} | "
            f"{response.status_code} | {process_time:.4f}s"
        )
        return response
