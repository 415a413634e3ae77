from typing import Callable

import prometheus_client
from fastapi import FastAPI, Request, Response
from prometheus_client import Counter, Gauge, Histogram
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.routing import Match

# HTTP 指标
REQUEST_COUNT = Counter(
    "app_request_count", "应用请求总数", ["method", "endpoint", "status_code"]
)

REQUEST_LATENCY = Histogram(
    "app_request_latency_seconds", "请求处理时间（秒）", ["method", "endpoint"]
)

ACTIVE_REQUESTS = Gauge("app_active_requests", "当前活跃请求数", ["method", "endpoint"])

ERROR_COUNT = Counter(
    "app_error_count", "应用错误总数", ["method", "endpoint", "error_type"]
)

# 流式轮次指标
STREAM_TURNS = Counter(
    "chat_stream_turns_total", "流式轮次总数", ["kind", "outcome"]
)

STREAM_CHUNKS = Counter(
    "chat_stream_chunks_total", "转发给客户端的内容块数", ["provider"]
)

ACTIVE_STREAMS = Gauge("chat_active_streams", "进行中的流式轮次", ["kind"])

CHECKPOINT_FAILURES = Counter(
    "chat_checkpoint_failures_total", "流式过程中检查点写入失败次数"
)

CLIENT_DISCONNECTS = Counter(
    "chat_client_disconnects_total", "流式过程中客户端断开次数", ["kind"]
)


class PrometheusMiddleware(BaseHTTPMiddleware):
    """
    Prometheus监控中间件

    按路由模板统计请求数、耗时和错误。SSE 响应的耗时只覆盖到响应头返回为止。
    """

    def get_path_template(self, request: Request) -> str:
        for route in request.app.routes:
            match, _ = route.matches(request.scope)
            # 新版本中挂载的子路由对象没有 path 属性
            if match == Match.FULL and hasattr(route, "path"):
                return route.path
        return request.url.path

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        method = request.method
        endpoint = self.get_path_template(request)

        ACTIVE_REQUESTS.labels(method=method, endpoint=endpoint).inc()
        response = None
        try:
            with REQUEST_LATENCY.labels(method=method, endpoint=endpoint).time():
                response = await call_next(request)
        except Exception as e:
            ERROR_COUNT.labels(
                method=method, endpoint=endpoint, error_type=type(e).__name__
            ).inc()
            raise
        finally:
            ACTIVE_REQUESTS.labels(method=method, endpoint=endpoint).dec()
            if response is not None:
                REQUEST_COUNT.labels(
                    method=method, endpoint=endpoint, status_code=response.status_code
                ).inc()

        return response


def setup_metrics(app: FastAPI) -> None:
    """
    配置Prometheus监控
    """
    app.add_middleware(PrometheusMiddleware)

    @app.get("/metrics", include_in_schema=False)
    async def metrics():
        return Response(
            prometheus_client.generate_latest(),
            media_type=prometheus_client.CONTENT_TYPE_LATEST,
        )
