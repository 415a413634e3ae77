"""
测试Prometheus监控中间件
"""

from types import SimpleNamespace
from unittest.mock import MagicMock

from starlette.routing import Match

from app.monitoring.metrics import PrometheusMiddleware


class IncludedRouterStub:
    """完整匹配但没有 path 属性的路由，对应新版本挂载的子路由"""

    def matches(self, scope):
        return Match.FULL, {}


class TemplateRoute:
    def __init__(self, path: str, match: Match):
        self.path = path
        self._match = match

    def matches(self, scope):
        return self._match, {}


def make_request(routes, path="/api/v1/chat/send"):
    return SimpleNamespace(app=SimpleNamespace(routes=routes), scope={}, url=SimpleNamespace(path=path))


class TestPrometheusMiddleware:
    """测试路由模板解析"""

    def setup_method(self):
        """测试前准备"""
        self.middleware = PrometheusMiddleware(MagicMock())

    def test_route_template(self):
        """完整匹配的路由返回其模板"""
        request = make_request([
            TemplateRoute("/api/v1/models", Match.NONE),
            TemplateRoute("/api/v1/models/{model_id}", Match.FULL),
        ])
        assert self.middleware.get_path_template(request) == "/api/v1/models/{model_id}"

    def test_route_without_path(self):
        """匹配到没有 path 属性的路由时不报错，退回请求路径"""
        request = make_request([IncludedRouterStub()])
        assert self.middleware.get_path_template(request) == "/api/v1/chat/send"

    def test_skips_pathless_route_before_template(self):
        """跳过没有 path 的路由，继续查找后面的模板"""
        request = make_request([IncludedRouterStub(), TemplateRoute("/metrics", Match.FULL)])
        assert self.middleware.get_path_template(request) == "/metrics"
