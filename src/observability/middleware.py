"""
FastAPI 中间件：按路由模板采集请求计数 / 延迟 / 状态码，并为每个请求开一个 span。
未捕获异常按 500 计数后继续抛出。
"""

import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from src.observability.metrics import metrics
from src.observability.tracing import tracer

_ID_SEGMENT_PARENTS = ("tables", "rows", "columns")
_SKIP_PATHS = frozenset({"/metrics", "/health", "/health/detailed"})


def _normalize_path(path: str) -> str:
    """
    资源 ID 段替换为 {id}，避免指标高基数。
    /tables/3f2a.../rows → /tables/{id}/rows
    """
    parts = [p for p in path.strip("/").split("/") if p]
    out: list[str] = []
    for i, part in enumerate(parts):
        if i > 0 and parts[i - 1] in _ID_SEGMENT_PARENTS and part not in _ID_SEGMENT_PARENTS:
            out.append("{id}")
        else:
            out.append(part)
    return "/" + "/".join(out)


class ObservabilityMiddleware(BaseHTTPMiddleware):
    """请求级指标 + trace span。"""

    async def dispatch(self, request: Request, call_next):
        if request.url.path in _SKIP_PATHS:
            return await call_next(request)

        method = request.method
        endpoint = _normalize_path(request.url.path)
        status_code = 500
        start = time.perf_counter()
        with tracer.start_as_current_span(
            f"{method} {endpoint}",
            attributes={"http.method": method, "http.route": endpoint},
        ) as span:
            try:
                response = await call_next(request)
                status_code = response.status_code
                return response
            finally:
                span.set_attribute("http.status_code", status_code)
                metrics.http_requests_total.labels(
                    method=method, endpoint=endpoint, status_code=str(status_code)
                ).inc()
                metrics.http_request_duration_seconds.labels(
                    method=method, endpoint=endpoint
                ).observe(time.perf_counter() - start)
