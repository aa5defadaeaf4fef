"""HTTP middleware implementations."""

from __future__ import annotations

import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from .context import REQUEST_ID_HEADER, bind_request_id, reset_request_id
from .instrumentation import count_queries

logger = logging.getLogger(__name__)

RESPONSE_TIME_HEADER = "X-Response-Time"
QUERY_COUNT_HEADER = "X-Query-Count"


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Attach a correlation identifier to each request/response cycle and report its timing."""

    def __init__(self, app, header_name: str = REQUEST_ID_HEADER, slow_request_ms: int = 1000):  # type: ignore[override]
        super().__init__(app)
        self._header_name = header_name
        self._slow_request_ms = slow_request_ms

    async def dispatch(self, request: Request, call_next) -> Response:  # type: ignore[override]
        request_id = request.headers.get(self._header_name) or str(uuid.uuid4())
        token = bind_request_id(request_id)
        request.state.request_id = request_id
        started = time.perf_counter()
        try:
            with count_queries() as queries:
                response = await call_next(request)
            duration_ms = round((time.perf_counter() - started) * 1000, 2)
            details = {
                "status_code": response.status_code,
                "duration_ms": duration_ms,
                "query_count": queries.count,
            }
            logger.info("%s %s completed", request.method, request.url.path, extra=details)
            if duration_ms > self._slow_request_ms:
                logger.warning("Slow request %s %s", request.method, request.url.path, extra=details)
        finally:
            reset_request_id(token)
        response.headers.setdefault(self._header_name, request_id)
        response.headers[RESPONSE_TIME_HEADER] = f"{duration_ms}ms"
        response.headers[QUERY_COUNT_HEADER] = str(queries.count)
        return response


__all__ = ["CorrelationIdMiddleware", "QUERY_COUNT_HEADER", "RESPONSE_TIME_HEADER"]
