from __future__ import annotations

import time
import uuid
from typing import Awaitable, Callable

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response
from structlog import contextvars as structlog_contextvars

from .logging import logger
from .metrics import registry


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Assign a request ID to each incoming request and expose it in headers.

    - Reuses an incoming `X-Request-ID` when present
    - Sets `request.state.request_id` and binds it to the structlog context
    - Adds `X-Request-ID` to the response headers
    """

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:  # type: ignore[override]
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = request_id
        structlog_contextvars.bind_contextvars(request_id=request_id)
        try:
            response = await call_next(request)
        finally:
            structlog_contextvars.unbind_contextvars("request_id")
        response.headers["X-Request-ID"] = request_id
        return response


UNMATCHED_ROUTE = "unmatched"


def _route_template(request: Request) -> str:
    """Return the matched route template (`/api/mistakes/{item_id}`), not the raw path."""

    route = request.scope.get("route")
    return getattr(route, "path", None) or UNMATCHED_ROUTE


class AccessLogMiddleware(BaseHTTPMiddleware):
    """Emit one structured `request_complete` log per call and record latency."""

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:  # type: ignore[override]
        start = time.time()
        path = request.url.path
        method = request.method
        status_code: int | None = None
        error_type: str | None = None
        is_error = False
        try:
            response = await call_next(request)
            status_code = response.status_code
            is_error = status_code >= 500
            return response
        except Exception as exc:
            is_error = True
            status_code = 500
            error_type = exc.__class__.__name__
            raise
        finally:
            latency_ms = (time.time() - start) * 1000
            route_path = _route_template(request)
            registry.record(route_path, latency_ms, is_error=is_error)
            # エラー時は logger.error で severity=ERROR として出力する
            log_method = logger.error if is_error else logger.info
            log_method(
                "request_complete",
                path=path,
                route=route_path,
                method=method,
                latency_ms=round(latency_ms, 2),
                status_code=status_code,
                is_error=is_error,
                error_type=error_type,
                request_id=getattr(request.state, "request_id", None),
                client_ip=request.client.host if request.client else "unknown",
            )
