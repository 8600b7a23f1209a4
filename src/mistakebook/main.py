from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.cors import CORSMiddleware
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from .config import settings
from .logging import configure_logging, logger
from .middleware import AccessLogMiddleware, RequestIDMiddleware
from .routers import health
from .routers import mistakes as mistakes_router
from .routers import review as review_router
from .srs import InvalidStateError
from .store import RecordNotFoundError, StaleRecordError


async def _handle_not_found(request: Request, exc: RecordNotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


async def _handle_stale(request: Request, exc: StaleRecordError) -> JSONResponse:
    logger.warning(
        "stale_review_rejected",
        mistake_id=exc.item_id,
        expected_version=exc.expected,
        actual_version=exc.actual,
    )
    return JSONResponse(
        status_code=409,
        content={
            "detail": str(exc),
            "expectedVersion": exc.expected,
            "actualVersion": exc.actual,
        },
    )


async def _handle_invalid_state(request: Request, exc: InvalidStateError) -> JSONResponse:
    # 保存データの破損は 5xx
    logger.error(
        "scheduler_invalid_state",
        mistake_id=exc.item_id,
        reason=exc.reason,
        path=request.url.path,
    )
    return JSONResponse(status_code=500, content={"detail": "invalid_record_state"})


def create_app() -> FastAPI:
    """Create and configure the FastAPI application instance."""
    configure_logging()
    logger.info(
        "app_init",
        environment=settings.environment,
        store_backend=settings.mistakebook_store,
        review_session_cap=settings.review_session_cap,
    )
    app = FastAPI(title="Mistakebook API", version="0.1.0")

    configured_origins = list(settings.allowed_cors_origins)
    allow_credentials = bool(configured_origins)
    if not configured_origins:
        configured_origins = ["*"]

    # ワイルドカード許可時は資格情報付き CORS を無効にする
    app.add_middleware(
        CORSMiddleware,
        allow_origins=configured_origins,
        allow_credentials=allow_credentials,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    # Middleware stack (inner → outer): CORS → AccessLog → RequestID → ProxyHeaders
    app.add_middleware(AccessLogMiddleware)
    app.add_middleware(RequestIDMiddleware)
    configured_proxies = [value for value in settings.trusted_proxy_ips if value] or ["127.0.0.1"]
    app.add_middleware(
        ProxyHeadersMiddleware,
        trusted_hosts=",".join(configured_proxies),
    )

    app.add_exception_handler(RecordNotFoundError, _handle_not_found)
    app.add_exception_handler(StaleRecordError, _handle_stale)
    app.add_exception_handler(InvalidStateError, _handle_invalid_state)

    app.include_router(health.router)
    app.include_router(mistakes_router.router, prefix="/api/mistakes")
    app.include_router(review_router.router, prefix="/api/review")
    return app


app = create_app()
