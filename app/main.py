"""
Lumen — FastAPI application

Startup checks the database and connects Redis when configured.  Shutdown
lets in-flight generation runs finish (bounded by ``SHUTDOWN_DRAIN_SECONDS``)
before closing the geocoder client, Redis and the connection pool.

Every request gets an ``X-Request-ID`` that is bound into the structlog
context, so logs from the handler and the services it calls can be joined.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from app.config import get_settings
from app.database import async_session_factory, engine
from app.redis_client import close_redis, connect_redis, get_redis

structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(0),
    context_class=dict,
    logger_factory=structlog.PrintLoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger("lumen")

REQUEST_ID_HEADER = "X-Request-ID"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    from app.api.matching import current_generation_queue
    from app.api.users import get_geocoding_service

    settings = get_settings()
    logger.info("startup_begin", environment=settings.ENVIRONMENT)

    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))
    await connect_redis()

    logger.info("startup_complete")
    yield
    logger.info("shutdown_begin")

    queue = current_generation_queue()
    if queue is not None:
        await queue.drain(timeout=settings.SHUTDOWN_DRAIN_SECONDS)

    await get_geocoding_service().aclose()
    await close_redis()
    await engine.dispose()

    logger.info("shutdown_complete")


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Bind a request id, enforce the request timeout, log the outcome."""

    def __init__(self, app, timeout_seconds: float) -> None:
        super().__init__(app)
        self.timeout_seconds = timeout_seconds

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )
        start = time.perf_counter()

        try:
            response = await asyncio.wait_for(
                call_next(request), timeout=self.timeout_seconds
            )
        except asyncio.TimeoutError:
            logger.warning("request_timeout", timeout_seconds=self.timeout_seconds)
            response = JSONResponse(
                status_code=504, content={"detail": "Request timed out"}
            )
        except Exception:
            logger.exception(
                "request_error",
                duration_ms=round((time.perf_counter() - start) * 1000, 2),
            )
            raise

        response.headers[REQUEST_ID_HEADER] = request_id
        logger.info(
            "request_handled",
            status=response.status_code,
            duration_ms=round((time.perf_counter() - start) * 1000, 2),
        )
        return response


settings = get_settings()

app = FastAPI(
    title="Lumen",
    description="Match recommendation backend",
    version="1.0.0",
    lifespan=lifespan,
    docs_url=None if settings.is_production else "/docs",
    redoc_url=None if settings.is_production else "/redoc",
)

app.add_middleware(
    RequestContextMiddleware, timeout_seconds=settings.REQUEST_TIMEOUT_SECONDS
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health", tags=["health"])
async def health_liveness() -> dict:
    return {"status": "healthy"}


async def _check_database() -> str:
    try:
        async with async_session_factory() as session:
            await session.execute(text("SELECT 1"))
    except Exception as exc:
        logger.error("health_database_failed", error=str(exc))
        return f"error: {exc}"
    return "connected"


async def _check_redis() -> str:
    redis = get_redis()
    if redis is None:
        return "not_configured"
    try:
        await redis.ping()
    except Exception as exc:
        logger.error("health_redis_failed", error=str(exc))
        return f"error: {exc}"
    return "connected"


@app.get("/health/deep", tags=["health"])
async def health_deep() -> dict:
    """Readiness: database must answer; Redis only if configured."""
    checks = {"database": await _check_database(), "redis": await _check_redis()}
    degraded = any(value.startswith("error") for value in checks.values())
    return {"status": "degraded" if degraded else "healthy", **checks}


from app.api.router import router as api_router  # noqa: E402

app.include_router(api_router, prefix="/api/v1")
