import re as _re
import time as _time
import uuid as _uuid
from contextlib import asynccontextmanager

import sentry_sdk
import structlog
from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text
from starlette.exceptions import HTTPException as StarletteHTTPException

from mechdispatch.auth.routes import router as auth_router
from mechdispatch.bookings.routes import router as bookings_router
from mechdispatch.config import settings
from mechdispatch.database import async_session
from mechdispatch.errors import DispatchError
from mechdispatch.mechanics.routes import router as mechanics_router
from mechdispatch.notifications.routes import router as notifications_router
from mechdispatch.pricing.routes import router as pricing_router
from mechdispatch.schemas.common import ApiResponse
from mechdispatch.utils.rate_limit import limiter

# Configure structlog: JSON in production, console in development
processors = [
    structlog.contextvars.merge_contextvars,
    structlog.processors.add_log_level,
    structlog.processors.TimeStamper(fmt="iso"),
]
if settings.is_production:
    processors.append(structlog.processors.JSONRenderer())
else:
    processors.append(structlog.dev.ConsoleRenderer())

structlog.configure(
    processors=processors,
    wrapper_class=structlog.make_filtering_bound_logger(0),
)

logger = structlog.get_logger()

if settings.SENTRY_DSN:
    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        traces_sample_rate=0.1,
        environment=settings.APP_ENV,
        send_default_pii=False,
    )


async def _check_alembic_migration_version() -> None:
    """Warn when the database is behind the alembic head. Never fails startup."""
    try:
        from alembic.config import Config as AlembicConfig
        from alembic.script import ScriptDirectory

        head_rev = ScriptDirectory.from_config(AlembicConfig("alembic.ini")).get_current_head()

        async with async_session() as session:
            conn = await session.connection()

            def _get_current_rev(connection):
                if not connection.dialect.has_table(connection, "alembic_version"):
                    return None
                row = connection.execute(text("SELECT version_num FROM alembic_version")).fetchone()
                return row[0] if row else None

            current_rev = await conn.run_sync(_get_current_rev)

        if current_rev != head_rev:
            logger.warning("alembic_version_mismatch", current=current_rev, head=head_rev)
        else:
            logger.info("alembic_version_ok", version=current_rev)
    except Exception as exc:
        logger.warning("alembic_version_check_failed", error=str(exc))


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("mechdispatch_startup", env=settings.APP_ENV)
    await _check_alembic_migration_version()
    yield
    logger.info("mechdispatch_shutdown")


app = FastAPI(
    title="Mechanic Dispatch API",
    description="Matches customers with nearby mechanics and tracks service bookings",
    version="0.1.0",
    lifespan=lifespan,
    docs_url=None if settings.is_production else "/docs",
    redoc_url=None if settings.is_production else "/redoc",
    openapi_url=None if settings.is_production else "/openapi.json",
)

app.state.limiter = limiter


def _envelope(status_code: int, message: str, data=None, headers: dict | None = None) -> JSONResponse:
    body = ApiResponse(success=False, message=message, data=data)
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body), headers=headers)


@app.exception_handler(DispatchError)
async def dispatch_error_handler(request: Request, exc: DispatchError):
    if exc.status_code >= 500:
        logger.error("dispatch_error", kind=exc.kind, path=request.url.path, error=exc.message)
    else:
        logger.info("request_refused", kind=exc.kind, path=request.url.path, error=exc.message)
    return _envelope(exc.status_code, exc.message)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return _envelope(exc.status_code, str(exc.detail), headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return _envelope(422, "Invalid request", data=jsonable_encoder(exc.errors()))


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    response = _envelope(429, f"Rate limit exceeded: {exc.detail}")
    return request.app.state.limiter._inject_headers(response, request.state.view_rate_limit)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Unhandled errors become a 500 envelope; details are only shown in development."""
    logger.exception("unhandled_exception", path=request.url.path)
    message = str(exc) if settings.APP_ENV == "development" else "Internal server error"
    return _envelope(500, message)


# Middleware is LIFO: the last middleware added runs first.
if settings.is_production:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["Authorization", "Content-Type"],
    )
    if not settings.cors_origins_list:
        logger.warning("cors_origins_empty_in_production", app_env=settings.APP_ENV)
else:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list or ["http://localhost:3000", "http://localhost:8080"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )


_REQUEST_ID_RE = _re.compile(r"^[a-zA-Z0-9\-]{1,64}$")


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    """Attach a request id to every log line and response, and flag slow requests."""
    # Client-supplied ids are only trusted when they cannot break the log format
    client_id = request.headers.get("X-Request-ID")
    request_id = client_id if client_id and _REQUEST_ID_RE.match(client_id) else str(_uuid.uuid4())
    structlog.contextvars.bind_contextvars(request_id=request_id)
    start = _time.monotonic()
    try:
        response = await call_next(request)
        duration_ms = (_time.monotonic() - start) * 1000
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = f"{duration_ms:.1f}ms"
        if duration_ms > 1000:
            logger.warning(
                "slow_request",
                method=request.method,
                path=request.url.path,
                duration_ms=round(duration_ms, 1),
                status_code=response.status_code,
            )
        return response
    finally:
        structlog.contextvars.clear_contextvars()


# The instrumentator's default metrics choke on non-numeric Content-Length
# headers, so only request count and latency are recorded.
def _safe_metrics(info) -> None:
    from prometheus_client import Counter, Histogram

    if not hasattr(_safe_metrics, "_total"):
        _safe_metrics._total = Counter(
            "mechdispatch_http_requests_total", "Total HTTP requests",
            ["method", "status", "handler"],
        )
        _safe_metrics._latency = Histogram(
            "mechdispatch_http_request_duration_seconds", "Request latency",
            ["method", "handler"],
            buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10),
        )
    _safe_metrics._total.labels(info.method, info.modified_status, info.modified_handler).inc()
    _safe_metrics._latency.labels(info.method, info.modified_handler).observe(info.modified_duration)


Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=True,
    excluded_handlers=["/health", "/metrics"],
).add(_safe_metrics).instrument(app)


@app.get("/metrics", include_in_schema=False)
async def metrics_endpoint(request: Request):
    """Prometheus metrics endpoint (protected by API key)."""
    from prometheus_client import generate_latest
    from starlette.responses import Response as StarletteResponse

    if settings.is_production and not settings.METRICS_API_KEY:
        raise HTTPException(status_code=503, detail="Metrics not available")

    if settings.METRICS_API_KEY:
        api_key = request.headers.get("x-metrics-key", "")
        if api_key != settings.METRICS_API_KEY:
            raise HTTPException(status_code=403, detail="Invalid metrics API key")

    return StarletteResponse(
        content=generate_latest(),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )


app.include_router(auth_router, prefix="/auth", tags=["auth"])
app.include_router(mechanics_router, prefix="/mechanics", tags=["mechanics"])
app.include_router(bookings_router, prefix="/bookings", tags=["bookings"])
app.include_router(pricing_router, prefix="/pricing", tags=["pricing"])
app.include_router(notifications_router, prefix="/notifications", tags=["notifications"])


@app.get("/health")
@limiter.limit("60/minute")
async def health_check(request: Request):
    """Database and Redis connectivity. Redis only backs rate limiting, so it is not fatal."""
    result: dict = {"status": "ok", "database": "connected", "redis": "connected"}

    try:
        async with async_session() as db:
            await db.execute(text("SELECT 1"))
    except Exception:
        logger.exception("health_database_unreachable")
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "database": "disconnected", "redis": "unknown"},
        )

    try:
        import redis.asyncio as aioredis

        r = aioredis.from_url(settings.REDIS_URL, socket_connect_timeout=2)
        await r.ping()
        await r.aclose()
    except Exception:
        result["redis"] = "unavailable"

    if settings.is_production and result["redis"] != "connected":
        result["status"] = "degraded"
    return result
