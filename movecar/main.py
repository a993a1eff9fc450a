"""Main FastAPI application for the move-car notification service."""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import structlog
from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from movecar import __version__, observability
from movecar.api.owner import router as owner_router
from movecar.api.request import router as request_router
from movecar.api.responses import api_response, error_response
from movecar.api.user import router as user_router
from movecar.clients.repositories import DatabaseManager, get_db
from movecar.config import settings
from movecar.errors import MoveCarError
from movecar.middleware import (
    GeoRestrictionMiddleware,
    MetricsMiddleware,
    RateLimitMiddleware,
    RequestLoggingMiddleware,
    SecurityHeadersMiddleware,
    get_metrics,
)
from movecar.models.api_models import HealthResponse
from movecar.observability import TracingContextMiddleware, instrument_fastapi_app, setup_observability

logging.basicConfig(format="%(message)s", level=settings.log_level.upper())

# Configure structured logging
structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    wrapper_class=structlog.stdlib.BoundLogger,
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info(
        "Starting move-car service",
        port=settings.port,
        host=settings.host,
        store_backend=settings.store_backend
    )

    if not await get_db().health_check():
        logger.warning("Key-value store is not reachable at startup", store_backend=settings.store_backend)

    yield

    logger.info("Shutting down move-car service")


async def handle_service_error(request: Request, exc: MoveCarError):
    level = logger.warning if exc.status_code >= 500 else logger.info
    level("Request rejected", code=exc.code, status_code=exc.status_code, path=request.url.path)
    return error_response(exc.message, exc.status_code, code=exc.code)


async def handle_validation_error(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if not errors:
        return error_response("Invalid request", 400, code="VALIDATION_ERROR")

    first = errors[0]
    field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = f"{field}: {first.get('msg')}" if field else str(first.get("msg"))
    return error_response(message, 400, code="VALIDATION_ERROR")


async def handle_http_error(request: Request, exc: StarletteHTTPException):
    message = "API not found" if exc.status_code == 404 else str(exc.detail)
    return error_response(message, exc.status_code, code=f"HTTP_{exc.status_code}")


def create_app() -> FastAPI:
    """Build the application with middleware, routers and error handlers."""
    if observability.tracer is None:
        setup_observability(
            service_name="movecar",
            service_version=__version__,
            otlp_endpoint=settings.otlp_endpoint,
            enable_console_export=settings.enable_console_export
        )

    app = FastAPI(
        title="Move Car Service",
        description="Notify vehicle owners that their car is blocking someone, without exposing contact details",
        version=__version__,
        lifespan=lifespan
    )

    # Last added is executed first
    app.add_middleware(TracingContextMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        RateLimitMiddleware,
        max_requests=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window_seconds
    )
    app.add_middleware(GeoRestrictionMiddleware, allowed_countries=settings.allowed_countries)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    app.add_exception_handler(MoveCarError, handle_service_error)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.add_exception_handler(StarletteHTTPException, handle_http_error)

    app.include_router(owner_router)
    app.include_router(request_router)
    app.include_router(user_router)

    @app.get("/healthz", response_model=HealthResponse)
    async def health_check() -> HealthResponse:
        """Liveness probe."""
        return HealthResponse(
            status="healthy",
            timestamp=datetime.now(timezone.utc),
            version=__version__
        )

    @app.get("/api/health")
    async def api_health(db: DatabaseManager = Depends(get_db)):
        """Readiness including the key-value store."""
        store_ok = await db.health_check()
        data = {
            "status": "healthy" if store_ok else "degraded",
            "store": settings.store_backend,
            "version": __version__,
        }
        if store_ok:
            return api_response(data=data)
        return error_response("Store unavailable", 503, code="STORE_UNAVAILABLE", data=data)

    @app.get("/metrics")
    async def metrics_endpoint():
        """Application metrics endpoint."""
        return {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "metrics": get_metrics()
        }

    instrument_fastapi_app(app)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "movecar.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        reload=False
    )
