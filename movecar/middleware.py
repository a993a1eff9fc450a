"""
Custom middleware for the move-car service.
"""

import time
import uuid
from typing import Callable, Dict, Any, Iterable, Optional

import structlog
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from movecar.observability import record_http_metrics

logger = structlog.get_logger()

CORRELATION_HEADER = "X-Call-ID"
COUNTRY_HEADER = "CF-IPCountry"
UNPROTECTED_PATHS = {"/healthz", "/api/health", "/metrics"}


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Middleware for request/response logging with correlation ID support.

    Unhandled exceptions end here and are turned into a 500 envelope.
    """

    def __init__(self, app, exclude_paths: Optional[set] = None):
        super().__init__(app)
        self.exclude_paths = exclude_paths or {"/healthz", "/docs", "/redoc", "/openapi.json"}

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = request.headers.get(CORRELATION_HEADER) or f"req_{uuid.uuid4().hex[:16]}"

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(correlation_id=correlation_id)

        quiet = request.url.path in self.exclude_paths
        start_time = time.time()
        if not quiet:
            # Query strings carry admin tokens; only the path is logged
            logger.info(
                "Request started",
                method=request.method,
                path=request.url.path,
                user_agent=request.headers.get("User-Agent", "unknown")
            )

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "Request failed",
                error=str(e),
                error_type=type(e).__name__,
                process_time_ms=round((time.time() - start_time) * 1000, 2)
            )
            return JSONResponse(
                status_code=500,
                content={
                    "success": False,
                    "error": "An unexpected error occurred",
                    "code": "INTERNAL_ERROR",
                },
                headers={CORRELATION_HEADER: correlation_id}
            )

        if not quiet:
            logger.info(
                "Request completed",
                status_code=response.status_code,
                process_time_ms=round((time.time() - start_time) * 1000, 2)
            )

        response.headers[CORRELATION_HEADER] = correlation_id
        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """
    Middleware to add security headers to responses.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)

        response.headers.update({
            "X-Content-Type-Options": "nosniff",
            "X-Frame-Options": "DENY",
            "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
            "Referrer-Policy": "strict-origin-when-cross-origin"
        })

        return response


class RequestMetrics:
    """In-process request counters served by ``/metrics``."""

    def __init__(self):
        self.reset()

    def reset(self) -> None:
        self.request_count = 0
        self.error_count = 0
        self.total_processing_time = 0.0

    def record(self, status_code: int, processing_time: float) -> None:
        self.request_count += 1
        self.total_processing_time += processing_time
        if status_code >= 400:
            self.error_count += 1

    def snapshot(self) -> Dict[str, Any]:
        avg_processing_time = (
            self.total_processing_time / self.request_count
            if self.request_count > 0 else 0
        )

        return {
            "total_requests": self.request_count,
            "error_count": self.error_count,
            "error_rate": self.error_count / self.request_count if self.request_count > 0 else 0,
            "avg_processing_time_ms": round(avg_processing_time * 1000, 2)
        }


# Global metrics instance
request_metrics = RequestMetrics()


def get_metrics() -> Dict[str, Any]:
    """Get current application metrics."""
    return request_metrics.snapshot()


class MetricsMiddleware(BaseHTTPMiddleware):
    """
    Middleware to collect basic metrics about requests.
    """

    def __init__(self, app, metrics: Optional[RequestMetrics] = None):
        super().__init__(app)
        self.metrics = metrics or request_metrics

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.time()

        try:
            response = await call_next(request)
        except Exception:
            processing_time = time.time() - start_time
            self.metrics.record(500, processing_time)
            record_http_metrics(request.method, request.url.path, 500, processing_time)
            raise

        processing_time = time.time() - start_time
        self.metrics.record(response.status_code, processing_time)
        record_http_metrics(request.method, request.url.path, response.status_code, processing_time)
        return response


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Simple rate limiting middleware (in-memory, per client IP, sliding window).
    """

    def __init__(self, app, max_requests: int = 100, window_seconds: int = 60):
        super().__init__(app)
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.requests: Dict[str, list] = {}
        self._last_sweep = time.time()

    def _sweep(self, now: float) -> None:
        """Drop clients with no requests left inside the window."""
        stale = [
            ip for ip, times in self.requests.items()
            if not times or now - times[-1] >= self.window_seconds
        ]
        for ip in stale:
            del self.requests[ip]
        self._last_sweep = now

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path in UNPROTECTED_PATHS:
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        current_time = time.time()

        if current_time - self._last_sweep >= self.window_seconds:
            self._sweep(current_time)

        self.requests[client_ip] = [
            req_time for req_time in self.requests.get(client_ip, [])
            if current_time - req_time < self.window_seconds
        ]

        if len(self.requests[client_ip]) >= self.max_requests:
            logger.warning(
                "Rate limit exceeded",
                client_ip=client_ip,
                request_count=len(self.requests[client_ip]),
                max_requests=self.max_requests
            )

            return JSONResponse(
                status_code=429,
                content={
                    "success": False,
                    "error": f"Too many requests. Limit: {self.max_requests} per {self.window_seconds} seconds",
                    "code": "RATE_LIMITED",
                }
            )

        self.requests[client_ip].append(current_time)

        return await call_next(request)


class GeoRestrictionMiddleware(BaseHTTPMiddleware):
    """
    Reject requests whose edge-reported country is not allowed.

    The country comes from the ``CF-IPCountry`` header set by the CDN in
    front of the service. Requests without the header pass through, and an
    empty allow-list disables the check.
    """

    def __init__(self, app, allowed_countries: Iterable[str] = ()):
        super().__init__(app)
        self.allowed_countries = {country.upper() for country in allowed_countries}

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if not self.allowed_countries or request.url.path in UNPROTECTED_PATHS:
            return await call_next(request)

        country = request.headers.get(COUNTRY_HEADER)
        if country and country.upper() not in self.allowed_countries:
            logger.info("Request blocked by country", country=country, path=request.url.path)
            return JSONResponse(
                status_code=403,
                content={
                    "success": False,
                    "error": "Service is not available in your region",
                    "code": "REGION_BLOCKED",
                }
            )

        return await call_next(request)
