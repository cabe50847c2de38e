"""
Security Module for the Proposal Review API

Implements the request-level security layer:
- Rate limiting (IP-based using slowapi)
- Security headers middleware with request IDs for audit logging
- Request size validation
- The access gate: authentication and route authorization before routing
- Domain error, HTTP error and secure 500 handlers

Settings come from ``app.state.settings``; see :mod:`proposal_review.config`.
"""

import ipaddress
import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Callable, Optional

from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from proposal_review.config import Settings
from proposal_review.errors import Forbidden, ReviewError, Unauthenticated

logger = logging.getLogger(__name__)


# =============================================================================
# Rate Limiter Setup
# =============================================================================

def _is_valid_ip(ip_str: str) -> bool:
    """Validate that a string is a valid IP address (IPv4 or IPv6)."""
    if not ip_str or len(ip_str) > 45:  # Max length for IPv6
        return False
    try:
        ipaddress.ip_address(ip_str)
        return True
    except ValueError:
        return False


def _trusted_proxy_count(request: Request) -> int:
    settings: Optional[Settings] = getattr(request.app.state, "settings", None)
    return settings.trusted_proxy_count if settings is not None else 1


def get_client_ip(request: Request) -> str:
    """
    Extract client IP address from request with anti-spoofing protection.

    Uses the "rightmost non-trusted" approach for X-Forwarded-For: proxies
    append the connecting IP, so only the entries added by our own trusted
    proxies (``TRUSTED_PROXY_COUNT``) are skipped from the right.

    Returns:
        The client IP address, or "unknown" if not determinable
    """
    direct_ip = request.client.host if request.client else None
    proxy_count = _trusted_proxy_count(request)

    if forwarded_for := request.headers.get("X-Forwarded-For"):
        if ips := [ip.strip() for ip in forwarded_for.split(",") if ip.strip()]:
            if len(ips) > proxy_count:
                client_ip = ips[-(proxy_count + 1)]
            else:
                client_ip = ips[0]

            # Validate the extracted IP to prevent log injection attacks
            if _is_valid_ip(client_ip):
                return client_ip
            logger.warning(
                "Invalid IP in X-Forwarded-For header: %r",
                client_ip[:50],
                extra={"direct_ip": direct_ip},
            )

    if real_ip := request.headers.get("X-Real-IP"):
        real_ip = real_ip.strip()
        if _is_valid_ip(real_ip):
            return real_ip
        logger.warning(
            "Invalid X-Real-IP header: %r", real_ip[:50], extra={"direct_ip": direct_ip}
        )

    return direct_ip if direct_ip and _is_valid_ip(direct_ip) else "unknown"


_default_limit_per_minute = 100


def _default_rate_limit() -> str:
    return f"{_default_limit_per_minute}/minute"


# One limiter per process. Route decorators bind to it at import time and
# every app built in the process shares its counters and settings.
limiter = Limiter(
    key_func=get_client_ip,
    default_limits=[_default_rate_limit],
    storage_uri="memory://",  # In-memory storage (use Redis for multi-instance)
    strategy="fixed-window",
)

AUTH_RATE_LIMIT = "5/minute"  # 5 auth attempts per minute


def rate_limit_auth():
    """Decorator for authentication endpoints with strict rate limiting."""
    return limiter.limit(AUTH_RATE_LIMIT)


def configure_rate_limits(settings: Settings) -> None:
    """Apply rate limit settings to the process-wide :data:`limiter`.

    The limiter is shared by every app in the process, so the settings of
    the most recently configured app apply to all of them.
    """
    global _default_limit_per_minute
    _default_limit_per_minute = settings.rate_limit_per_minute
    limiter.enabled = settings.rate_limit_enabled


# =============================================================================
# Audit Logging Utilities
# =============================================================================

def log_security_event(
    event_type: str,
    request: Request,
    details: Optional[dict] = None,
) -> None:
    """
    Log a security-relevant event for audit purposes.

    Args:
        event_type: Type of security event (e.g., 'auth_failure', 'access_denied')
        request: The request object
        details: Optional additional details to log
    """
    log_data = {
        "event_type": event_type,
        "request_id": getattr(request.state, "request_id", "unknown"),
        "client_ip": get_client_ip(request),
        "path": request.url.path,
        "method": request.method,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    if details:
        log_data |= details
    logger.warning("SECURITY_EVENT: %s", log_data)


# =============================================================================
# Error responses
# =============================================================================

def _response_headers(request: Request, request_id: str) -> dict[str, str]:
    headers = {"X-Request-ID": request_id}
    settings: Optional[Settings] = getattr(request.app.state, "settings", None)
    origin = request.headers.get("origin", "")
    if settings is not None and origin in settings.allowed_origins:
        headers["Access-Control-Allow-Origin"] = origin
        headers["Access-Control-Allow-Credentials"] = "true"
    return headers


def review_error_response(request: Request, exc: ReviewError) -> JSONResponse:
    """Render a domain error as ``{detail, code, request_id[, current_state]}``."""
    request_id = getattr(request.state, "request_id", str(uuid.uuid4()))
    headers = _response_headers(request, request_id)
    if isinstance(exc, Unauthenticated):
        headers["WWW-Authenticate"] = "Bearer"

    content = {"detail": exc.message, "code": exc.code, "request_id": request_id}
    current_state = getattr(exc, "current_state", None)
    if current_state is not None:
        content["current_state"] = current_state
    return JSONResponse(status_code=exc.status_code, content=content, headers=headers)


async def review_error_handler(request: Request, exc: ReviewError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("Domain error %s: %s", exc.code, exc.message)
    else:
        logger.info(
            "%s %s -> %d %s: %s",
            request.method,
            request.url.path,
            exc.status_code,
            exc.code,
            exc.message,
        )
    return review_error_response(request, exc)


def create_secure_exception_handler(is_production: bool) -> Callable:
    """
    Create a secure exception handler that sanitizes error responses.

    In production internal errors return a generic message and stack traces
    are never exposed; in development the exception text is returned.
    """

    async def secure_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        request_id = getattr(request.state, "request_id", str(uuid.uuid4()))
        headers = _response_headers(request, request_id)

        logger.error(
            "Unhandled exception: %s: %s request_id=%s path=%s method=%s client_ip=%s",
            type(exc).__name__,
            exc,
            request_id,
            request.url.path,
            request.method,
            get_client_ip(request),
            exc_info=True,
        )

        if is_production:
            content = {
                "detail": "An internal server error occurred. Please try again later.",
                "code": "INTERNAL_ERROR",
                "request_id": request_id,
            }
        else:
            content = {
                "detail": str(exc),
                "error_type": type(exc).__name__,
                "request_id": request_id,
            }
        return JSONResponse(status_code=500, content=content, headers=headers)

    return secure_exception_handler


async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Handle rate limit exceeded errors."""
    request_id = getattr(request.state, "request_id", str(uuid.uuid4()))
    headers = _response_headers(request, request_id)
    headers["Retry-After"] = "60"

    logger.warning(
        "Rate limit exceeded: client_ip=%s path=%s request_id=%s",
        get_client_ip(request),
        request.url.path,
        request_id,
    )
    return JSONResponse(
        status_code=429,
        content={
            "detail": "Rate limit exceeded. Please slow down your requests.",
            "code": "RATE_LIMIT_EXCEEDED",
            "retry_after_seconds": 60,
            "request_id": request_id,
        },
        headers=headers,
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle HTTP exceptions, keeping the request id on the response."""
    request_id = getattr(request.state, "request_id", str(uuid.uuid4()))
    headers = _response_headers(request, request_id)
    if exc.headers:
        headers.update(exc.headers)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "request_id": request_id},
        headers=headers,
    )


# =============================================================================
# Middleware
# =============================================================================

class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """
    Add security headers and a request ID to every response, and log the
    completed request (method, path, status, duration, request id, client ip).
    """

    def __init__(self, app, is_production: bool = False):
        super().__init__(app)
        self.is_production = is_production

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id
        request.state.start_time = time.time()

        response = await call_next(request)

        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Permissions-Policy"] = (
            "accelerometer=(), camera=(), geolocation=(), gyroscope=(), "
            "magnetometer=(), microphone=(), payment=(), usb=()"
        )
        if self.is_production:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains; preload"
            )
        response.headers["X-Request-ID"] = request_id
        if not response.headers.get("Cache-Control"):
            response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate, private"

        duration = time.time() - request.state.start_time
        logger.info(
            "Request completed: %s %s status=%d duration=%.3fs request_id=%s client_ip=%s",
            request.method,
            request.url.path,
            response.status_code,
            duration,
            request_id,
            get_client_ip(request),
        )
        return response


class RequestSizeLimitMiddleware(BaseHTTPMiddleware):
    """Reject request bodies larger than ``MAX_REQUEST_SIZE_MB``."""

    def __init__(self, app, max_size_mb: int = 10):
        super().__init__(app)
        self.max_size_mb = max_size_mb
        self.max_size_bytes = max_size_mb * 1024 * 1024

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if content_length := request.headers.get("content-length"):
            try:
                size = int(content_length)
            except ValueError:
                return JSONResponse(
                    status_code=400,
                    content={
                        "detail": "Invalid Content-Length header",
                        "code": "INVALID_CONTENT_LENGTH",
                    },
                )
            if size > self.max_size_bytes:
                return JSONResponse(
                    status_code=413,
                    content={
                        "detail": f"Request body too large. Maximum size is {self.max_size_mb}MB.",
                        "code": "REQUEST_TOO_LARGE",
                    },
                )
        return await call_next(request)


class AccessGateMiddleware(BaseHTTPMiddleware):
    """
    Authenticate and authorize every request before it reaches a router.

    Public routes pass straight through.  Everything else needs a valid
    ACCESS token for an active user (401 otherwise) and a route rule that
    admits the user's role (403 otherwise).  On success the resolved
    :class:`~proposal_review.auth.Principal` is stored on
    ``request.state.principal``.  No handler runs for a rejected request.
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        state = request.app.state
        matrix = state.authorization_matrix
        method, path = request.method, request.url.path

        if matrix.is_public(method, path):
            return await call_next(request)

        try:
            async with state.database.session() as db:
                principal = await state.principal_resolver.resolve(
                    request.headers.get("Authorization"), db
                )
        except Unauthenticated as exc:
            log_security_event("auth_failure", request, {"code": exc.code})
            return review_error_response(request, exc)

        result = matrix.authorize(principal, method, path)
        if not result.allowed:
            log_security_event(
                "access_denied",
                request,
                {"user": principal.username, "role": principal.role.value},
            )
            return review_error_response(request, Forbidden())

        request.state.principal = principal
        return await call_next(request)


# =============================================================================
# Security Setup Function
# =============================================================================

def setup_security(app: FastAPI, settings: Settings) -> None:
    """
    Configure all security middleware and handlers for a FastAPI application.

    Middleware runs outermost first: request size limit, security headers,
    access gate, rate limiting.
    """
    configure_rate_limits(settings)
    app.state.limiter = limiter

    app.add_middleware(SlowAPIMiddleware)
    app.add_middleware(AccessGateMiddleware)
    app.add_middleware(SecurityHeadersMiddleware, is_production=settings.is_production)
    app.add_middleware(RequestSizeLimitMiddleware, max_size_mb=settings.max_request_size_mb)

    app.add_exception_handler(RateLimitExceeded, rate_limit_handler)
    app.add_exception_handler(ReviewError, review_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(
        Exception, create_secure_exception_handler(settings.is_production)
    )

    logger.info(
        "Security middleware configured: rate_limit=%s/min (enabled=%s), "
        "max_request_size=%sMB, environment=%s",
        settings.rate_limit_per_minute,
        settings.rate_limit_enabled,
        settings.max_request_size_mb,
        settings.environment,
    )
