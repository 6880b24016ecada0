"""Middleware configuration for FastAPI application"""
import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import Request, Response
from fastapi.responses import JSONResponse

from docobo.core.logging import api_access_logger, security_logger
from docobo.db.redis import check_rate_limit

logger = logging.getLogger(__name__)

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
}


def get_client_identifier(request: Request) -> str:
    """Get a unique identifier for rate limiting"""
    client_ip = request.headers.get("X-Forwarded-For", "").split(",")[0].strip()
    if not client_ip:
        client_ip = request.client.host if request.client else "unknown"
    return f"ip:{client_ip}"


def log_api_access(request: Request, status_code: int = 200, error: Optional[str] = None):
    """Log one line per request"""
    log_data = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "method": request.method,
        "path": request.url.path,
        "client": get_client_identifier(request),
        "user_agent": request.headers.get("User-Agent", "unknown"),
        "status_code": status_code,
    }
    if error:
        log_data["error"] = error
        api_access_logger.warning(f"API Access: {log_data}")
    else:
        api_access_logger.info(f"API Access: {log_data}")


def apply_security_headers(response: Response) -> Response:
    for header, value in SECURITY_HEADERS.items():
        response.headers.setdefault(header, value)
    return response


async def security_middleware(request: Request, call_next):
    """Rate limit webhook deliveries, add security headers and log access"""
    status_code = 500
    error = None

    try:
        path = request.url.path

        if path.startswith("/webhooks/"):
            identifier = get_client_identifier(request)
            if not check_rate_limit(identifier):
                status_code = 429
                error = "Rate limit exceeded"
                security_logger.warning(f"Rate limit exceeded - Identifier: {identifier}, Path: {path}")
                return apply_security_headers(JSONResponse(
                    status_code=429,
                    content={"error": "Rate limit exceeded. Please try again later."}
                ))

        response = await call_next(request)
        status_code = response.status_code
        return apply_security_headers(response)

    except Exception as e:
        error = str(e)
        security_logger.error(f"Security middleware error: {error}", exc_info=True)
        raise
    finally:
        log_api_access(request, status_code, error)


async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler"""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error"}
    )
