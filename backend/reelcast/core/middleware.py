"""Middleware configuration for FastAPI application"""
import logging

from fastapi import Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from reelcast.core.config import settings
from reelcast.core.logging import security_logger
from reelcast.core.security import (
    get_allowed_origins, get_client_identifier, check_rate_limit,
    validate_origin_referer, log_api_access, get_cookie_domain
)
from reelcast.db.redis import get_or_create_csrf_token

logger = logging.getLogger(__name__)

# Routes called by third parties (OAuth providers, Stripe, the cron runner) or before login
PUBLIC_PATHS = {
    "/api/auth/csrf",
    "/api/auth/register",
    "/api/auth/login",
    "/api/auth/logout",
    "/api/auth/me",
    "/api/stripe/webhook",
    "/api/cron/process-scheduled-posts",
    "/metrics",
    "/health",
}


def is_oauth_callback(path: str) -> bool:
    return path.startswith("/api/auth/callback/")


def setup_cors_middleware(app):
    """Setup CORS middleware for FastAPI app"""
    app.add_middleware(
        CORSMiddleware,
        allow_origins=get_allowed_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-CSRF-Token", "Content-Range", "Accept-Ranges"],
    )


def _json_error(request: Request, status_code: int, message: str) -> Response:
    response = JSONResponse(status_code=status_code, content={"error": message})
    origin = request.headers.get("Origin")
    if origin and origin in get_allowed_origins():
        response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Access-Control-Allow-Credentials"] = "true"
    return response


async def security_middleware(request: Request, call_next):
    """Rate limiting, Origin/Referer checks, CSRF token hand-out and access logging"""
    session_id = request.cookies.get("session_id")
    status_code = 500
    error = None
    path = request.url.path

    try:
        callback = is_oauth_callback(path)
        public = path in PUBLIC_PATHS
        # Media elements fetch previews without custom headers
        is_preview = path.startswith("/api/videos/preview/")

        if not callback:
            identifier = get_client_identifier(request, session_id)
            is_state_changing = request.method in ("POST", "PATCH", "DELETE", "PUT")
            if not check_rate_limit(identifier, strict=is_state_changing):
                status_code = 429
                error = "Rate limit exceeded"
                security_logger.warning(f"Rate limit exceeded - Identifier: {identifier}, Path: {path}")
                return _json_error(request, 429, "Rate limit exceeded. Please try again later.")

            needs_origin_check = (
                not public
                and not is_preview
                and request.method != "OPTIONS"
                and (request.method != "GET" or settings.ENVIRONMENT == "production")
            )
            if needs_origin_check and not validate_origin_referer(request):
                status_code = 403
                error = "Invalid origin or referer"
                security_logger.warning(f"Origin/Referer validation failed - Path: {path}")
                return _json_error(request, 403, "Invalid origin or referer")

        response = await call_next(request)
        status_code = response.status_code

        # Hand the CSRF token to the browser on every successful authenticated response
        if session_id and not callback and status_code < 400:
            csrf_token = get_or_create_csrf_token(session_id)
            response.headers["X-CSRF-Token"] = csrf_token
            response.set_cookie(
                key="csrf_token_client",
                value=csrf_token,
                domain=get_cookie_domain(request),
                httponly=False,  # read by the frontend
                secure=settings.ENVIRONMENT == "production",
                samesite="lax",
                path="/"
            )

        return response

    except Exception as e:
        error = str(e)
        security_logger.error(f"Security middleware error: {error}", exc_info=True)
        raise
    finally:
        log_api_access(request, session_id, status_code, error)


async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler"""
    logger.error(f"Unhandled exception on {request.method} {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error"}
    )
