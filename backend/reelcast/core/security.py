"""Security dependencies, rate limiting and access logging"""
import json
import secrets
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import urlparse

from fastapi import Depends, Header, HTTPException, Request, Response

from reelcast.core.config import settings
from reelcast.core.logging import api_access_logger, security_logger
from reelcast.db.redis import get_session, get_csrf_token, check_rate_limit as redis_check_rate_limit


def require_auth(request: Request) -> int:
    """Dependency: Require authentication, return user_id"""
    session_id = request.cookies.get("session_id")

    if not session_id:
        raise HTTPException(401, "Not authenticated. Please log in.")

    user_id = get_session(session_id)
    if not user_id:
        raise HTTPException(401, "Session expired. Please log in again.")

    return user_id


def require_csrf(
    request: Request,
    user_id: int = Depends(require_auth),
    x_csrf_token: Optional[str] = Header(None, alias="X-CSRF-Token")
) -> int:
    """Dependency: Require auth + valid CSRF token, return user_id"""
    session_id = request.cookies.get("session_id")

    expected_csrf = get_csrf_token(session_id)
    if not expected_csrf or not x_csrf_token or not secrets.compare_digest(x_csrf_token, expected_csrf):
        security_logger.warning(
            f"CSRF validation failed - User: {user_id}, "
            f"IP: {request.client.host if request.client else 'unknown'}, "
            f"Path: {request.url.path}"
        )
        raise HTTPException(403, "Invalid or missing CSRF token")

    return user_id


def require_cron_key(request: Request, x_api_key: Optional[str] = Header(None, alias="X-API-Key")) -> None:
    """Dependency: Require the static cron API key"""
    if not settings.CRON_API_KEY or not x_api_key or not secrets.compare_digest(x_api_key, settings.CRON_API_KEY):
        security_logger.warning(
            f"Rejected cron call - IP: {request.client.host if request.client else 'unknown'}, "
            f"Path: {request.url.path}"
        )
        raise HTTPException(401, "Unauthorized")


def get_client_identifier(request: Request, session_id: Optional[str] = None) -> str:
    """Get a unique identifier for rate limiting"""
    if session_id:
        return f"session:{session_id}"

    client_ip = request.headers.get("X-Forwarded-For", "").split(",")[0].strip()
    if not client_ip:
        client_ip = request.client.host if request.client else "unknown"
    return f"ip:{client_ip}"


def check_rate_limit(identifier: str, strict: bool = False) -> bool:
    """Check if request is within rate limit

    Args:
        identifier: Client identifier (session ID or IP)
        strict: If True, use stricter rate limits for state-changing operations

    Returns:
        True if within limit, False if exceeded
    """
    return redis_check_rate_limit(identifier, strict=strict)


def get_allowed_origins():
    """Get list of allowed CORS origins"""
    allowed_origins = [settings.FRONTEND_URL]
    if settings.ENVIRONMENT == "development":
        allowed_origins.extend([
            "http://localhost:3000",
            "http://localhost:8000",
            "http://127.0.0.1:3000",
            "http://127.0.0.1:8000"
        ])
    return allowed_origins


def validate_origin_referer(request: Request) -> bool:
    """Validate Origin and Referer headers"""
    origin = request.headers.get("Origin")
    referer = request.headers.get("Referer")
    allowed_origins = [allowed.rstrip("/") for allowed in get_allowed_origins()]

    # Non-browser clients in development send neither header
    if settings.ENVIRONMENT == "development" and not origin and not referer:
        return True

    if origin and origin.rstrip("/") in allowed_origins:
        return True

    if referer:
        referer_parsed = urlparse(referer)
        referer_origin = f"{referer_parsed.scheme}://{referer_parsed.netloc}"
        if referer_origin in allowed_origins:
            return True

    return False


def log_api_access(
    request: Request,
    session_id: Optional[str] = None,
    status_code: int = 200,
    error: Optional[str] = None
):
    """Log one JSON line per API request"""
    client_ip = request.headers.get("X-Forwarded-For", "").split(",")[0].strip()
    if not client_ip:
        client_ip = request.client.host if request.client else "unknown"

    log_data = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "method": request.method,
        "path": request.url.path,
        "query": str(request.url.query) if request.url.query else None,
        "session_id": session_id[:16] + "..." if session_id else None,
        "client_ip": client_ip,
        "user_agent": request.headers.get("User-Agent", "unknown"),
        "origin": request.headers.get("Origin", "none"),
        "status_code": status_code,
        "error": error
    }

    if error or status_code >= 400:
        api_access_logger.warning(f"API Access: {json.dumps(log_data)}")
    else:
        api_access_logger.info(f"API Access: {json.dumps(log_data)}")


def get_cookie_domain(request: Request) -> Optional[str]:
    host = request.headers.get("host", settings.DOMAIN).split(":")[0]
    domain_parts = host.split(".")
    # Share the cookie across subdomains (api.example.com -> .example.com)
    if len(domain_parts) >= 2 and not host.replace(".", "").isdigit():
        return "." + ".".join(domain_parts[-2:])
    return None


def set_auth_cookie(response: Response, session_id: str, request: Request) -> None:
    """Set the session cookie with a domain usable across subdomains"""
    response.set_cookie(
        key="session_id",
        value=session_id,
        domain=get_cookie_domain(request),
        httponly=True,
        secure=settings.ENVIRONMENT == "production",
        samesite="lax",
        max_age=60 * 60 * 24 * 7  # 7 days
    )
