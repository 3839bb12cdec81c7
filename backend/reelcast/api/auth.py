"""Auth API routes"""
import logging
import secrets

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from sqlalchemy.orm import Session

from reelcast.core.config import settings
from reelcast.core.security import require_csrf, set_auth_cookie
from reelcast.db.redis import get_or_create_csrf_token
from reelcast.db.session import get_db
from reelcast.schemas.auth import ChangePasswordRequest, LoginRequest, RegisterRequest
from reelcast.services.auth_service import (
    change_password, get_current_user_from_session, login_user, logout_user, register_user
)

router = APIRouter(prefix="/api/auth", tags=["auth"])
logger = logging.getLogger(__name__)


@router.post("/register")
def register(request_data: RegisterRequest, request: Request, response: Response, db: Session = Depends(get_db)):
    """Create an account and start a session"""
    try:
        result = register_user(request_data.email, request_data.password, request_data.name, db)
    except PermissionError as e:
        raise HTTPException(403, str(e))
    except ValueError as e:
        raise HTTPException(400, str(e))
    except Exception as e:
        logger.error(f"Registration error: {e}", exc_info=True)
        raise HTTPException(500, "Registration failed")

    set_auth_cookie(response, result["session_id"], request)
    return {"user": result["user"]}


@router.post("/login")
def login(request_data: LoginRequest, request: Request, response: Response, db: Session = Depends(get_db)):
    """Login user"""
    try:
        result = login_user(request_data.email, request_data.password, db)
    except ValueError as e:
        raise HTTPException(401, str(e))
    except Exception as e:
        logger.error(f"Login error: {e}", exc_info=True)
        raise HTTPException(500, "Login failed")

    set_auth_cookie(response, result["session_id"], request)
    return {"user": result["user"]}


@router.post("/logout")
def logout(request: Request, response: Response):
    """Logout user"""
    session_id = request.cookies.get("session_id")
    result = logout_user(session_id)
    if session_id:
        response.delete_cookie("session_id")
    return result


@router.get("/me")
def get_current_user(request: Request, db: Session = Depends(get_db)):
    """Get current logged-in user"""
    try:
        return get_current_user_from_session(request.cookies.get("session_id"), db)
    except Exception as e:
        # Return no user rather than an error to avoid frontend redirect loops
        logger.warning(f"Failed to resolve current user: {e}")
        return {"user": None}


@router.get("/csrf")
def get_csrf_token_route(request: Request, response: Response):
    """Get or generate CSRF token for the session"""
    session_id = request.cookies.get("session_id")

    if not session_id:
        session_id = secrets.token_urlsafe(32)
        response.set_cookie(
            key="session_id",
            value=session_id,
            httponly=True,
            secure=settings.ENVIRONMENT == "production",
            samesite="lax",
            max_age=3600 * 24
        )

    return {"csrf_token": get_or_create_csrf_token(session_id)}


@router.post("/change-password")
def change_password_route(
    request_data: ChangePasswordRequest,
    user_id: int = Depends(require_csrf),
    db: Session = Depends(get_db)
):
    """Change password for authenticated user"""
    try:
        return change_password(user_id, request_data.current_password, request_data.new_password, db)
    except ValueError as e:
        error_msg = str(e)
        if "User not found" in error_msg:
            raise HTTPException(404, error_msg)
        raise HTTPException(400, error_msg)
