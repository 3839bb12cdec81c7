"""Social account OAuth routes (authorize redirect URL and provider callbacks)"""
import logging
from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from reelcast.core.config import settings
from reelcast.core.logging import oauth_logger
from reelcast.core.security import require_auth
from reelcast.db.session import get_db
from reelcast.models.social_account import SocialPlatform
from reelcast.services.oauth_service import OAuthError, build_authorization_url, complete_oauth_flow

router = APIRouter(prefix="/api/auth", tags=["oauth"])
logger = logging.getLogger(__name__)

STATE_ERRORS = ("invalid_state", "platform_mismatch")


def _frontend_redirect(**params) -> RedirectResponse:
    url = f"{settings.FRONTEND_URL}/dashboard/social-accounts?{urlencode(params)}"
    return RedirectResponse(url, status_code=302)


@router.get("/authorize/{platform}")
def authorize(platform: str, user_id: int = Depends(require_auth), db: Session = Depends(get_db)):
    """Return the provider authorization URL for the frontend to redirect to"""
    try:
        platform = SocialPlatform.from_slug(platform)
        return {"url": build_authorization_url(user_id, platform, db)}
    except ValueError as e:
        raise HTTPException(400, str(e))


@router.get("/callback/{platform}")
async def oauth_callback(
    platform: str,
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    db: Session = Depends(get_db)
):
    """Provider redirect target: finish the flow and send the browser back to the dashboard"""
    if error:
        oauth_logger.warning(f"{platform} OAuth denied or failed at provider: {error}")
        return _frontend_redirect(error=error)

    if not code or not state:
        return _frontend_redirect(error="missing_code")

    try:
        SocialPlatform.from_slug(platform)
    except ValueError as e:
        oauth_logger.warning(f"OAuth callback for unknown platform: {e}")
        return _frontend_redirect(error="unsupported_platform")

    try:
        account = await complete_oauth_flow(platform, code, state, db)
    except OAuthError as e:
        code_name = str(e) if str(e) in STATE_ERRORS else "token_exchange_failed"
        oauth_logger.warning(f"{platform} OAuth callback rejected: {e}")
        return _frontend_redirect(error=code_name)
    except Exception as e:
        oauth_logger.error(f"{platform} OAuth callback failed: {e}", exc_info=True)
        return _frontend_redirect(error="callback_failed")

    return _frontend_redirect(connected=account.platform.lower())
