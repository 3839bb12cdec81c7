"""Current user profile, subscription and usage routes"""
import logging

from fastapi import APIRouter, Depends, HTTPException, Response
from sqlalchemy.orm import Session

from reelcast.core.security import require_auth, require_csrf
from reelcast.db.session import get_db
from reelcast.schemas.auth import UpdateProfileRequest
from reelcast.services.auth_service import delete_user_account, get_user_by_id, serialize_user, update_profile
from reelcast.services.subscription_service import can_upload, get_user_subscription

router = APIRouter(prefix="/api/user", tags=["user"])
logger = logging.getLogger(__name__)


@router.get("")
def get_user(user_id: int = Depends(require_auth), db: Session = Depends(get_db)):
    user = get_user_by_id(user_id, db=db)
    if not user:
        raise HTTPException(404, "User not found")
    return {"user": serialize_user(user)}


@router.patch("")
def update_user(
    request_data: UpdateProfileRequest,
    user_id: int = Depends(require_csrf),
    db: Session = Depends(get_db)
):
    """Update name and profile image"""
    try:
        return update_profile(user_id, db, name=request_data.name, image=request_data.image)
    except ValueError as e:
        error_msg = str(e)
        if "User not found" in error_msg:
            raise HTTPException(404, error_msg)
        raise HTTPException(400, error_msg)


@router.delete("")
def delete_user(
    response: Response,
    user_id: int = Depends(require_csrf),
    db: Session = Depends(get_db)
):
    """Delete the account, its Stripe subscription and all owned data"""
    try:
        result = delete_user_account(user_id, db)
    except ValueError as e:
        raise HTTPException(404, str(e))
    response.delete_cookie("session_id")
    return result


@router.get("/subscription")
def get_subscription(user_id: int = Depends(require_auth), db: Session = Depends(get_db)):
    try:
        return get_user_subscription(user_id, db)
    except LookupError as e:
        raise HTTPException(404, str(e))


@router.get("/can-upload")
def get_can_upload(user_id: int = Depends(require_auth), db: Session = Depends(get_db)):
    """Whether the user may upload another video, with a reason code when not"""
    try:
        return can_upload(user_id, db)
    except LookupError as e:
        raise HTTPException(404, str(e))
