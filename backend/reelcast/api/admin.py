"""Admin API routes"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from reelcast.core.security import require_auth, require_csrf
from reelcast.db.session import get_db
from reelcast.models.user import User
from reelcast.schemas.admin import (
    AppSettingsUpdate, CreateUserRequest, PlanRequest, PlanUpdateRequest, SocialCredentialsUpdate,
    UpdateSubscriptionRequest, UpdateUserRequest
)
from reelcast.services.admin_service import (
    admin_create_user, admin_delete_user, admin_update_subscription, admin_update_user, get_dashboard_stats,
    get_subscription_details, get_user_details, list_all_videos, list_subscriptions, list_users
)
from reelcast.services.settings_service import (
    get_app_settings, get_social_credentials, save_social_credentials, update_app_settings
)
from reelcast.services.stripe_service import check_stripe_connection, get_stripe_status
from reelcast.services.subscription_service import create_plan, delete_plan, list_all_plans, update_plan
from reelcast.services.video_service import check_ffmpeg

router = APIRouter(prefix="/api/admin", tags=["admin"])
logger = logging.getLogger(__name__)


def _load_admin(user_id: int, db: Session) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if not user or not user.is_admin:
        raise HTTPException(403, "Admin access required")
    return user


def require_admin(user_id: int = Depends(require_csrf), db: Session = Depends(get_db)) -> User:
    """Dependency: Require admin role (state-changing requests, CSRF checked)"""
    return _load_admin(user_id, db)


def require_admin_get(user_id: int = Depends(require_auth), db: Session = Depends(get_db)) -> User:
    """Dependency: Require admin role (for GET requests - no CSRF required)"""
    return _load_admin(user_id, db)


def _raise_http(e: Exception):
    if isinstance(e, LookupError):
        raise HTTPException(404, str(e))
    error_msg = str(e)
    if "User not found" in error_msg:
        raise HTTPException(404, error_msg)
    raise HTTPException(400, error_msg)


@router.get("/dashboard")
def dashboard(admin_user: User = Depends(require_admin_get), db: Session = Depends(get_db)):
    return get_dashboard_stats(db)


# Users

@router.get("/users")
def get_users(
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    search: Optional[str] = None,
    role: Optional[str] = None,
    sort_by: str = "created_at",
    sort_order: str = "desc",
    admin_user: User = Depends(require_admin_get),
    db: Session = Depends(get_db)
):
    """List users with search and pagination (admin only)"""
    return list_users(db, page=page, page_size=page_size, search=search, role=role, sort_by=sort_by, sort_order=sort_order)


@router.post("/users", status_code=201)
def create_user_endpoint(
    request_data: CreateUserRequest,
    admin_user: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Create a new user (admin only)"""
    try:
        result = admin_create_user(request_data.model_dump(), db)
    except ValueError as e:
        _raise_http(e)
    logger.info(f"Admin {admin_user.id} created user {result['user']['id']}")
    return result


@router.get("/users/{user_id}")
def get_user(user_id: int, admin_user: User = Depends(require_admin_get), db: Session = Depends(get_db)):
    try:
        return get_user_details(user_id, db)
    except LookupError as e:
        _raise_http(e)


@router.patch("/users/{user_id}")
def update_user(
    user_id: int,
    request_data: UpdateUserRequest,
    admin_user: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    try:
        return admin_update_user(user_id, request_data.model_dump(exclude_unset=True), db, acting_admin_id=admin_user.id)
    except (ValueError, LookupError) as e:
        _raise_http(e)


@router.delete("/users/{user_id}")
def delete_user(user_id: int, admin_user: User = Depends(require_admin), db: Session = Depends(get_db)):
    """Delete a user and cancel their Stripe subscription (admin only)"""
    try:
        return admin_delete_user(user_id, db, acting_admin_id=admin_user.id)
    except (ValueError, LookupError) as e:
        _raise_http(e)


# Subscriptions

@router.get("/subscriptions")
def get_subscriptions(
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    search: Optional[str] = None,
    plan: Optional[str] = None,
    status: Optional[str] = None,
    sort_by: str = "start_date",
    sort_order: str = "desc",
    admin_user: User = Depends(require_admin_get),
    db: Session = Depends(get_db)
):
    return list_subscriptions(
        db, page=page, page_size=page_size, search=search, plan=plan, status=status,
        sort_by=sort_by, sort_order=sort_order,
    )


@router.get("/subscriptions/{subscription_id}")
def get_subscription(subscription_id: int, admin_user: User = Depends(require_admin_get), db: Session = Depends(get_db)):
    try:
        return get_subscription_details(subscription_id, db)
    except LookupError as e:
        _raise_http(e)


@router.patch("/subscriptions/{subscription_id}")
def update_subscription(
    subscription_id: int,
    request_data: UpdateSubscriptionRequest,
    admin_user: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    try:
        result = admin_update_subscription(subscription_id, request_data.model_dump(exclude_unset=True), db)
    except (ValueError, LookupError) as e:
        _raise_http(e)
    logger.info(f"Admin {admin_user.id} updated subscription {subscription_id}")
    return result


# Plans

@router.get("/subscription-plans")
def get_plans(admin_user: User = Depends(require_admin_get), db: Session = Depends(get_db)):
    """All plans, including inactive ones"""
    return {"plans": list_all_plans(db)}


@router.post("/subscription-plans", status_code=201)
def create_plan_endpoint(request_data: PlanRequest, admin_user: User = Depends(require_admin), db: Session = Depends(get_db)):
    try:
        return {"plan": create_plan(request_data.model_dump(), db)}
    except ValueError as e:
        _raise_http(e)


@router.patch("/subscription-plans/{plan_id}")
def update_plan_endpoint(
    plan_id: int,
    request_data: PlanUpdateRequest,
    admin_user: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    try:
        return {"plan": update_plan(plan_id, request_data.model_dump(exclude_unset=True), db)}
    except (ValueError, LookupError) as e:
        _raise_http(e)


@router.delete("/subscription-plans/{plan_id}")
def delete_plan_endpoint(plan_id: int, admin_user: User = Depends(require_admin), db: Session = Depends(get_db)):
    """Delete a plan, or deactivate it when users are subscribed to it"""
    try:
        return delete_plan(plan_id, db)
    except LookupError as e:
        _raise_http(e)


# Videos

@router.get("/videos")
def get_videos(
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    search: Optional[str] = None,
    status: Optional[str] = None,
    sort_by: str = "uploaded_at",
    sort_order: str = "desc",
    admin_user: User = Depends(require_admin_get),
    db: Session = Depends(get_db)
):
    return list_all_videos(db, page=page, page_size=page_size, search=search, status=status, sort_by=sort_by, sort_order=sort_order)


# Settings

@router.get("/settings")
def get_settings(admin_user: User = Depends(require_admin_get), db: Session = Depends(get_db)):
    return {"settings": get_app_settings(db)}


@router.patch("/settings")
def patch_settings(request_data: AppSettingsUpdate, admin_user: User = Depends(require_admin), db: Session = Depends(get_db)):
    try:
        result = update_app_settings(request_data.settings, db)
    except ValueError as e:
        _raise_http(e)
    logger.info(f"Admin {admin_user.id} updated settings: {sorted(request_data.settings)}")
    return {"settings": result}


@router.get("/social-credentials")
def get_credentials(admin_user: User = Depends(require_admin_get), db: Session = Depends(get_db)):
    """Client IDs and masked secrets per platform"""
    return {"credentials": get_social_credentials(db)}


@router.post("/social-credentials")
def post_credentials(
    request_data: SocialCredentialsUpdate,
    admin_user: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    try:
        result = save_social_credentials(request_data.platform, request_data.client_id, request_data.client_secret, db)
    except ValueError as e:
        _raise_http(e)
    logger.info(f"Admin {admin_user.id} updated {request_data.platform} OAuth credentials")
    return {"credentials": result}


# Integrations

@router.get("/stripe/status")
def stripe_status(admin_user: User = Depends(require_admin_get)):
    return get_stripe_status()


@router.post("/stripe/test-connection")
def stripe_test_connection(admin_user: User = Depends(require_admin)):
    """Call Stripe with the configured key"""
    return check_stripe_connection()


@router.get("/ffmpeg")
def ffmpeg_status(admin_user: User = Depends(require_admin_get)):
    return check_ffmpeg()
