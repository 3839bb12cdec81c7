"""Social accounts, immediate publishing and scheduled posts"""
import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from reelcast.core.security import require_auth, require_csrf
from reelcast.db.session import get_db
from reelcast.models.scheduled_post import PostStatus
from reelcast.schemas.social import PublishRequest, SchedulePostRequest, SocialAccountRequest
from reelcast.services.publish_service import (
    create_social_account, deactivate_social_account, delete_scheduled_post, get_scheduled_post,
    list_scheduled_posts, list_social_accounts, publish_now, retry_post_in_background,
    schedule_post, serialize_post, start_retry
)

router = APIRouter(prefix="/api/social", tags=["social"])
logger = logging.getLogger(__name__)


def _raise_http(e: Exception):
    """Map service exceptions to HTTP errors"""
    if isinstance(e, LookupError):
        raise HTTPException(404, str(e))
    if isinstance(e, PermissionError):
        raise HTTPException(403, str(e))
    error_msg = str(e)
    if "not found" in error_msg:
        raise HTTPException(404, error_msg)
    raise HTTPException(400, error_msg)


@router.get("/accounts")
def get_accounts(user_id: int = Depends(require_auth), db: Session = Depends(get_db)):
    """List the user's active connected accounts"""
    return {"accounts": list_social_accounts(user_id, db)}


@router.post("/accounts", status_code=201)
def add_account(
    request_data: SocialAccountRequest,
    user_id: int = Depends(require_csrf),
    db: Session = Depends(get_db)
):
    try:
        account = create_social_account(
            user_id=user_id,
            platform=request_data.platform,
            account_name=request_data.account_name,
            access_token=request_data.access_token,
            refresh_token=request_data.refresh_token,
            token_expiry=request_data.token_expiry,
            account_id=request_data.account_id,
            db=db,
        )
    except (ValueError, LookupError, PermissionError) as e:
        _raise_http(e)
    return {"account": account}


@router.delete("/accounts/{account_id}")
def remove_account(account_id: int, user_id: int = Depends(require_csrf), db: Session = Depends(get_db)):
    """Disconnect an account (kept for post history, marked inactive)"""
    try:
        return deactivate_social_account(user_id, account_id, db)
    except (ValueError, LookupError, PermissionError) as e:
        _raise_http(e)


@router.post("/publish")
async def publish(
    request_data: PublishRequest,
    user_id: int = Depends(require_csrf),
    db: Session = Depends(get_db)
):
    """Publish a clip right away; the post is recorded with its final status"""
    try:
        post = await publish_now(
            user_id, request_data.social_account_id, request_data.video_id, db,
            caption=request_data.caption, hashtags=request_data.hashtags,
        )
    except (ValueError, LookupError, PermissionError) as e:
        _raise_http(e)

    if post["status"] == PostStatus.FAILED:
        raise HTTPException(502, f"Publishing failed: {post['failure_reason']}")
    return {"success": True, "post": post}


@router.post("/schedule", status_code=201)
def create_schedule(
    request_data: SchedulePostRequest,
    user_id: int = Depends(require_csrf),
    db: Session = Depends(get_db)
):
    try:
        post = schedule_post(
            user_id, request_data.social_account_id, request_data.video_id, request_data.scheduled_for, db,
            caption=request_data.caption, hashtags=request_data.hashtags,
        )
    except (ValueError, LookupError, PermissionError) as e:
        _raise_http(e)
    return {"post": post}


@router.get("/schedule")
def get_schedule(
    status: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    user_id: int = Depends(require_auth),
    db: Session = Depends(get_db)
):
    """List scheduled posts, soonest first"""
    if status and status not in PostStatus.ALL:
        raise HTTPException(400, f"Invalid status: {status}")
    return list_scheduled_posts(user_id, db, status=status, page=page, limit=limit)


@router.get("/schedule/{post_id}")
def get_schedule_item(post_id: int, user_id: int = Depends(require_auth), db: Session = Depends(get_db)):
    try:
        return {"post": get_scheduled_post(user_id, post_id, db)}
    except (ValueError, LookupError, PermissionError) as e:
        _raise_http(e)


@router.delete("/schedule/{post_id}")
def delete_schedule_item(post_id: int, user_id: int = Depends(require_csrf), db: Session = Depends(get_db)):
    """Cancel a post that has not started publishing"""
    try:
        return delete_scheduled_post(user_id, post_id, db)
    except (ValueError, LookupError, PermissionError) as e:
        _raise_http(e)


@router.post("/schedule/{post_id}/retry", status_code=202)
def retry_schedule_item(
    post_id: int,
    background_tasks: BackgroundTasks,
    user_id: int = Depends(require_csrf),
    db: Session = Depends(get_db)
):
    """Move a failed post back to PROCESSING and publish it in the background"""
    try:
        post = start_retry(user_id, post_id, db)
    except (ValueError, LookupError, PermissionError) as e:
        _raise_http(e)

    background_tasks.add_task(retry_post_in_background, post.id)
    return {"success": True, "post": serialize_post(post)}
