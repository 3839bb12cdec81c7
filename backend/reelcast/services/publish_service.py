"""Publish service - social accounts, scheduled posts and the publish loop

ScheduledPost status only moves forward:

    SCHEDULED -> PROCESSING -> PUBLISHED | FAILED

A user retry of a FAILED post (FAILED -> PROCESSING) is the single exception.
Every status change goes through transition_post().
"""
import asyncio
import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from reelcast.core.config import settings
from reelcast.core.logging import publish_logger
from reelcast.core.metrics import posts_published_counter, posts_failed_counter, cron_runs_counter, posts_due_gauge
from reelcast.models.edited_video import EditedVideo
from reelcast.models.scheduled_post import ScheduledPost, PostStatus
from reelcast.models.social_account import SocialMediaAccount, SocialPlatform
from reelcast.services.oauth_service import get_valid_access_token, save_social_account
from reelcast.services.platforms import get_publisher
from reelcast.utils.dates import utcnow, as_utc

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    PostStatus.SCHEDULED: {PostStatus.PROCESSING},
    PostStatus.PROCESSING: {PostStatus.PUBLISHED, PostStatus.FAILED},
}

MAX_FAILURE_REASON_LENGTH = 2000


class InvalidTransitionError(ValueError):
    """Raised for any ScheduledPost status change outside the allowed edges"""


# ============================================================================
# STATUS TRANSITIONS
# ============================================================================

def transition_post(
    post: ScheduledPost,
    new_status: str,
    db: Session,
    retry: bool = False,
    post_url: Optional[str] = None,
    external_id: Optional[str] = None,
    failure_reason: Optional[str] = None,
) -> ScheduledPost:
    """Move a post to new_status and commit

    The write is a compare-and-set on the status this session read, so a
    runner holding a stale copy cannot move a post another runner already moved.

    Args:
        retry: Allow FAILED -> PROCESSING (explicit user retry only)

    Raises:
        InvalidTransitionError: If the edge is not allowed or the stored status changed
    """
    current = post.status
    allowed = set(ALLOWED_TRANSITIONS.get(current, ()))
    if retry and current == PostStatus.FAILED:
        allowed.add(PostStatus.PROCESSING)

    if new_status not in allowed:
        raise InvalidTransitionError(f"Cannot move post {post.id} from {current} to {new_status}")

    values = {"status": new_status}
    if new_status == PostStatus.PROCESSING:
        values["failure_reason"] = None
    elif new_status == PostStatus.PUBLISHED:
        values.update(published_at=utcnow(), post_url=post_url, external_id=external_id)
    elif new_status == PostStatus.FAILED:
        values["failure_reason"] = (failure_reason or "Unknown error")[:MAX_FAILURE_REASON_LENGTH]

    updated = db.query(ScheduledPost).filter(
        ScheduledPost.id == post.id,
        ScheduledPost.status == current
    ).update(values, synchronize_session=False)
    if not updated:
        db.rollback()
        raise InvalidTransitionError(f"Post {post.id} is no longer {current}; another run already moved it")

    db.commit()
    db.refresh(post)
    return post


# ============================================================================
# SERIALIZATION
# ============================================================================

def serialize_account(account: SocialMediaAccount) -> Dict:
    """Account view without tokens"""
    return {
        "id": account.id,
        "platform": account.platform,
        "account_name": account.account_name,
        "account_id": account.account_id,
        "is_active": account.is_active,
        "token_expiry": as_utc(account.token_expiry).isoformat() if account.token_expiry else None,
        "created_at": account.created_at.isoformat(),
    }


def serialize_post(post: ScheduledPost) -> Dict:
    return {
        "id": post.id,
        "social_account_id": post.social_account_id,
        "video_id": post.video_id,
        "platform": post.social_account.platform if post.social_account else None,
        "account_name": post.social_account.account_name if post.social_account else None,
        "video_title": post.video.title if post.video else None,
        "caption": post.caption,
        "hashtags": post.hashtags or [],
        "scheduled_for": as_utc(post.scheduled_for).isoformat(),
        "status": post.status,
        "post_url": post.post_url,
        "external_id": post.external_id,
        "failure_reason": post.failure_reason,
        "published_at": as_utc(post.published_at).isoformat() if post.published_at else None,
        "created_at": post.created_at.isoformat(),
    }


# ============================================================================
# SOCIAL ACCOUNTS
# ============================================================================

def list_social_accounts(user_id: int, db: Session) -> List[Dict]:
    accounts = db.query(SocialMediaAccount).filter(
        SocialMediaAccount.user_id == user_id,
        SocialMediaAccount.is_active == True  # noqa: E712
    ).order_by(SocialMediaAccount.created_at.desc()).all()
    return [serialize_account(a) for a in accounts]


def create_social_account(
    user_id: int,
    platform: str,
    account_name: str,
    access_token: str,
    db: Session,
    refresh_token: Optional[str] = None,
    token_expiry: Optional[datetime] = None,
    account_id: Optional[str] = None,
) -> Dict:
    """Register an account from tokens obtained outside the OAuth callback"""
    platform = SocialPlatform.from_slug(platform)
    if not account_name.strip() or not access_token:
        raise ValueError("account_name and access_token are required")

    expires_in = None
    if token_expiry:
        expires_in = max(int((as_utc(token_expiry) - utcnow()).total_seconds()), 0)

    account = save_social_account(
        user_id=user_id,
        platform=platform,
        account_name=account_name.strip(),
        access_token=access_token,
        refresh_token=refresh_token,
        expires_in=expires_in,
        account_id=account_id,
        db=db,
    )
    return serialize_account(account)


def deactivate_social_account(user_id: int, account_id: int, db: Session) -> Dict:
    """Soft delete: the account stays for post history but can no longer publish"""
    account = db.query(SocialMediaAccount).filter(SocialMediaAccount.id == account_id).first()
    if not account:
        raise ValueError("Account not found")
    if account.user_id != user_id:
        raise PermissionError("Access denied - you don't own this account")

    account.is_active = False
    db.commit()
    publish_logger.info(f"Deactivated {account.platform} account {account_id} ({account.account_name})")
    return {"success": True, "message": "Account removed successfully"}


# ============================================================================
# SCHEDULING
# ============================================================================

def resolve_video_path(video: EditedVideo) -> Path:
    """Absolute path of a clip inside MEDIA_ROOT"""
    media_root = settings.MEDIA_ROOT.resolve()
    path = (media_root / video.file_path.lstrip("/")).resolve()
    if media_root not in path.parents:
        raise ValueError("Invalid video path")
    return path


def _load_publish_targets(user_id: int, social_account_id: int, video_id: int, db: Session):
    account = db.query(SocialMediaAccount).filter(
        SocialMediaAccount.id == social_account_id,
        SocialMediaAccount.user_id == user_id,
        SocialMediaAccount.is_active == True  # noqa: E712
    ).first()
    if not account:
        raise LookupError("Social account not found or inactive")

    video = db.query(EditedVideo).filter(
        EditedVideo.id == video_id,
        EditedVideo.user_id == user_id
    ).first()
    if not video:
        raise LookupError("Video not found")

    if not resolve_video_path(video).is_file():
        raise LookupError("Video file not found")

    return account, video


def schedule_post(
    user_id: int,
    social_account_id: int,
    video_id: int,
    scheduled_for: datetime,
    db: Session,
    caption: Optional[str] = None,
    hashtags: Optional[List[str]] = None,
) -> Dict:
    """Queue a clip for publishing

    Raises:
        ValueError: If scheduled_for is not in the future
        LookupError: If the account or video is missing, inactive or not owned
    """
    scheduled_for = as_utc(scheduled_for)
    if scheduled_for <= utcnow():
        raise ValueError("Scheduled time must be in the future")

    account, video = _load_publish_targets(user_id, social_account_id, video_id, db)

    post = ScheduledPost(
        user_id=user_id,
        social_account_id=account.id,
        video_id=video.id,
        caption=caption or video.title,
        hashtags=hashtags or [],
        scheduled_for=scheduled_for,
        status=PostStatus.SCHEDULED,
    )
    db.add(post)
    db.commit()
    db.refresh(post)
    publish_logger.info(f"Scheduled post {post.id} to {account.platform} for {scheduled_for.isoformat()} (user {user_id})")
    return serialize_post(post)


def list_scheduled_posts(user_id: int, db: Session, status: Optional[str] = None, page: int = 1, limit: int = 10) -> Dict:
    if status and status not in PostStatus.ALL:
        raise ValueError(f"Invalid status: {status}")
    page = max(page, 1)
    limit = min(max(limit, 1), 100)

    query = db.query(ScheduledPost).filter(ScheduledPost.user_id == user_id)
    if status:
        query = query.filter(ScheduledPost.status == status)

    total = query.count()
    posts = query.order_by(ScheduledPost.scheduled_for.asc()).offset((page - 1) * limit).limit(limit).all()

    return {
        "posts": [serialize_post(p) for p in posts],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": (total + limit - 1) // limit,
        }
    }


def get_owned_post(user_id: int, post_id: int, db: Session) -> ScheduledPost:
    post = db.query(ScheduledPost).filter(ScheduledPost.id == post_id).first()
    if not post:
        raise LookupError("Scheduled post not found")
    if post.user_id != user_id:
        raise PermissionError("Access denied - you don't own this post")
    return post


def get_scheduled_post(user_id: int, post_id: int, db: Session) -> Dict:
    return serialize_post(get_owned_post(user_id, post_id, db))


def delete_scheduled_post(user_id: int, post_id: int, db: Session) -> Dict:
    post = get_owned_post(user_id, post_id, db)
    if post.status != PostStatus.SCHEDULED:
        raise ValueError(f"Only scheduled posts can be deleted (status: {post.status})")

    db.delete(post)
    db.commit()
    publish_logger.info(f"Deleted scheduled post {post_id} (user {user_id})")
    return {"success": True, "message": "Scheduled post deleted"}


# ============================================================================
# PUBLISHING
# ============================================================================

async def _run_publish(post: ScheduledPost, db: Session) -> ScheduledPost:
    """Publish a post that is already PROCESSING; always ends PUBLISHED or FAILED"""
    platform = post.social_account.platform if post.social_account else "UNKNOWN"
    try:
        account = post.social_account
        if not account or not account.is_active:
            raise ValueError("Social account is not connected")

        video_path = resolve_video_path(post.video)
        if not video_path.is_file():
            raise ValueError(f"Video file not found: {post.video.file_path}")

        access_token = await get_valid_access_token(account, db)
        result = await get_publisher(platform).publish(
            account=account,
            access_token=access_token,
            video_path=video_path,
            title=post.video.title,
            caption=post.caption,
            hashtags=post.hashtags or [],
        )
    except Exception as e:
        publish_logger.error(f"Post {post.id} to {platform} failed: {type(e).__name__}: {e}", exc_info=True)
        db.rollback()
        posts_failed_counter.labels(platform=platform).inc()
        return transition_post(post, PostStatus.FAILED, db, failure_reason=str(e) or type(e).__name__)

    posts_published_counter.labels(platform=platform).inc()
    publish_logger.info(f"Post {post.id} published to {platform}: {result.get('post_url')}")
    return transition_post(
        post, PostStatus.PUBLISHED, db,
        post_url=result.get("post_url"),
        external_id=result.get("external_id"),
    )


async def publish_post(post: ScheduledPost, db: Session) -> ScheduledPost:
    """Claim a SCHEDULED post and publish it"""
    transition_post(post, PostStatus.PROCESSING, db)
    return await _run_publish(post, db)


async def publish_now(
    user_id: int,
    social_account_id: int,
    video_id: int,
    db: Session,
    caption: Optional[str] = None,
    hashtags: Optional[List[str]] = None,
) -> Dict:
    """Publish immediately; recorded as a post scheduled for now"""
    account, video = _load_publish_targets(user_id, social_account_id, video_id, db)

    post = ScheduledPost(
        user_id=user_id,
        social_account_id=account.id,
        video_id=video.id,
        caption=caption or video.title,
        hashtags=hashtags or [],
        scheduled_for=utcnow(),
        status=PostStatus.SCHEDULED,
    )
    db.add(post)
    db.commit()
    db.refresh(post)

    post = await publish_post(post, db)
    return serialize_post(post)


def start_retry(user_id: int, post_id: int, db: Session) -> ScheduledPost:
    """Move a FAILED post back to PROCESSING; the caller publishes it in the background"""
    post = get_owned_post(user_id, post_id, db)
    if post.status != PostStatus.FAILED:
        raise ValueError(f"Only failed posts can be retried (status: {post.status})")

    transition_post(post, PostStatus.PROCESSING, db, retry=True)
    publish_logger.info(f"Retrying post {post_id} (user {user_id})")
    return post


async def retry_post_in_background(post_id: int) -> None:
    """Background task body: publish a retried post with its own session"""
    from reelcast.db.session import SessionLocal

    db = SessionLocal()
    try:
        post = db.query(ScheduledPost).filter(ScheduledPost.id == post_id).first()
        if post and post.status == PostStatus.PROCESSING:
            await _run_publish(post, db)
    finally:
        db.close()


# ============================================================================
# CRON
# ============================================================================

def fail_stale_posts(db: Session) -> int:
    """Fail posts left in PROCESSING longer than STALE_PROCESSING_MINUTES (e.g. after a crash)"""
    cutoff = utcnow() - timedelta(minutes=settings.STALE_PROCESSING_MINUTES)
    stale_posts = db.query(ScheduledPost).filter(
        ScheduledPost.status == PostStatus.PROCESSING,
        ScheduledPost.updated_at < cutoff
    ).all()

    for post in stale_posts:
        publish_logger.warning(f"Post {post.id} stuck in PROCESSING since {post.updated_at}, marking FAILED")
        transition_post(post, PostStatus.FAILED, db, failure_reason="Publishing timed out")
    return len(stale_posts)


async def process_due_posts(db: Session) -> Dict:
    """Publish every SCHEDULED post whose time has come

    Each due post is attempted once. Attempts run concurrently and one
    failure does not affect the others.
    """
    try:
        stale_count = fail_stale_posts(db)

        due_posts = db.query(ScheduledPost).filter(
            ScheduledPost.status == PostStatus.SCHEDULED,
            ScheduledPost.scheduled_for <= utcnow()
        ).order_by(ScheduledPost.scheduled_for.asc()).all()
        posts_due_gauge.set(len(due_posts))
        publish_logger.info(f"Processing {len(due_posts)} due post(s), {stale_count} stale post(s) failed")

        # Claim every post before any upload starts
        claimed = []
        for post in due_posts:
            try:
                claimed.append(transition_post(post, PostStatus.PROCESSING, db))
            except InvalidTransitionError as e:
                publish_logger.warning(f"Skipping post {post.id}: {e}")

        outcomes = await asyncio.gather(*(_run_publish(post, db) for post in claimed), return_exceptions=True)

        results = []
        for post, outcome in zip(claimed, outcomes):
            if isinstance(outcome, BaseException):
                # _run_publish only raises if recording the failure itself failed
                publish_logger.error(f"Unexpected error finishing post {post.id}: {outcome}", exc_info=outcome)
                db.rollback()
                db.refresh(post)
                if post.status == PostStatus.PROCESSING:
                    transition_post(post, PostStatus.FAILED, db, failure_reason=str(outcome))
            results.append({
                "id": post.id,
                "status": post.status,
                "post_url": post.post_url,
                "failure_reason": post.failure_reason,
            })
    except Exception:
        cron_runs_counter.labels(status="error").inc()
        raise

    cron_runs_counter.labels(status="success").inc()
    return {"processed": len(results), "results": results}
