"""Admin service - dashboard stats, user, subscription and video management"""
import math
from datetime import timedelta
from typing import Any, Dict, Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from reelcast.core.logging import admin_logger
from reelcast.models.subscription import Subscription
from reelcast.models.subscription_plan import SubscriptionPlan
from reelcast.models.user import User, ROLE_USER, ROLE_ADMIN
from reelcast.models.video import Video
from reelcast.services.auth_service import (
    create_user, delete_user_account, hash_password, serialize_user, validate_password
)
from reelcast.services.subscription_service import serialize_subscription
from reelcast.services.video_service import serialize_video
from reelcast.utils.dates import as_utc, utcnow

DASHBOARD_WINDOW_DAYS = 7
MAX_PAGE_SIZE = 100

USER_SORT_FIELDS = {"created_at": User.created_at, "email": User.email, "name": User.name}
SUBSCRIPTION_SORT_FIELDS = {
    "start_date": Subscription.start_date,
    "end_date": Subscription.end_date,
    "minutes_used": Subscription.minutes_used,
    "status": Subscription.status,
}
VIDEO_SORT_FIELDS = {
    "uploaded_at": Video.uploaded_at,
    "title": Video.title,
    "duration": Video.duration,
    "file_size": Video.file_size,
}
SUBSCRIPTION_STATUSES = ("active", "active-canceling", "canceled", "past_due", "incomplete", "trialing", "unpaid")


def _paginate(query, page: int, page_size: int):
    page = max(page, 1)
    page_size = min(max(page_size, 1), MAX_PAGE_SIZE)
    total = query.count()
    items = query.offset((page - 1) * page_size).limit(page_size).all()
    pagination = {
        "total": total,
        "page": page,
        "page_size": page_size,
        "total_pages": math.ceil(total / page_size),
    }
    return items, pagination


def _order(query, fields: Dict[str, Any], sort_by: str, sort_order: str, default: str):
    column = fields.get(sort_by, fields[default])
    return query.order_by(column.asc() if sort_order == "asc" else column.desc())


def get_dashboard_stats(db: Session) -> Dict:
    """Counts for the admin dashboard"""
    now = utcnow()
    since = now - timedelta(days=DASHBOARD_WINDOW_DAYS)

    total_users = db.query(func.count(User.id)).scalar() or 0
    total_videos = db.query(func.count(Video.id)).scalar() or 0
    active_subscriptions = db.query(func.count(Subscription.id)).filter(
        Subscription.status.in_(("active", "active-canceling"))
    ).scalar() or 0
    new_users = db.query(func.count(User.id)).filter(User.created_at >= since).scalar() or 0
    recent_videos = db.query(func.count(Video.id)).filter(Video.uploaded_at >= since).scalar() or 0
    total_storage = db.query(func.coalesce(func.sum(Video.file_size), 0)).scalar() or 0

    by_plan = db.query(Subscription.plan, func.count(Subscription.id)).group_by(Subscription.plan).all()

    # Bucket signups per day in Python so the query stays portable across databases
    signups = {}
    for (created_at,) in db.query(User.created_at).filter(User.created_at >= since).all():
        day = as_utc(created_at).date().isoformat()
        signups[day] = signups.get(day, 0) + 1
    signup_days = [(now - timedelta(days=offset)).date().isoformat() for offset in range(DASHBOARD_WINDOW_DAYS - 1, -1, -1)]

    return {
        "overview": {
            "total_users": total_users,
            "total_videos": total_videos,
            "active_subscriptions": active_subscriptions,
            "new_users": new_users,
            "recent_videos": recent_videos,
            "total_storage": int(total_storage),
        },
        "subscriptions_by_plan": [{"plan": plan, "count": count} for plan, count in by_plan],
        "user_signup_data": [{"date": day, "count": signups.get(day, 0)} for day in signup_days],
    }


# ============================================================================
# USERS
# ============================================================================

def list_users(
    db: Session,
    page: int = 1,
    page_size: int = 10,
    search: Optional[str] = None,
    role: Optional[str] = None,
    sort_by: str = "created_at",
    sort_order: str = "desc"
) -> Dict:
    """List users with search by email or name, role filter and pagination"""
    query = db.query(User)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(User.email.ilike(pattern), User.name.ilike(pattern)))
    if role:
        query = query.filter(User.role == role)

    query = _order(query, USER_SORT_FIELDS, sort_by, sort_order, "created_at")
    users, pagination = _paginate(query, page, page_size)

    result = []
    for user in users:
        entry = serialize_user(user)
        entry["plan"] = user.subscription.plan if user.subscription else None
        entry["video_count"] = db.query(func.count(Video.id)).filter(Video.user_id == user.id).scalar() or 0
        result.append(entry)
    return {"users": result, "pagination": pagination}


def _get_user(user_id: int, db: Session) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise LookupError("User not found")
    return user


def get_user_details(user_id: int, db: Session) -> Dict:
    user = _get_user(user_id, db)
    recent_videos = db.query(Video).filter(Video.user_id == user_id).order_by(Video.uploaded_at.desc()).limit(10).all()
    return {
        "user": serialize_user(user),
        "stripe_customer_id": user.stripe_customer_id,
        "subscription": serialize_subscription(user.subscription) if user.subscription else None,
        "video_count": db.query(func.count(Video.id)).filter(Video.user_id == user_id).scalar() or 0,
        "recent_videos": [serialize_video(v) for v in recent_videos],
        "social_account_count": len([a for a in user.social_accounts if a.is_active]),
    }


def admin_create_user(values: Dict[str, Any], db: Session) -> Dict:
    validate_password(values["password"])
    user = create_user(values["email"], password=values["password"], name=values.get("name"),
                       role=values.get("role") or ROLE_USER, db=db)
    admin_logger.info(f"Created user {user.email} (ID: {user.id}, role: {user.role})")
    return {"user": serialize_user(user)}


def admin_update_user(user_id: int, values: Dict[str, Any], db: Session, acting_admin_id: Optional[int] = None) -> Dict:
    """Update name, email, role, password or the subscribed flag of a user"""
    user = _get_user(user_id, db)

    if values.get("role") is not None:
        if values["role"] not in (ROLE_USER, ROLE_ADMIN):
            raise ValueError(f"Invalid role: {values['role']}")
        if user_id == acting_admin_id and values["role"] != ROLE_ADMIN:
            raise ValueError("Cannot remove your own admin role")
        user.role = values["role"]

    if values.get("email") is not None:
        email = values["email"].strip().lower()
        clash = db.query(User).filter(User.email == email, User.id != user_id).first()
        if clash:
            raise ValueError("Email already registered")
        user.email = email

    if values.get("name") is not None:
        user.name = values["name"].strip() or None

    if values.get("password"):
        validate_password(values["password"])
        user.password_hash = hash_password(values["password"])

    if values.get("is_subscribed") is not None:
        user.is_subscribed = values["is_subscribed"]

    db.commit()
    db.refresh(user)
    changed = sorted(k for k, v in values.items() if v is not None and k != "password")
    admin_logger.info(f"Admin {acting_admin_id} updated user {user_id}: {changed}")
    return {"user": serialize_user(user)}


def admin_delete_user(user_id: int, db: Session, acting_admin_id: Optional[int] = None) -> Dict:
    if user_id == acting_admin_id:
        raise ValueError("Cannot delete your own account")

    user = _get_user(user_id, db)
    email = user.email
    delete_user_account(user_id, db)
    admin_logger.info(f"Admin {acting_admin_id} deleted user {email} (ID: {user_id})")
    return {"message": f"User {email} deleted successfully"}


# ============================================================================
# SUBSCRIPTIONS
# ============================================================================

def list_subscriptions(
    db: Session,
    page: int = 1,
    page_size: int = 10,
    search: Optional[str] = None,
    plan: Optional[str] = None,
    status: Optional[str] = None,
    sort_by: str = "start_date",
    sort_order: str = "desc"
) -> Dict:
    query = db.query(Subscription).join(User, Subscription.user_id == User.id)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(User.email.ilike(pattern), User.name.ilike(pattern)))
    if plan:
        query = query.filter(Subscription.plan == plan)
    if status:
        query = query.filter(Subscription.status == status)

    query = _order(query, SUBSCRIPTION_SORT_FIELDS, sort_by, sort_order, "start_date")
    subscriptions, pagination = _paginate(query, page, page_size)

    result = []
    for subscription in subscriptions:
        entry = serialize_subscription(subscription)
        entry["user"] = {"id": subscription.user.id, "email": subscription.user.email, "name": subscription.user.name}
        result.append(entry)

    stats = {
        "total": db.query(func.count(Subscription.id)).scalar() or 0,
        "active": db.query(func.count(Subscription.id)).filter(Subscription.status == "active").scalar() or 0,
        "canceling": db.query(func.count(Subscription.id)).filter(Subscription.status == "active-canceling").scalar() or 0,
        "canceled": db.query(func.count(Subscription.id)).filter(Subscription.status == "canceled").scalar() or 0,
    }
    return {"subscriptions": result, "pagination": pagination, "stats": stats}


def _get_subscription(subscription_id: int, db: Session) -> Subscription:
    subscription = db.query(Subscription).filter(Subscription.id == subscription_id).first()
    if not subscription:
        raise LookupError("Subscription not found")
    return subscription


def get_subscription_details(subscription_id: int, db: Session) -> Dict:
    subscription = _get_subscription(subscription_id, db)
    entry = serialize_subscription(subscription)
    entry["user"] = serialize_user(subscription.user)
    return {"subscription": entry}


def admin_update_subscription(subscription_id: int, values: Dict[str, Any], db: Session) -> Dict:
    """Change plan, status, usage counters or end date of a subscription

    Switching plans copies the plan's minute allowance unless one is given.
    """
    subscription = _get_subscription(subscription_id, db)

    if values.get("plan_id") is not None:
        plan = db.query(SubscriptionPlan).filter(SubscriptionPlan.id == values["plan_id"]).first()
        if not plan:
            raise LookupError("Plan not found")
        subscription.plan_id = plan.id
        subscription.plan = plan.slug
        subscription.minutes_allowed = plan.minutes_allowed

    if values.get("status") is not None:
        if values["status"] not in SUBSCRIPTION_STATUSES:
            raise ValueError(f"Invalid status: {values['status']}")
        subscription.status = values["status"]
        subscription.user.is_subscribed = values["status"] in ("active", "active-canceling")

    for field in ("minutes_used", "minutes_allowed"):
        if values.get(field) is not None:
            if values[field] < 0:
                raise ValueError(f"{field} cannot be negative")
            setattr(subscription, field, values[field])

    if values.get("end_date") is not None:
        subscription.end_date = values["end_date"]

    db.commit()
    db.refresh(subscription)
    admin_logger.info(f"Updated subscription {subscription_id}: {sorted(k for k, v in values.items() if v is not None)}")
    return get_subscription_details(subscription_id, db)


# ============================================================================
# VIDEOS
# ============================================================================

def list_all_videos(
    db: Session,
    page: int = 1,
    page_size: int = 10,
    search: Optional[str] = None,
    status: Optional[str] = None,
    sort_by: str = "uploaded_at",
    sort_order: str = "desc"
) -> Dict:
    query = db.query(Video).join(User, Video.user_id == User.id)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(Video.title.ilike(pattern), User.email.ilike(pattern)))
    if status:
        query = query.filter(Video.status == status)

    query = _order(query, VIDEO_SORT_FIELDS, sort_by, sort_order, "uploaded_at")
    videos, pagination = _paginate(query, page, page_size)

    result = []
    for video in videos:
        entry = serialize_video(video)
        entry["user"] = {"id": video.user.id, "email": video.user.email, "name": video.user.name}
        result.append(entry)

    status_counts = dict(db.query(Video.status, func.count(Video.id)).group_by(Video.status).all())
    return {"videos": result, "pagination": pagination, "status_counts": status_counts}
