"""Subscription plans, usage minutes and upload gating"""
import logging
import math
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from reelcast.core.config import settings
from reelcast.models.subscription import Subscription
from reelcast.models.subscription_plan import SubscriptionPlan
from reelcast.models.user import User
from reelcast.models.video import Video
from reelcast.utils.dates import as_utc, utcnow

logger = logging.getLogger(__name__)

PRICING_PATH = "/dashboard/pricing"

DEFAULT_PLANS: List[Dict[str, Any]] = [
    {
        "name": "Basic",
        "description": "For creators getting started with short-form video",
        "monthly_price": 19.0,
        "yearly_price": 15.0 * 12,
        "minutes_allowed": 100,
        "max_file_size": 300,
        "max_concurrent_requests": 2,
        "storage_duration": 7,
        "features": [
            "100 minutes of video processing",
            "Up to 300MB per video",
            "Animated captions",
            "Publish to YouTube, TikTok, Instagram and Facebook",
            "7-day storage",
        ],
    },
    {
        "name": "Advanced",
        "description": "For creators publishing every week",
        "monthly_price": 29.0,
        "yearly_price": 23.0 * 12,
        "minutes_allowed": 200,
        "max_file_size": 1000,
        "max_concurrent_requests": 5,
        "storage_duration": 14,
        "features": [
            "200 minutes of video processing",
            "Up to 1GB per video",
            "Animated captions and caption presets",
            "Scheduled publishing",
            "14-day storage",
        ],
    },
    {
        "name": "Expert",
        "description": "For teams and agencies",
        "monthly_price": 59.0,
        "yearly_price": 47.0 * 12,
        "minutes_allowed": 500,
        "max_file_size": 2000,
        "max_concurrent_requests": 10,
        "storage_duration": 30,
        "features": [
            "500 minutes of video processing",
            "Up to 2GB per video",
            "Animated captions and caption presets",
            "Scheduled publishing",
            "Priority processing",
            "30-day storage",
        ],
    },
]

PLAN_FIELDS = (
    "name", "description", "monthly_price", "yearly_price", "features", "minutes_allowed",
    "max_file_size", "max_concurrent_requests", "storage_duration", "is_active",
)


def minutes_for_duration(duration_seconds: float) -> int:
    """Usage is charged in whole minutes, rounded up"""
    if not duration_seconds or duration_seconds <= 0:
        return 0
    return math.ceil(duration_seconds / 60)


# ============================================================================
# PLANS
# ============================================================================

def serialize_plan(plan: SubscriptionPlan) -> Dict:
    return {
        "id": plan.id,
        "name": plan.name,
        "slug": plan.slug,
        "description": plan.description,
        "monthly_price": plan.monthly_price,
        "yearly_price": plan.yearly_price,
        "features": plan.features or [],
        "minutes_allowed": plan.minutes_allowed,
        "max_file_size": plan.max_file_size,
        "max_concurrent_requests": plan.max_concurrent_requests,
        "storage_duration": plan.storage_duration,
        "is_active": plan.is_active,
    }


def list_active_plans(db: Session) -> List[Dict]:
    plans = db.query(SubscriptionPlan).filter(SubscriptionPlan.is_active == True).order_by(SubscriptionPlan.monthly_price.asc()).all()  # noqa: E712
    return [serialize_plan(p) for p in plans]


def list_all_plans(db: Session) -> List[Dict]:
    plans = db.query(SubscriptionPlan).order_by(SubscriptionPlan.monthly_price.asc()).all()
    return [serialize_plan(p) for p in plans]


def _validate_plan_values(values: Dict[str, Any]) -> None:
    for field in ("monthly_price", "yearly_price"):
        if values.get(field) is not None and values[field] < 0:
            raise ValueError(f"{field} cannot be negative")
    for field in ("minutes_allowed", "max_file_size", "max_concurrent_requests", "storage_duration"):
        if values.get(field) is not None and values[field] < 1:
            raise ValueError(f"{field} must be at least 1")
    if "name" in values and values["name"] is not None and not values["name"].strip():
        raise ValueError("Plan name cannot be empty")


def create_plan(values: Dict[str, Any], db: Session) -> Dict:
    _validate_plan_values(values)
    name = values["name"].strip()
    if db.query(SubscriptionPlan).filter(SubscriptionPlan.name == name).first():
        raise ValueError(f"A plan named '{name}' already exists")

    plan = SubscriptionPlan(**{k: v for k, v in values.items() if k in PLAN_FIELDS})
    plan.name = name
    db.add(plan)
    db.commit()
    db.refresh(plan)
    logger.info(f"Created subscription plan {plan.name} (ID: {plan.id})")
    return serialize_plan(plan)


def update_plan(plan_id: int, values: Dict[str, Any], db: Session) -> Dict:
    plan = db.query(SubscriptionPlan).filter(SubscriptionPlan.id == plan_id).first()
    if not plan:
        raise LookupError("Plan not found")

    values = {k: v for k, v in values.items() if k in PLAN_FIELDS and v is not None}
    _validate_plan_values(values)
    if "name" in values:
        values["name"] = values["name"].strip()
        clash = db.query(SubscriptionPlan).filter(SubscriptionPlan.name == values["name"], SubscriptionPlan.id != plan_id).first()
        if clash:
            raise ValueError(f"A plan named '{values['name']}' already exists")

    for key, value in values.items():
        setattr(plan, key, value)
    db.commit()
    db.refresh(plan)
    logger.info(f"Updated subscription plan {plan.name} (ID: {plan.id}): {sorted(values)}")
    return serialize_plan(plan)


def delete_plan(plan_id: int, db: Session) -> Dict:
    """Delete an unused plan; a plan with subscribers is only deactivated"""
    plan = db.query(SubscriptionPlan).filter(SubscriptionPlan.id == plan_id).first()
    if not plan:
        raise LookupError("Plan not found")

    in_use = db.query(Subscription).filter(Subscription.plan_id == plan_id).count()
    if in_use:
        plan.is_active = False
        db.commit()
        logger.info(f"Deactivated plan {plan.name} ({in_use} subscriber(s))")
        return {"success": True, "deactivated": True, "message": f"Plan has {in_use} subscriber(s) and was deactivated"}

    db.delete(plan)
    db.commit()
    logger.info(f"Deleted plan {plan_id}")
    return {"success": True, "deactivated": False, "message": "Plan deleted"}


def seed_default_plans(db: Session) -> List[str]:
    """Create the Basic, Advanced and Expert plans if missing. Returns the names created."""
    created = []
    for values in DEFAULT_PLANS:
        if db.query(SubscriptionPlan).filter(SubscriptionPlan.name == values["name"]).first():
            continue
        db.add(SubscriptionPlan(**values))
        created.append(values["name"])
    db.commit()
    if created:
        logger.info(f"Seeded subscription plans: {', '.join(created)}")
    return created


# ============================================================================
# USER SUBSCRIPTION & USAGE
# ============================================================================

def serialize_subscription(subscription: Subscription) -> Dict:
    return {
        "id": subscription.id,
        "user_id": subscription.user_id,
        "plan": subscription.plan,
        "plan_id": subscription.plan_id,
        "plan_name": subscription.subscription_plan.name if subscription.subscription_plan else subscription.plan.title(),
        "status": subscription.status,
        "start_date": as_utc(subscription.start_date).isoformat() if subscription.start_date else None,
        "end_date": as_utc(subscription.end_date).isoformat() if subscription.end_date else None,
        "minutes_used": subscription.minutes_used,
        "minutes_allowed": subscription.minutes_allowed,
        "minutes_remaining": max(subscription.minutes_allowed - subscription.minutes_used, 0),
        "stripe_subscription_id": subscription.stripe_subscription_id,
        "stripe_current_period_end": (
            as_utc(subscription.stripe_current_period_end).isoformat() if subscription.stripe_current_period_end else None
        ),
    }


def get_user_subscription(user_id: int, db: Session) -> Dict:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise LookupError("User not found")

    return {
        "is_subscribed": user.is_subscribed,
        "subscription": serialize_subscription(user.subscription) if user.subscription else None,
        "video_count": db.query(Video).filter(Video.user_id == user_id).count(),
        "free_video_limit": settings.FREE_VIDEO_LIMIT,
    }


def can_upload(user_id: int, db: Session) -> Dict:
    """Decide whether the user may upload another video

    Subscribers are limited by their period end and minutes; everyone else
    gets FREE_VIDEO_LIMIT videos.
    """
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise LookupError("User not found")

    video_count = db.query(Video).filter(Video.user_id == user_id).count()

    if user.is_subscribed:
        period_end = as_utc(user.stripe_current_period_end)
        if period_end and period_end < utcnow():
            return {
                "allowed": False,
                "code": "subscription_expired",
                "message": "Your subscription has expired. Please renew to continue uploading.",
                "redirect_to": PRICING_PATH,
            }

        subscription = user.subscription
        if subscription and subscription.minutes_used >= subscription.minutes_allowed:
            return {
                "allowed": False,
                "code": "usage_limit_reached",
                "message": f"You've reached your {subscription.minutes_allowed} minutes limit. Please upgrade your plan for more.",
                "used_minutes": subscription.minutes_used,
                "allowed_minutes": subscription.minutes_allowed,
                "redirect_to": PRICING_PATH,
            }

        return {
            "allowed": True,
            "code": None,
            "message": "Upload allowed",
            "used_minutes": subscription.minutes_used if subscription else 0,
            "allowed_minutes": subscription.minutes_allowed if subscription else 0,
        }

    if video_count >= settings.FREE_VIDEO_LIMIT:
        return {
            "allowed": False,
            "code": "free_limit_reached",
            "message": f"You've used all {settings.FREE_VIDEO_LIMIT} free videos. Subscribe to keep creating.",
            "video_count": video_count,
            "free_limit": settings.FREE_VIDEO_LIMIT,
            "redirect_to": PRICING_PATH,
        }

    return {
        "allowed": True,
        "code": None,
        "message": "Upload allowed",
        "video_count": video_count,
        "free_limit": settings.FREE_VIDEO_LIMIT,
        "remaining_free_videos": settings.FREE_VIDEO_LIMIT - video_count,
    }


def add_minutes_used(user_id: int, minutes: int, db: Session) -> Optional[Subscription]:
    """Add (or, with a negative value, give back) usage minutes on the user's subscription"""
    subscription = db.query(Subscription).filter(Subscription.user_id == user_id).first()
    if not subscription or minutes == 0:
        return subscription

    subscription.minutes_used = max(subscription.minutes_used + minutes, 0)
    db.commit()
    logger.info(f"User {user_id} usage {minutes:+d} min -> {subscription.minutes_used}/{subscription.minutes_allowed}")
    return subscription
