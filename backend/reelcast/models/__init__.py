"""SQLAlchemy models package - imports all models so they register with Base.metadata"""
from reelcast.models.base import Base
from reelcast.models.user import User
from reelcast.models.subscription import Subscription
from reelcast.models.subscription_plan import SubscriptionPlan
from reelcast.models.video import Video
from reelcast.models.edited_video import EditedVideo
from reelcast.models.social_account import SocialMediaAccount, SocialPlatform
from reelcast.models.scheduled_post import ScheduledPost, PostStatus
from reelcast.models.stripe_event import StripeEvent
from reelcast.models.app_setting import AppSetting

__all__ = [
    "Base", "User", "Subscription", "SubscriptionPlan", "Video", "EditedVideo",
    "SocialMediaAccount", "SocialPlatform", "ScheduledPost", "PostStatus",
    "StripeEvent", "AppSetting"
]
