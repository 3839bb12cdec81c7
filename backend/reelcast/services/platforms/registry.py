"""Platform publisher registry"""
from reelcast.models.social_account import SocialPlatform
from reelcast.services.platforms.base import BasePublisher
from reelcast.services.platforms.facebook import FacebookPublisher
from reelcast.services.platforms.instagram import InstagramPublisher
from reelcast.services.platforms.tiktok import TikTokPublisher
from reelcast.services.platforms.youtube import YouTubePublisher

PUBLISHERS = {
    SocialPlatform.YOUTUBE: YouTubePublisher(),
    SocialPlatform.TIKTOK: TikTokPublisher(),
    SocialPlatform.INSTAGRAM: InstagramPublisher(),
    SocialPlatform.FACEBOOK: FacebookPublisher(),
}


def get_publisher(platform: str) -> BasePublisher:
    publisher = PUBLISHERS.get(platform)
    if publisher is None:
        raise ValueError(f"Unsupported platform: {platform}")
    return publisher
