"""Platform publishers for YouTube, TikTok, Instagram and Facebook"""
from reelcast.services.platforms.base import BasePublisher, PublishError
from reelcast.services.platforms.registry import PUBLISHERS, get_publisher

__all__ = ["BasePublisher", "PublishError", "PUBLISHERS", "get_publisher"]
