"""Logging configuration for the application"""
import logging

from reelcast.core.config import settings


def setup_logging():
    """Configure logging for the application"""
    LOG_LEVEL = settings.LOG_LEVEL.upper()
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        force=True
    )

    # Silence noisy third-party libraries
    logging.getLogger("stripe").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("urllib3.connectionpool").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("googleapiclient.discovery_cache").setLevel(logging.ERROR)


# Loggers shared across services. Handlers are attached by setup_logging().
publish_logger = logging.getLogger("publish")
oauth_logger = logging.getLogger("oauth")
billing_logger = logging.getLogger("billing")
youtube_logger = logging.getLogger("youtube")
tiktok_logger = logging.getLogger("tiktok")
instagram_logger = logging.getLogger("instagram")
facebook_logger = logging.getLogger("facebook")
security_logger = logging.getLogger("security")
video_logger = logging.getLogger("video")
admin_logger = logging.getLogger("admin")
api_access_logger = logging.getLogger("api_access")
