"""Abstract base class for platform publishers"""
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional

import httpx

from reelcast.models.social_account import SocialMediaAccount


class PublishError(Exception):
    """Raised when a platform rejects an upload or publish step"""


def build_caption(caption: str, hashtags: Optional[List[str]] = None) -> str:
    """Append '#tag' for each hashtag to the caption"""
    tags = " ".join(f"#{tag.lstrip('#')}" for tag in (hashtags or []) if tag and tag.strip("# "))
    return f"{caption} {tags}".strip() if tags else caption


def error_detail(response: httpx.Response):
    """Best-effort error payload from a provider response"""
    if response.headers.get("content-type", "").startswith("application/json"):
        try:
            return response.json()
        except ValueError:
            pass
    return response.text[:500]


class BasePublisher(ABC):
    """Interface contract for platform publishers.

    Each publisher uploads a local video file to one connected account and
    returns the platform's id for the new post plus a public URL.
    """

    platform: str = ""

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.transport = transport

    def http_client(self, timeout: float = 300.0) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout, transport=self.transport)

    @abstractmethod
    async def publish(
        self,
        account: SocialMediaAccount,
        access_token: str,
        video_path: Path,
        title: str,
        caption: str,
        hashtags: Optional[List[str]] = None,
    ) -> Dict[str, Optional[str]]:
        """Upload and publish a video.

        Args:
            account: Connected account to publish to
            access_token: Decrypted, fresh access token for the account
            video_path: Absolute path to the video file
            title: Video title (used where the platform has one)
            caption: Post caption / description
            hashtags: Tags without the leading '#'

        Returns:
            Dict with external_id and post_url

        Raises:
            PublishError: If any platform step fails
        """
        pass
