"""Facebook Page video publishing via the Graph API"""
import asyncio
from pathlib import Path
from typing import Dict, List, Optional

from reelcast.core.config import FACEBOOK_VIDEO_API_BASE
from reelcast.core.logging import facebook_logger
from reelcast.models.social_account import SocialMediaAccount, SocialPlatform
from reelcast.services.platforms.base import BasePublisher, PublishError, build_caption, error_detail
from reelcast.utils.encryption import decrypt


class FacebookPublisher(BasePublisher):
    platform = SocialPlatform.FACEBOOK

    async def publish(
        self,
        account: SocialMediaAccount,
        access_token: str,
        video_path: Path,
        title: str,
        caption: str,
        hashtags: Optional[List[str]] = None,
    ) -> Dict[str, Optional[str]]:
        extra_data = account.extra_data or {}
        page_id = extra_data.get("page_id")
        if not page_id:
            raise PublishError("No Facebook Page is linked to this account. Please reconnect Facebook.")

        # Page uploads need the page token captured at connect time
        page_token = decrypt(extra_data["page_access_token"]) if extra_data.get("page_access_token") else access_token

        video_data = await asyncio.to_thread(video_path.read_bytes)
        async with self.http_client() as client:
            response = await client.post(
                f"{FACEBOOK_VIDEO_API_BASE}/{page_id}/videos",
                data={
                    "title": title,
                    "description": build_caption(caption, hashtags),
                    "access_token": page_token,
                },
                files={"source": (video_path.name, video_data, "video/mp4")}
            )

        if response.status_code != 200:
            raise PublishError(f"Facebook video upload failed: HTTP {response.status_code} - {error_detail(response)}")

        video_id = response.json().get("id")
        if not video_id:
            raise PublishError("Facebook did not return a video id")

        facebook_logger.info(f"Facebook video {video_id} published to page {page_id}")
        return {"external_id": video_id, "post_url": f"https://www.facebook.com/{page_id}/videos/{video_id}"}
