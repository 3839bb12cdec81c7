"""TikTok direct post: init, single-chunk FILE_UPLOAD, then poll the publish status"""
import asyncio
from pathlib import Path
from typing import Dict, List, Optional

from reelcast.core.config import TIKTOK_INIT_UPLOAD_URL, TIKTOK_STATUS_FETCH_URL
from reelcast.core.logging import tiktok_logger
from reelcast.models.social_account import SocialMediaAccount, SocialPlatform
from reelcast.services.platforms.base import BasePublisher, PublishError, build_caption, error_detail

TIKTOK_TITLE_LIMIT = 2200

CONTENT_TYPES = {".mp4": "video/mp4", ".mov": "video/quicktime", ".webm": "video/webm"}


class TikTokPublisher(BasePublisher):
    platform = SocialPlatform.TIKTOK

    status_poll_attempts = 20
    status_poll_interval = 5.0  # seconds
    privacy_level = "PUBLIC_TO_EVERYONE"

    async def publish(
        self,
        account: SocialMediaAccount,
        access_token: str,
        video_path: Path,
        title: str,
        caption: str,
        hashtags: Optional[List[str]] = None,
    ) -> Dict[str, Optional[str]]:
        video_data = await asyncio.to_thread(video_path.read_bytes)
        video_size = len(video_data)
        headers = {
            "Authorization": f"Bearer {access_token.strip()}",
            "Content-Type": "application/json; charset=UTF-8"
        }

        async with self.http_client() as client:
            # Step 1: Initialize the post
            init_response = await client.post(
                TIKTOK_INIT_UPLOAD_URL,
                headers=headers,
                json={
                    "post_info": {
                        "title": build_caption(caption, hashtags)[:TIKTOK_TITLE_LIMIT],
                        "privacy_level": self.privacy_level,
                        "disable_duet": False,
                        "disable_comment": False,
                        "disable_stitch": False,
                        "video_cover_timestamp_ms": 1000
                    },
                    "source_info": {
                        "source": "FILE_UPLOAD",
                        "video_size": video_size,
                        "chunk_size": video_size,
                        "total_chunk_count": 1
                    }
                }
            )
            if init_response.status_code != 200:
                raise PublishError(f"TikTok init failed: HTTP {init_response.status_code} - {error_detail(init_response)}")

            init_data = init_response.json().get("data", {})
            publish_id = init_data.get("publish_id")
            upload_url = init_data.get("upload_url")
            if not publish_id or not upload_url:
                raise PublishError(f"TikTok did not return publish_id/upload_url: {init_data}")
            tiktok_logger.info(f"TikTok post initialized: {publish_id}")

            # Step 2: Upload the file in one chunk
            upload_response = await client.put(
                upload_url,
                headers={
                    "Content-Range": f"bytes 0-{video_size - 1}/{video_size}",
                    "Content-Type": CONTENT_TYPES.get(video_path.suffix.lower(), "video/mp4")
                },
                content=video_data
            )
            if upload_response.status_code not in (200, 201):
                raise PublishError(f"TikTok file upload failed: HTTP {upload_response.status_code} - {error_detail(upload_response)}")

            # Step 3: Wait for TikTok to finish processing
            post_id = None
            for attempt in range(self.status_poll_attempts):
                status_response = await client.post(TIKTOK_STATUS_FETCH_URL, headers=headers, json={"publish_id": publish_id})
                if status_response.status_code == 200:
                    status_data = status_response.json().get("data", {})
                    status = status_data.get("status")
                    tiktok_logger.debug(f"TikTok publish status (attempt {attempt + 1}): {status}")

                    if status == "PUBLISH_COMPLETE":
                        # TikTok's field name is misspelled in its API
                        post_ids = status_data.get("publicaly_available_post_id") or []
                        post_id = str(post_ids[0]) if post_ids else None
                        break
                    if status == "FAILED":
                        raise PublishError(f"TikTok rejected the video: {status_data.get('fail_reason', 'unknown_error')}")
                else:
                    tiktok_logger.warning(f"TikTok status check returned HTTP {status_response.status_code}")

                if attempt < self.status_poll_attempts - 1:
                    await asyncio.sleep(self.status_poll_interval)
            else:
                raise PublishError(f"TikTok post {publish_id} did not finish processing in time")

        profile = account.extra_data.get("username") if account.extra_data else None
        if post_id and profile:
            post_url = f"https://www.tiktok.com/@{profile}/video/{post_id}"
        else:
            post_url = "https://www.tiktok.com/"

        tiktok_logger.info(f"TikTok post {publish_id} published for account '{account.account_name}'")
        return {"external_id": post_id or publish_id, "post_url": post_url}
