"""Instagram Reels publishing: resumable container, rupload, status poll, media_publish"""
import asyncio
from pathlib import Path
from typing import Dict, List, Optional

from reelcast.core.config import INSTAGRAM_GRAPH_API_BASE, INSTAGRAM_UPLOAD_BASE
from reelcast.core.logging import instagram_logger
from reelcast.models.social_account import SocialMediaAccount, SocialPlatform
from reelcast.services.platforms.base import BasePublisher, PublishError, build_caption, error_detail

INVALID_TOKEN_CODE = 190


class InstagramPublisher(BasePublisher):
    platform = SocialPlatform.INSTAGRAM

    status_poll_attempts = 10
    status_poll_interval = 10.0  # seconds

    async def publish(
        self,
        account: SocialMediaAccount,
        access_token: str,
        video_path: Path,
        title: str,
        caption: str,
        hashtags: Optional[List[str]] = None,
    ) -> Dict[str, Optional[str]]:
        ig_user_id = account.account_id or "me"
        # Read off the event loop; cron publishes run concurrently
        video_data = await asyncio.to_thread(video_path.read_bytes)
        auth_headers = {"Authorization": f"Bearer {access_token.strip()}"}

        async with self.http_client() as client:
            # Step 1: Create resumable upload container
            container_response = await client.post(
                f"{INSTAGRAM_GRAPH_API_BASE}/{ig_user_id}/media",
                json={
                    "media_type": "REELS",
                    "upload_type": "resumable",
                    "caption": build_caption(caption, hashtags),
                },
                headers=auth_headers
            )
            if container_response.status_code != 200:
                detail = error_detail(container_response)
                if isinstance(detail, dict) and detail.get("error", {}).get("code") == INVALID_TOKEN_CODE:
                    raise PublishError("Instagram access token is invalid or expired. Please reconnect your Instagram account.")
                raise PublishError(f"Failed to create Instagram upload container: {detail}")

            container_id = container_response.json().get("id")
            if not container_id:
                raise PublishError(f"No container ID in response: {container_response.text[:200]}")
            instagram_logger.info(f"Created container {container_id}")

            # Step 2: Upload the video bytes
            upload_response = await client.post(
                f"{INSTAGRAM_UPLOAD_BASE}/{container_id}",
                headers={
                    "Authorization": f"OAuth {access_token}",
                    "offset": "0",
                    "file_size": str(len(video_data))
                },
                content=video_data
            )
            if upload_response.status_code != 200 or not upload_response.json().get("success"):
                raise PublishError(f"Failed to upload video data: {error_detail(upload_response)}")
            instagram_logger.info(f"Uploaded {len(video_data)} bytes to container {container_id}")

            # Step 3: Wait for Instagram to process the video
            for attempt in range(self.status_poll_attempts):
                status_response = await client.get(
                    f"{INSTAGRAM_GRAPH_API_BASE}/{container_id}",
                    params={"fields": "status_code"},
                    headers=auth_headers
                )
                if status_response.status_code == 200:
                    status_code = status_response.json().get("status_code")
                    instagram_logger.debug(f"Container status (attempt {attempt + 1}): {status_code}")
                    if status_code == "FINISHED":
                        break
                    if status_code == "ERROR":
                        raise PublishError("Instagram container processing failed")
                    if status_code == "EXPIRED":
                        raise PublishError("Instagram container expired")

                if attempt < self.status_poll_attempts - 1:
                    await asyncio.sleep(self.status_poll_interval)
            else:
                raise PublishError(f"Instagram container {container_id} did not finish processing in time")

            # Step 4: Publish the container
            publish_response = await client.post(
                f"{INSTAGRAM_GRAPH_API_BASE}/{ig_user_id}/media_publish",
                json={"creation_id": container_id},
                headers=auth_headers
            )
            if publish_response.status_code != 200:
                raise PublishError(f"Failed to publish Instagram container: {error_detail(publish_response)}")

            media_id = publish_response.json().get("id")
            if not media_id:
                raise PublishError("Instagram did not return a media id")

            post_url = "https://www.instagram.com/"
            permalink_response = await client.get(
                f"{INSTAGRAM_GRAPH_API_BASE}/{media_id}",
                params={"fields": "permalink"},
                headers=auth_headers
            )
            if permalink_response.status_code == 200:
                post_url = permalink_response.json().get("permalink") or post_url

        instagram_logger.info(f"Instagram media {media_id} published for account '{account.account_name}'")
        return {"external_id": media_id, "post_url": post_url}
