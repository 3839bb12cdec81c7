"""YouTube publishing via the Data API v3 resumable upload"""
import asyncio
from pathlib import Path
from typing import Dict, List, Optional

from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import MediaFileUpload

from reelcast.core.logging import youtube_logger
from reelcast.models.social_account import SocialMediaAccount, SocialPlatform
from reelcast.services.platforms.base import BasePublisher, PublishError

YOUTUBE_TITLE_LIMIT = 100
YOUTUBE_CATEGORY_PEOPLE_AND_BLOGS = "22"


class YouTubePublisher(BasePublisher):
    platform = SocialPlatform.YOUTUBE

    def _upload(self, access_token: str, video_path: Path, title: str, description: str, tags: List[str]) -> Dict:
        creds = Credentials(token=access_token)
        youtube = build("youtube", "v3", credentials=creds, cache_discovery=False)

        snippet = {
            "title": title[:YOUTUBE_TITLE_LIMIT],
            "description": description,
            "categoryId": YOUTUBE_CATEGORY_PEOPLE_AND_BLOGS,
        }
        if tags:
            snippet["tags"] = tags

        request = youtube.videos().insert(
            part="snippet,status",
            body={
                "snippet": snippet,
                "status": {"privacyStatus": "public"},
            },
            media_body=MediaFileUpload(str(video_path), chunksize=-1, resumable=True, mimetype="video/*")
        )

        response = None
        while response is None:
            status, response = request.next_chunk()
            if status:
                youtube_logger.debug(f"Upload progress: {int(status.progress() * 100)}%")
        return response

    async def publish(
        self,
        account: SocialMediaAccount,
        access_token: str,
        video_path: Path,
        title: str,
        caption: str,
        hashtags: Optional[List[str]] = None,
    ) -> Dict[str, Optional[str]]:
        youtube_logger.info(f"Starting resumable upload of {video_path.name} to channel '{account.account_name}'")
        tags = [tag.lstrip("#") for tag in (hashtags or []) if tag.strip("# ")]

        try:
            # The client library is blocking
            response = await asyncio.to_thread(self._upload, access_token, video_path, title, caption, tags)
        except HttpError as e:
            youtube_logger.error(f"YouTube upload failed: {e.resp.status} - {e.content[:500]!r}")
            raise PublishError(f"YouTube upload failed: HTTP {e.resp.status}")

        video_id = response.get("id")
        if not video_id:
            raise PublishError(f"YouTube did not return a video id: {response}")

        youtube_logger.info(f"Successfully uploaded {video_path.name}, YouTube ID: {video_id}")
        return {"external_id": video_id, "post_url": f"https://www.youtube.com/watch?v={video_id}"}
