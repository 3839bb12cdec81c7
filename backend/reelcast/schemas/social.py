"""Pydantic schemas for social accounts and scheduled posts"""
from datetime import datetime
from pydantic import BaseModel, Field
from typing import List, Optional


class SocialAccountRequest(BaseModel):
    """Manually register (or update) a connected account"""
    platform: str
    account_name: str
    access_token: str
    refresh_token: Optional[str] = None
    token_expiry: Optional[datetime] = None
    account_id: Optional[str] = None


class PublishRequest(BaseModel):
    social_account_id: int
    video_id: int
    caption: Optional[str] = None
    hashtags: List[str] = Field(default_factory=list)


class SchedulePostRequest(PublishRequest):
    scheduled_for: datetime
