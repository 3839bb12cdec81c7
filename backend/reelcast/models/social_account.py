"""SocialMediaAccount model"""
from sqlalchemy import Column, Integer, String, Text, DateTime, Boolean, ForeignKey, JSON, UniqueConstraint
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from reelcast.models.base import Base


class SocialPlatform:
    YOUTUBE = "YOUTUBE"
    TIKTOK = "TIKTOK"
    INSTAGRAM = "INSTAGRAM"
    FACEBOOK = "FACEBOOK"

    ALL = (YOUTUBE, TIKTOK, INSTAGRAM, FACEBOOK)

    @classmethod
    def from_slug(cls, value: str) -> str:
        """Map a URL slug such as 'youtube' to the stored platform name"""
        platform = (value or "").upper()
        if platform not in cls.ALL:
            raise ValueError(f"Unsupported platform: {value}")
        return platform


class SocialMediaAccount(Base):
    """Connected social account with OAuth credentials (encrypted)"""
    __tablename__ = "social_media_accounts"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    platform = Column(String(20), nullable=False)
    account_name = Column(String(255), nullable=False)
    account_id = Column(String(255), nullable=True)  # channel id, open_id, page id, ...
    access_token = Column(Text, nullable=False)  # Encrypted
    refresh_token = Column(Text, nullable=True)  # Encrypted
    token_expiry = Column(DateTime(timezone=True), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    extra_data = Column(JSON, default=dict)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc), nullable=False)

    user = relationship("User", back_populates="social_accounts")
    scheduled_posts = relationship("ScheduledPost", back_populates="social_account", cascade="all, delete-orphan")

    __table_args__ = (
        UniqueConstraint('user_id', 'platform', 'account_name', name='uq_social_accounts_user_platform_name'),
    )
