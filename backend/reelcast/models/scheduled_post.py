"""ScheduledPost model"""
from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, JSON, Index
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from reelcast.models.base import Base


class PostStatus:
    SCHEDULED = "SCHEDULED"
    PROCESSING = "PROCESSING"
    PUBLISHED = "PUBLISHED"
    FAILED = "FAILED"

    ALL = (SCHEDULED, PROCESSING, PUBLISHED, FAILED)


class ScheduledPost(Base):
    """A clip queued for publishing to one social account at a given time"""
    __tablename__ = "scheduled_posts"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    social_account_id = Column(Integer, ForeignKey("social_media_accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    video_id = Column(Integer, ForeignKey("edited_videos.id", ondelete="CASCADE"), nullable=False, index=True)
    caption = Column(Text, nullable=False)
    hashtags = Column(JSON, default=list, nullable=False)
    scheduled_for = Column(DateTime(timezone=True), nullable=False)
    status = Column(String(20), default=PostStatus.SCHEDULED, nullable=False)
    post_url = Column(String(1024), nullable=True)
    external_id = Column(String(255), nullable=True)
    failure_reason = Column(Text, nullable=True)
    published_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc), nullable=False)

    user = relationship("User", back_populates="scheduled_posts")
    social_account = relationship("SocialMediaAccount", back_populates="scheduled_posts")
    video = relationship("EditedVideo", back_populates="scheduled_posts")

    # The cron query filters on status and due time
    __table_args__ = (
        Index('ix_scheduled_posts_status_scheduled_for', 'status', 'scheduled_for'),
    )
