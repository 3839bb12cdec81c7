"""EditedVideo model"""
from sqlalchemy import Column, Integer, String, Float, DateTime, ForeignKey, JSON, BigInteger
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from reelcast.models.base import Base


class EditedVideo(Base):
    """Rendered clip stored under MEDIA_ROOT, ready to be published"""
    __tablename__ = "edited_videos"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    source_type = Column(String(50), nullable=False)  # 'upload', 'youtube', ...
    source_id = Column(String(255), nullable=False)
    file_path = Column(String(1024), nullable=False)  # relative to MEDIA_ROOT, e.g. "editedClips/<uuid>.mp4"
    file_size = Column(BigInteger, nullable=False)
    duration = Column(Float, nullable=False)
    caption_style = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    user = relationship("User", back_populates="edited_videos")
    scheduled_posts = relationship("ScheduledPost", back_populates="video", cascade="all, delete-orphan")
