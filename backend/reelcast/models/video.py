"""Video model"""
from sqlalchemy import Column, Integer, String, Text, Float, DateTime, ForeignKey, Index, BigInteger
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from reelcast.models.base import Base

VIDEO_STATUSES = ("uploaded", "processing", "completed", "failed")


class Video(Base):
    """Uploaded source video"""
    __tablename__ = "videos"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, default="", nullable=False)
    original_url = Column(String(1024), nullable=False)
    duration = Column(Float, nullable=False)  # seconds
    file_size = Column(BigInteger, nullable=False)  # bytes
    status = Column(String(50), default="uploaded", nullable=False)
    upload_path = Column(String(1024), nullable=False)
    external_job_id = Column(String(255), nullable=True, index=True)  # job id at the processing service
    error = Column(Text, nullable=True)
    last_status_check = Column(DateTime(timezone=True), nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    uploaded_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    user = relationship("User", back_populates="videos")

    __table_args__ = (
        Index('ix_videos_user_status', 'user_id', 'status'),
    )
