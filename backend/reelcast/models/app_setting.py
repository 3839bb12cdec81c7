"""AppSetting model"""
from sqlalchemy import Column, Integer, String, Text, DateTime
from datetime import datetime, timezone
from reelcast.models.base import Base


class AppSetting(Base):
    """System-wide settings (not user-specific), stored as key/value text"""
    __tablename__ = "app_settings"

    id = Column(Integer, primary_key=True, index=True)
    key = Column(String(100), unique=True, nullable=False, index=True)
    value = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc), nullable=False)
