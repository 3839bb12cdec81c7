"""SubscriptionPlan model"""
from sqlalchemy import Column, Integer, String, Text, Float, Boolean, DateTime, JSON
from datetime import datetime, timezone
from reelcast.models.base import Base


class SubscriptionPlan(Base):
    """Pricing tier with its feature list and usage limits"""
    __tablename__ = "subscription_plans"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), unique=True, nullable=False)
    description = Column(Text, nullable=True)
    monthly_price = Column(Float, nullable=False)  # USD
    yearly_price = Column(Float, nullable=False)  # USD
    features = Column(JSON, default=list, nullable=False)
    minutes_allowed = Column(Integer, nullable=False)
    max_file_size = Column(Integer, nullable=False)  # MB per video
    max_concurrent_requests = Column(Integer, default=1, nullable=False)
    storage_duration = Column(Integer, default=7, nullable=False)  # days
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc), nullable=False)

    @property
    def slug(self) -> str:
        return self.name.lower().replace(" ", "_")
