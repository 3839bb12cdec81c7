"""Pydantic schemas for admin operations"""
from datetime import datetime
from pydantic import BaseModel, EmailStr
from typing import Any, Dict, List, Optional


class CreateUserRequest(BaseModel):
    email: EmailStr
    password: str
    name: Optional[str] = None
    role: str = "user"


class UpdateUserRequest(BaseModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    role: Optional[str] = None
    password: Optional[str] = None
    is_subscribed: Optional[bool] = None


class UpdateSubscriptionRequest(BaseModel):
    plan_id: Optional[int] = None
    status: Optional[str] = None
    minutes_used: Optional[int] = None
    minutes_allowed: Optional[int] = None
    end_date: Optional[datetime] = None


class PlanRequest(BaseModel):
    name: str
    description: Optional[str] = None
    monthly_price: float
    yearly_price: float
    features: List[str] = []
    minutes_allowed: int
    max_file_size: int
    max_concurrent_requests: int = 1
    storage_duration: int = 7
    is_active: bool = True


class PlanUpdateRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    monthly_price: Optional[float] = None
    yearly_price: Optional[float] = None
    features: Optional[List[str]] = None
    minutes_allowed: Optional[int] = None
    max_file_size: Optional[int] = None
    max_concurrent_requests: Optional[int] = None
    storage_duration: Optional[int] = None
    is_active: Optional[bool] = None


class AppSettingsUpdate(BaseModel):
    settings: Dict[str, Any]


class SocialCredentialsUpdate(BaseModel):
    platform: str
    client_id: str
    client_secret: Optional[str] = None
