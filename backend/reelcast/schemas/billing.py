"""Pydantic schemas for Stripe billing"""
from pydantic import BaseModel
from typing import Literal, Optional


class CheckoutRequest(BaseModel):
    plan_id: int
    billing_cycle: Literal["monthly", "yearly"] = "monthly"


class CustomerPortalRequest(BaseModel):
    return_url: Optional[str] = None
