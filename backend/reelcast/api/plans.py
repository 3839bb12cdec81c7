"""Public subscription plan listing"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from reelcast.db.session import get_db
from reelcast.services.subscription_service import list_active_plans

router = APIRouter(prefix="/api/subscription-plans", tags=["plans"])


@router.get("")
def get_plans(db: Session = Depends(get_db)):
    return {"plans": list_active_plans(db)}
