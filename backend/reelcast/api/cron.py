"""Cron-triggered publishing of due scheduled posts"""
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from reelcast.core.security import require_cron_key
from reelcast.db.session import get_db
from reelcast.services.publish_service import process_due_posts

router = APIRouter(prefix="/api/cron", tags=["cron"])
logger = logging.getLogger(__name__)


@router.api_route("/process-scheduled-posts", methods=["GET", "POST"], dependencies=[Depends(require_cron_key)])
async def process_scheduled_posts(db: Session = Depends(get_db)):
    """Publish every post whose time has come; requires the X-API-Key header"""
    return await process_due_posts(db)
