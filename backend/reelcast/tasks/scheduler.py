"""In-process publish loop: runs the same batch as the cron endpoint on an interval"""
import asyncio
import logging

from reelcast.core.config import settings
from reelcast.db.session import SessionLocal
from reelcast.services.publish_service import process_due_posts

logger = logging.getLogger(__name__)


async def run_publish_cycle() -> dict:
    """One tick: publish everything that is due, with a fresh session"""
    db = SessionLocal()
    try:
        return await process_due_posts(db)
    finally:
        db.close()


async def scheduler_task(interval: int = None):
    """Background task that publishes due scheduled posts every SCHEDULER_INTERVAL seconds"""
    interval = interval or settings.SCHEDULER_INTERVAL
    logger.info(f"Publish scheduler started (interval {interval}s)")
    while True:
        try:
            await asyncio.sleep(interval)
            result = await run_publish_cycle()
            if result["processed"]:
                logger.info(f"Scheduler processed {result['processed']} post(s)")
        except asyncio.CancelledError:
            logger.info("Publish scheduler stopped")
            raise
        except Exception as e:
            logger.error(f"Error in scheduler task: {e}", exc_info=True)
