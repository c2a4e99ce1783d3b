"""Periodic finishing of conversations whose timeout has passed."""

import logging
from datetime import datetime

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from sqlalchemy.ext.asyncio import AsyncSession

from wa_checkpoints.core.clock import utcnow
from wa_checkpoints.core.config import settings
from wa_checkpoints.db.session import AsyncSessionLocal
from wa_checkpoints.services import conversations

logger = logging.getLogger(__name__)

JOB_ID = "sweep_expired_conversations"


async def sweep_expired(db: AsyncSession, now: datetime | None = None) -> int:
    """
    Finish every open conversation past its timeout and free its instance slot.

    Returns:
        Number of conversations this call finished. Rows another sweep got to
        first are skipped and not counted.
    """
    now = now or utcnow()
    swept = 0
    for conv in await conversations.list_expired(db, now):
        if await conversations.finish_conversation(db, conv):
            swept += 1
        await db.commit()
    if swept:
        logger.info(f"{swept} expired conversation(s) finished", extra={"event": "cleanup"})
    return swept


async def run_sweep() -> int:
    async with AsyncSessionLocal() as db:
        try:
            return await sweep_expired(db)
        except Exception:
            logger.exception("Expired conversation sweep failed")
            await db.rollback()
            return 0


def create_scheduler() -> AsyncIOScheduler:
    scheduler = AsyncIOScheduler(timezone=settings.TIMEZONE)
    scheduler.add_job(
        run_sweep,
        "interval",
        minutes=settings.SWEEP_INTERVAL_MINUTES,
        id=JOB_ID,
        max_instances=1,
        coalesce=True,
    )
    return scheduler
