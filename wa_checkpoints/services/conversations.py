"""Conversation records keyed by normalized phone number.

Every function here normalizes its phone argument itself, so callers may pass
raw numbers. Functions flush but never commit; the caller owns the
transaction boundary.
"""

import logging
from datetime import datetime, timedelta

from sqlalchemy import case, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from wa_checkpoints.core.clock import utcnow
from wa_checkpoints.core.config import settings
from wa_checkpoints.core.phone import normalize_phone
from wa_checkpoints.db.models import (
    OPEN_STATUSES,
    Conversation,
    ConversationStatus,
    Direction,
    GatewayInstance,
    MessageRecord,
)
from wa_checkpoints.services import instance_pool

logger = logging.getLogger(__name__)

START_STEP = "start"

# Status and step change through UPDATE statements that bypass the identity
# map, so lookups must overwrite whatever the session already holds
FRESH = {"populate_existing": True}


class InstanceAtCapacity(Exception):
    def __init__(self, instance_name: str):
        super().__init__(f"Instance {instance_name} has no free slot")
        self.instance_name = instance_name


def conversation_deadline(now: datetime) -> datetime:
    return now + timedelta(hours=settings.CONVERSATION_TIMEOUT_HOURS)


async def find_live(db: AsyncSession, phone: str, now: datetime | None = None) -> Conversation | None:
    """Open conversation for the phone that has not timed out yet."""
    now = now or utcnow()
    q = await db.execute(
        select(Conversation).where(
            Conversation.phone_number == normalize_phone(phone),
            Conversation.status.in_(OPEN_STATUSES),
            Conversation.timeout_at > now,
        ),
        execution_options=FRESH,
    )
    return q.scalars().first()


async def find_open(db: AsyncSession, phone: str) -> Conversation | None:
    """Open conversation for the phone regardless of its timeout."""
    q = await db.execute(
        select(Conversation)
        .where(Conversation.phone_number == normalize_phone(phone), Conversation.status.in_(OPEN_STATUSES))
        .order_by(Conversation.updated_at.desc())
        .limit(1),
        execution_options=FRESH,
    )
    return q.scalar_one_or_none()


async def create_conversation(
    db: AsyncSession,
    phone: str,
    instance_name: str,
    first_message: str | None,
    flow_id: str | None = None,
    now: datetime | None = None,
) -> Conversation:
    """
    Insert a new active conversation and count it against its instance.

    Raises:
        IntegrityError: another open conversation already exists for the phone
        InstanceAtCapacity: the instance filled up after it was picked
    """
    now = now or utcnow()
    conv = Conversation(
        phone_number=normalize_phone(phone),
        instance_name=instance_name,
        flow_id=flow_id or settings.DEFAULT_FLOW_ID,
        current_step=START_STEP,
        status=ConversationStatus.active,
        first_message=first_message,
        timeout_at=conversation_deadline(now),
        created_at=now,
        updated_at=now,
    )
    db.add(conv)
    await db.flush()
    if not await instance_pool.adjust_counter(db, instance_name, 1):
        raise InstanceAtCapacity(instance_name)
    return conv


async def set_status(
    db: AsyncSession, conversation_id: int, status: ConversationStatus, step: str | None = None
) -> bool:
    """Move an open conversation to active/waiting. Returns False if it was already finished."""
    if status not in OPEN_STATUSES:
        raise ValueError(f"use finish_conversation to move a conversation to {status.value}")
    values = {"status": status}
    if step:
        values["current_step"] = step
    res = await db.execute(
        update(Conversation)
        .where(Conversation.id == conversation_id, Conversation.status.in_(OPEN_STATUSES))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return res.rowcount == 1


async def finish_conversation(db: AsyncSession, conv: Conversation) -> bool:
    """
    Finish an open conversation and release its instance slot.

    The status change is conditional, so only the caller that actually moved
    the row to finished decrements the counter.
    """
    res = await db.execute(
        update(Conversation)
        .where(Conversation.id == conv.id, Conversation.status.in_(OPEN_STATUSES))
        .values(status=ConversationStatus.finished)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        return False
    await instance_pool.adjust_counter(db, conv.instance_name, -1)
    return True


async def list_expired(db: AsyncSession, now: datetime | None = None, phone: str | None = None) -> list[Conversation]:
    now = now or utcnow()
    stmt = select(Conversation).where(Conversation.status.in_(OPEN_STATUSES), Conversation.timeout_at <= now)
    if phone is not None:
        stmt = stmt.where(Conversation.phone_number == normalize_phone(phone))
    q = await db.execute(stmt.order_by(Conversation.timeout_at), execution_options=FRESH)
    return list(q.scalars().all())


async def close_stale(db: AsyncSession, phone: str, now: datetime | None = None) -> int:
    """Finish timed-out conversations of one phone that the sweeper has not reached yet."""
    closed = 0
    for conv in await list_expired(db, now, phone=phone):
        if await finish_conversation(db, conv):
            closed += 1
    if closed:
        logger.info(f"Closed {closed} timed-out conversation(s) for {normalize_phone(phone)}")
    return closed


async def save_message(db: AsyncSession, conversation_id: int, direction: Direction, content: str | None) -> MessageRecord:
    msg = MessageRecord(conversation_id=conversation_id, direction=direction, content=content)
    db.add(msg)
    await db.flush()
    return msg


async def get_history(db: AsyncSession, conversation_id: int) -> list[MessageRecord]:
    q = await db.execute(
        select(MessageRecord)
        .where(MessageRecord.conversation_id == conversation_id)
        .order_by(MessageRecord.created_at, MessageRecord.id)
    )
    return list(q.scalars().all())


async def list_waiting(db: AsyncSession, now: datetime | None = None) -> list[tuple[Conversation, GatewayInstance]]:
    now = now or utcnow()
    q = await db.execute(
        select(Conversation, GatewayInstance)
        .join(GatewayInstance, GatewayInstance.instance_name == Conversation.instance_name)
        .where(Conversation.status == ConversationStatus.waiting, Conversation.timeout_at > now)
        .order_by(Conversation.updated_at.asc()),
        execution_options=FRESH,
    )
    return [(conv, inst) for conv, inst in q.all()]


async def status_counts(db: AsyncSession, now: datetime | None = None) -> dict[str, int]:
    now = now or utcnow()
    open_status = Conversation.status.in_(OPEN_STATUSES)
    q = await db.execute(
        select(
            func.count(case((Conversation.status == ConversationStatus.active, 1))),
            func.count(case((Conversation.status == ConversationStatus.waiting, 1))),
            func.count(
                case(
                    (
                        (Conversation.status == ConversationStatus.finished)
                        & (Conversation.updated_at > now - timedelta(hours=24)),
                        1,
                    )
                )
            ),
            func.count(case((open_status & (Conversation.timeout_at <= now), 1))),
        )
    )
    active, waiting, finished_24h, expired = q.one()
    return {"active": active, "waiting": waiting, "finished_24h": finished_24h, "expired": expired}


async def check_database(db: AsyncSession) -> dict:
    try:
        q = await db.execute(select(func.now()))
        return {"success": True, "timestamp": str(q.scalar_one())}
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error(f"Database check failed: {e}")
        return {"success": False, "error": str(e)}
