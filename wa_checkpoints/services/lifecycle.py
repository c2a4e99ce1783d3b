"""Conversation lifecycle: new lead, resume, ignore, and N8N checkpoints.

State changes for a phone run under that phone's lock and are committed
before any outbound call. Notifications are best effort: their result is
reported on the outcome and in the stats, and a failed notification never
undoes the state change that preceded it.
"""

import enum
import logging
from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from wa_checkpoints.core.clock import brazil_time, utcnow
from wa_checkpoints.core.config import settings
from wa_checkpoints.core.phone import normalize_phone
from wa_checkpoints.db.models import Conversation, ConversationStatus, Direction
from wa_checkpoints.services import conversations, evolution_api, instance_pool, locks, n8n
from wa_checkpoints.services.stats import stats

logger = logging.getLogger(__name__)

ASSIGN_ATTEMPTS = 3


class InboundKind(str, enum.Enum):
    new_lead = "new_lead"
    resumed = "resumed"
    ignored = "ignored"
    no_instance = "no_instance"
    outbound_logged = "outbound_logged"
    untracked = "untracked"


class CheckpointAction(str, enum.Enum):
    PAUSE = "pause"
    CONTINUE = "continue"
    FINISH = "finish"


class CheckpointError(Exception):
    status_code = 400


class InvalidCheckpoint(CheckpointError):
    status_code = 400


class ConversationNotFound(CheckpointError):
    status_code = 404

    def __init__(self, phone: str):
        super().__init__(f"Conversation not found for {phone}")
        self.phone = phone


@dataclass
class InboundOutcome:
    kind: InboundKind
    phone_number: str
    conversation_id: int | None = None
    status: ConversationStatus | None = None
    instance: str | None = None
    notified: bool | None = None
    error: str | None = None


@dataclass
class CheckpointCommand:
    phone_number: str
    action: CheckpointAction
    step: str | None = None
    message_to_send: str | None = None

    @classmethod
    def from_payload(cls, payload: dict) -> "CheckpointCommand":
        phone_number = payload.get("phone_number")
        action = payload.get("action")
        if not phone_number or not action:
            raise InvalidCheckpoint("phone_number and action are required")
        try:
            parsed = CheckpointAction(action)
        except ValueError:
            raise InvalidCheckpoint(f"Invalid action: {action}") from None
        step = payload.get("step")
        message = payload.get("message_to_send")
        return cls(
            phone_number=str(phone_number),
            action=parsed,
            step=str(step) if step else None,
            message_to_send=str(message) if message else None,
        )


@dataclass
class CheckpointOutcome:
    action: CheckpointAction
    phone_number: str
    conversation_id: int
    status: ConversationStatus
    step: str | None
    message_sent: bool | None = None


def _new_lead_event(conv: Conversation, content: str) -> dict:
    now = utcnow()
    return {
        "event_type": "new_lead",
        "phone_number": conv.phone_number,
        "instance": conv.instance_name,
        "first_message": content,
        "conversation_id": conv.id,
        "step": conv.current_step,
        "timestamp": now.isoformat(),
        "brazil_time": brazil_time(now),
    }


def _lead_response_event(conv: Conversation, content: str) -> dict:
    now = utcnow()
    return {
        "event_type": "lead_response",
        "phone_number": conv.phone_number,
        "instance": conv.instance_name,
        "response_message": content,
        "conversation_id": conv.id,
        "current_step": conv.current_step,
        "timestamp": now.isoformat(),
        "brazil_time": brazil_time(now),
    }


async def handle_inbound(
    db: AsyncSession, phone: str, content: str, from_me: bool = False, instance_label: str | None = None
) -> InboundOutcome:
    """
    Route one message seen by the gateway.

    Messages from the lead start or resume a flow; messages the system sent
    itself (from_me) are only appended to the history of an open conversation.
    """
    phone = normalize_phone(phone)
    content = content or ""
    stats.record_event()
    logger.info(
        f"Message: {phone} | FromMe: {from_me} | Instance: {instance_label or 'UNKNOWN'}",
        extra={"event": "evolution_webhook"},
    )

    async with locks.phone_lock(phone):
        if from_me:
            return await _log_outbound(db, phone, content)
        outcome, event = await _route_lead_message(db, phone, content)

    if event is not None:
        result = await n8n.send_event(event)
        stats.record_notification(result.success)
        outcome.notified = result.success
        outcome.error = result.error
        if not result.success:
            logger.error(f"Could not notify N8N of {event['event_type']} for {phone}: {result.error}")
    return outcome


async def _log_outbound(db: AsyncSession, phone: str, content: str) -> InboundOutcome:
    conv = await conversations.find_open(db, phone)
    if conv is None:
        return InboundOutcome(InboundKind.untracked, phone)
    await conversations.save_message(db, conv.id, Direction.OUT, content)
    await db.commit()
    return InboundOutcome(InboundKind.outbound_logged, phone, conv.id, conv.status, conv.instance_name)


async def _route_lead_message(db: AsyncSession, phone: str, content: str) -> tuple[InboundOutcome, dict | None]:
    logger.info(f"Message received from {phone}: {content[:50]!r}")
    now = utcnow()
    conv = await conversations.find_live(db, phone, now)
    if conv is None:
        return await _start_conversation(db, phone, content, now)
    return await _continue_conversation(db, conv, content)


async def _start_conversation(db: AsyncSession, phone: str, content: str, now) -> tuple[InboundOutcome, dict | None]:
    logger.info(f"New lead detected: {phone}")
    await conversations.close_stale(db, phone, now)
    await db.commit()

    for _ in range(ASSIGN_ATTEMPTS):
        instance = await instance_pool.pick_instance(db, settings.DEFAULT_FLOW_ID)
        if instance is None:
            break
        instance_name = instance.instance_name
        try:
            conv = await conversations.create_conversation(
                db, phone, instance_name, content, settings.DEFAULT_FLOW_ID, now
            )
            await conversations.save_message(db, conv.id, Direction.IN, content)
            await db.commit()
        except conversations.InstanceAtCapacity:
            # Another lead took the last slot between pick and insert
            await db.rollback()
            logger.warning(f"Instance {instance_name} filled up, picking again for {phone}")
            continue
        except IntegrityError:
            # Lost a race against another handler for the same phone
            await db.rollback()
            conv = await conversations.find_live(db, phone)
            if conv is None:
                raise
            logger.warning(f"Conversation for {phone} was created concurrently, continuing it")
            return await _continue_conversation(db, conv, content)

        logger.info(f"New conversation created: {phone} -> {instance_name}")
        outcome = InboundOutcome(InboundKind.new_lead, phone, conv.id, ConversationStatus.active, instance_name)
        return outcome, _new_lead_event(conv, content)

    stats.record_notification(False)
    logger.error(f"No instance available for {phone}")
    return InboundOutcome(InboundKind.no_instance, phone, error="No instances available"), None


async def _continue_conversation(db: AsyncSession, conv: Conversation, content: str) -> tuple[InboundOutcome, dict | None]:
    phone = conv.phone_number
    if conv.status == ConversationStatus.waiting:
        logger.info(f"Reply received from {phone} (was waiting at {conv.current_step})")
        await conversations.set_status(db, conv.id, ConversationStatus.active)
        await conversations.save_message(db, conv.id, Direction.IN, content)
        await db.commit()
        outcome = InboundOutcome(InboundKind.resumed, phone, conv.id, ConversationStatus.active, conv.instance_name)
        return outcome, _lead_response_event(conv, content)
    if conv.status == ConversationStatus.active:
        # The flow is mid-turn; the reply it waits for has not been requested yet
        logger.info(f"Message ignored from {phone} (status: {conv.status.value})")
        return InboundOutcome(InboundKind.ignored, phone, conv.id, conv.status, conv.instance_name), None
    raise ValueError(f"Unexpected status {conv.status} for open conversation {conv.id}")


async def apply_checkpoint(db: AsyncSession, command: CheckpointCommand) -> CheckpointOutcome:
    """
    Apply a pause/continue/finish command from N8N, then send its message.

    Raises:
        ConversationNotFound: no open conversation for the phone
    """
    phone = normalize_phone(command.phone_number)
    logger.info(
        f"N8N request: {command.phone_number} | Action: {command.action.value} | Step: {command.step}",
        extra={"event": "n8n_checkpoint"},
    )

    async with locks.phone_lock(phone):
        conv = await conversations.find_open(db, phone)
        if conv is None:
            logger.warning(f"Conversation not found for {command.phone_number}")
            raise ConversationNotFound(command.phone_number)

        if command.action == CheckpointAction.PAUSE:
            status = ConversationStatus.waiting
            changed = await conversations.set_status(db, conv.id, status, command.step)
            logger.info(f"Flow paused for {phone} at step {command.step}")
        elif command.action == CheckpointAction.CONTINUE:
            status = ConversationStatus.active
            changed = await conversations.set_status(db, conv.id, status, command.step)
            logger.info(f"Flow continued for {phone} at step {command.step}")
        elif command.action == CheckpointAction.FINISH:
            status = ConversationStatus.finished
            changed = await conversations.finish_conversation(db, conv)
            logger.info(f"Flow finished for {phone}")
        else:
            raise InvalidCheckpoint(f"Invalid action: {command.action}")
        if not changed:
            # finished by the expiry sweep after the lookup
            logger.warning(f"Conversation {conv.id} for {phone} closed before {command.action.value} applied")
            await db.rollback()
            raise ConversationNotFound(command.phone_number)
        await db.commit()

    outcome = CheckpointOutcome(
        action=command.action,
        phone_number=command.phone_number,
        conversation_id=conv.id,
        status=status,
        step=command.step if command.action != CheckpointAction.FINISH else conv.current_step,
    )
    if command.message_to_send:
        outcome.message_sent = await _send_message(db, conv, command.phone_number, command.message_to_send)
    return outcome


async def _send_message(db: AsyncSession, conv: Conversation, phone_number: str, text: str) -> bool:
    instance = await instance_pool.get_instance(db, conv.instance_name)
    if instance is None:
        logger.error(f"Instance {conv.instance_name} not found, message to {phone_number} not sent")
        stats.record_send(False)
        return False

    result = await evolution_api.send_text_message(instance.instance_id, phone_number, text)
    stats.record_send(result.success)
    if not result.success:
        return False
    await conversations.save_message(db, conv.id, Direction.OUT, text)
    await db.commit()
    return True
