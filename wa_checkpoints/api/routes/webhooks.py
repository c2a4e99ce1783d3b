import json
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from wa_checkpoints.db.session import get_db
from wa_checkpoints.services import evolution_api, lifecycle
from wa_checkpoints.services.lifecycle import CheckpointCommand, CheckpointError, InboundKind

router = APIRouter(prefix="/webhook")

@router.post("/evolution")
async def evolution_webhook(request: Request, db: AsyncSession = Depends(get_db)):
    try:
        data = json.loads(await request.body())
    except ValueError:
        return {"success": True, "message": "Ignored: invalid JSON"}

    message, reason = evolution_api.parse_webhook(data)
    if message is None:
        return {"success": True, "message": f"Ignored: {reason}"}

    outcome = await lifecycle.handle_inbound(db, message.phone, message.text, message.from_me, message.instance)
    if outcome.kind == InboundKind.no_instance:
        return {"success": False, "message": "No instances available", "client_number": outcome.phone_number}

    return {
        "success": True,
        "message": "Evolution webhook processed",
        "client_number": outcome.phone_number,
        "outcome": outcome.kind.value,
        "status": outcome.status.value if outcome.status else None,
        "conversation_id": outcome.conversation_id,
    }

@router.post("/checkpoint")
async def checkpoint_webhook(payload: dict, db: AsyncSession = Depends(get_db)):
    try:
        command = CheckpointCommand.from_payload(payload)
        outcome = await lifecycle.apply_checkpoint(db, command)
    except CheckpointError as e:
        raise HTTPException(e.status_code, str(e))

    return {
        "success": True,
        "action": outcome.action.value,
        "phone_number": outcome.phone_number,
        "step": outcome.step,
        "status": outcome.status.value,
        "conversation_id": outcome.conversation_id,
        "message_sent": outcome.message_sent,
    }
