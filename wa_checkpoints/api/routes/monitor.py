from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from wa_checkpoints.core.clock import brazil_time, utcnow
from wa_checkpoints.core.config import settings
from wa_checkpoints.core.logging import log_buffer
from wa_checkpoints.db.models import Conversation, GatewayInstance, MessageRecord
from wa_checkpoints.db.session import get_db
from wa_checkpoints.services import conversations, instance_pool
from wa_checkpoints.services.stats import stats

router = APIRouter()

def conversation_json(conv: Conversation) -> dict:
    return {
        "id": conv.id,
        "phone_number": conv.phone_number,
        "instance": conv.instance_name,
        "flow_id": conv.flow_id,
        "current_step": conv.current_step,
        "status": conv.status.value,
        "first_message": conv.first_message,
        "timeout_at": conv.timeout_at.isoformat(),
        "created_at": conv.created_at.isoformat(),
        "updated_at": conv.updated_at.isoformat(),
    }

def instance_json(inst: GatewayInstance) -> dict:
    return {
        "instance_name": inst.instance_name,
        "status": inst.status.value,
        "current_conversations": inst.current_conversations,
        "max_conversations": inst.max_conversations,
        "last_ping": inst.last_ping.isoformat() if inst.last_ping else None,
    }

def message_json(msg: MessageRecord) -> dict:
    return {"direction": msg.direction.value, "content": msg.content, "created_at": msg.created_at.isoformat()}

@router.get("/status")
async def status(db: AsyncSession = Depends(get_db)):
    database = await conversations.check_database(db)
    counts = await conversations.status_counts(db) if database["success"] else None
    instances = await instance_pool.list_instances(db) if database["success"] else []
    return {
        "system_status": "online",
        "timestamp": utcnow().isoformat(),
        "brazil_time": brazil_time(),
        "uptime": stats.uptime(),
        "database": database,
        "conversation_stats": counts,
        "instance_stats": [instance_json(i) for i in instances],
        "system_stats": stats.snapshot(),
        "n8n_webhook_url": settings.N8N_WEBHOOK_URL,
        "evolution_api_url": settings.EVOLUTION_API_URL,
    }

@router.get("/conversations")
async def waiting_conversations(db: AsyncSession = Depends(get_db)):
    waiting = await conversations.list_waiting(db)
    return {
        "waiting_response": [
            {**conversation_json(conv), "instance_status": inst.status.value} for conv, inst in waiting
        ],
        "stats": await conversations.status_counts(db),
        "brazil_time": brazil_time(),
    }

@router.get("/conversations/{phone}")
async def conversation_detail(phone: str, db: AsyncSession = Depends(get_db)):
    conv = await conversations.find_open(db, phone)
    if not conv:
        raise HTTPException(404, "Conversation not found")
    history = await conversations.get_history(db, conv.id)
    return {"conversation": conversation_json(conv), "messages": [message_json(m) for m in history]}

@router.get("/logs")
async def logs(limit: int = Query(100, ge=0)):
    return {"logs": log_buffer.tail(limit), "total": len(log_buffer), "brazil_time": brazil_time()}

@router.get("/health")
async def health(db: AsyncSession = Depends(get_db)):
    database = await conversations.check_database(db)
    return {
        "status": "online",
        "database": "connected" if database["success"] else "disconnected",
        "timestamp": utcnow().isoformat(),
        "brazil_time": brazil_time(),
    }
