from fastapi import APIRouter
from wa_checkpoints.api.routes import monitor, webhooks

api = APIRouter()
api.include_router(webhooks.router, tags=["webhooks"])
api.include_router(monitor.router, tags=["monitor"])
