from pathlib import Path
from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates

from wa_checkpoints.core.clock import brazil_time

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))
web_router = APIRouter(include_in_schema=False)

ENDPOINTS = [
    ("/status", "System status"),
    ("/conversations", "Conversations waiting for a reply"),
    ("/logs", "Logs"),
    ("/health", "Health check"),
]
WEBHOOKS = [
    ("Evolution", "POST /webhook/evolution"),
    ("N8N checkpoint", "POST /webhook/checkpoint"),
]

@web_router.get("/", response_class=HTMLResponse)
async def home(request: Request):
    return templates.TemplateResponse(
        request,
        "index.html",
        {"now": brazil_time(), "endpoints": ENDPOINTS, "webhooks": WEBHOOKS},
    )
