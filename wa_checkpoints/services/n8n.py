import logging
import httpx

from wa_checkpoints.core.config import settings
from wa_checkpoints.services.delivery import DeliveryResult, post_json

logger = logging.getLogger(__name__)

USER_AGENT = "wa-checkpoints/1.0"

async def send_event(event: dict, transport: httpx.AsyncBaseTransport | None = None) -> DeliveryResult:
    event_type = event.get("event_type", "unknown")
    logger.info(f"Sending {event_type} to N8N")
    result = await post_json(
        settings.N8N_WEBHOOK_URL,
        event,
        timeout=settings.N8N_TIMEOUT_SECONDS,
        headers={"User-Agent": USER_AGENT},
        transport=transport,
    )
    if result.success:
        logger.info(f"Sent {event_type} to N8N | Status: {result.status_code}", extra={"event": "webhook_sent"})
    else:
        logger.error(f"N8N {event_type} failed: {result.error}")
    return result
