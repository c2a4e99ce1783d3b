"""Evolution API: inbound webhook envelope parsing and outbound text messages."""

import logging
from dataclasses import dataclass

import httpx

from wa_checkpoints.core.config import settings
from wa_checkpoints.core.phone import normalize_phone
from wa_checkpoints.services.delivery import DeliveryResult, post_json

logger = logging.getLogger(__name__)

USER_JID_SUFFIX = "@s.whatsapp.net"
MESSAGE_UPSERT = "messages.upsert"


@dataclass
class EvolutionMessage:
    phone: str
    from_me: bool
    text: str
    instance: str


def _message_text(message: dict) -> str:
    if isinstance(message.get("conversation"), str):
        return message["conversation"]
    extended = message.get("extendedTextMessage") or {}
    if isinstance(extended, dict) and isinstance(extended.get("text"), str):
        return extended["text"]
    return ""


def parse_webhook(data) -> tuple[EvolutionMessage | None, str | None]:
    """
    Pull the message out of an Evolution webhook body.

    Returns (message, None) for a one-to-one chat message, or (None, reason)
    for anything that should be acknowledged and ignored.
    """
    if not isinstance(data, dict):
        return None, "payload is not an object"

    event = data.get("event")
    if isinstance(event, str) and event.lower().replace("_", ".") != MESSAGE_UPSERT:
        return None, f"event {event}"

    payload = data.get("data")
    key = payload.get("key") if isinstance(payload, dict) else None
    if not isinstance(key, dict):
        return None, "missing message key"

    remote_jid = key.get("remoteJid")
    if not isinstance(remote_jid, str) or not remote_jid:
        return None, "missing remoteJid"
    if not remote_jid.endswith(USER_JID_SUFFIX):
        return None, f"not a direct chat ({remote_jid})"

    phone = remote_jid[: -len(USER_JID_SUFFIX)]
    if not normalize_phone(phone):
        return None, "missing sender"

    message = payload.get("message") or {}
    return EvolutionMessage(
        phone=phone,
        from_me=bool(key.get("fromMe")),
        text=_message_text(message) if isinstance(message, dict) else "",
        instance=data.get("instance") or "UNKNOWN",
    ), None


async def send_text_message(
    instance_id: str, phone_number: str, text: str, transport: httpx.AsyncBaseTransport | None = None
) -> DeliveryResult:
    url = f"{settings.EVOLUTION_API_URL.rstrip('/')}/message/sendText/{instance_id}"
    headers = {"apikey": instance_id}
    payload = {"number": phone_number, "text": text}
    result = await post_json(
        url, payload, timeout=settings.EVOLUTION_TIMEOUT_SECONDS, headers=headers, transport=transport
    )
    if result.success:
        logger.info(f"Message sent to {phone_number} via {instance_id}", extra={"event": "message_sent"})
    else:
        logger.error(f"Failed to send message to {phone_number}: {result.error}")
    return result
