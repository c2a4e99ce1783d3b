import json

import httpx

from wa_checkpoints.core.config import settings
from wa_checkpoints.services import evolution_api, n8n
from wa_checkpoints.services.delivery import post_json


def recording_transport(status_code=200, body=None, calls=None):
    def handler(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(request)
        return httpx.Response(status_code, json=body if body is not None else {"ok": True})

    return httpx.MockTransport(handler)


async def test_post_json_success():
    calls = []
    result = await post_json(
        "http://n8n.test/hook", {"a": 1}, timeout=5, transport=recording_transport(calls=calls)
    )
    assert result.success
    assert result.status_code == 200
    assert result.data == {"ok": True}
    assert json.loads(calls[0].content) == {"a": 1}


async def test_post_json_reports_http_errors():
    result = await post_json("http://n8n.test/hook", {}, timeout=5, transport=recording_transport(503))
    assert not result.success
    assert result.status_code == 503
    assert result.error.startswith("HTTP 503")


async def test_post_json_reports_timeouts():
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    result = await post_json("http://n8n.test/hook", {}, timeout=5, transport=httpx.MockTransport(handler))
    assert not result.success
    assert result.status_code is None
    assert "Timeout" in result.error


async def test_post_json_reports_connection_errors():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    result = await post_json("http://n8n.test/hook", {}, timeout=5, transport=httpx.MockTransport(handler))
    assert not result.success
    assert result.error == "refused"


async def test_send_event_posts_to_configured_webhook():
    calls = []
    event = {"event_type": "new_lead", "phone_number": "551188887777"}
    result = await n8n.send_event(event, transport=recording_transport(calls=calls))

    assert result.success
    assert str(calls[0].url) == settings.N8N_WEBHOOK_URL
    assert calls[0].headers["user-agent"] == n8n.USER_AGENT
    assert json.loads(calls[0].content) == event


async def test_send_text_message_addresses_the_instance():
    calls = []
    result = await evolution_api.send_text_message(
        "key-123", "5511988887777", "Aguarde", transport=recording_transport(201, calls=calls)
    )

    assert result.success
    request = calls[0]
    assert request.url.path == "/message/sendText/key-123"
    assert request.headers["apikey"] == "key-123"
    assert json.loads(request.content) == {"number": "5511988887777", "text": "Aguarde"}


def upsert(remote_jid="5511988887777@s.whatsapp.net", from_me=False, message=None, **extra):
    body = {
        "event": "messages.upsert",
        "instance": "inst-A",
        "data": {
            "key": {"remoteJid": remote_jid, "fromMe": from_me, "id": "ABC"},
            "message": message if message is not None else {"conversation": "oi"},
        },
    }
    body.update(extra)
    return body


def test_parse_plain_conversation_message():
    message, reason = evolution_api.parse_webhook(upsert())
    assert reason is None
    assert message == evolution_api.EvolutionMessage(
        phone="5511988887777", from_me=False, text="oi", instance="inst-A"
    )


def test_parse_extended_text_and_from_me():
    message, _ = evolution_api.parse_webhook(
        upsert(from_me=True, message={"extendedTextMessage": {"text": "link https://x"}})
    )
    assert message.from_me is True
    assert message.text == "link https://x"


def test_parse_media_message_has_empty_text():
    message, _ = evolution_api.parse_webhook(upsert(message={"imageMessage": {"url": "..."}}))
    assert message.text == ""


def test_parse_accepts_legacy_event_name_and_missing_instance():
    body = upsert(event="MESSAGES_UPSERT")
    del body["instance"]
    message, _ = evolution_api.parse_webhook(body)
    assert message.instance == "UNKNOWN"


def test_parse_ignores_malformed_and_foreign_payloads():
    cases = [
        [],
        {},
        {"data": None},
        {"data": {"key": None}},
        {"data": {"key": {"fromMe": False}}},
        upsert(event="connection.update"),
        upsert(remote_jid="120363000000000000@g.us"),
        upsert(remote_jid="status@broadcast"),
        upsert(remote_jid="@s.whatsapp.net"),
        upsert(remote_jid="+-@s.whatsapp.net"),
    ]
    for body in cases:
        message, reason = evolution_api.parse_webhook(body)
        assert message is None, body
        assert reason
