"""
Tests para agent/channels.py — Normalización y entrega por canal.

Las entregas usan httpx.MockTransport: ningún request sale a la red.
"""

import json
import sys
from pathlib import Path

import httpx
import pytest

# Agregar raíz del proyecto al path
project_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(project_root))

from agent.channels import (
    ChannelNotFound,
    ChannelRegistry,
    DiscordAdapter,
    InstagramAdapter,
    MessengerAdapter,
    TelegramAdapter,
    WebWidgetAdapter,
    WhatsAppAdapter,
    build_channel_registry,
)


def whatsapp_payload(text="Hola", msg_type="text", msg_id="wamid.ABC"):
    return {
        "object": "whatsapp_business_account",
        "entry": [
            {
                "changes": [
                    {
                        "value": {
                            "contacts": [{"wa_id": "5491100000000", "profile": {"name": "Sam"}}],
                            "messages": [
                                {
                                    "from": "5491100000000",
                                    "id": msg_id,
                                    "timestamp": "1700000000",
                                    "type": msg_type,
                                    "text": {"body": text},
                                }
                            ],
                        }
                    }
                ]
            }
        ],
    }


class RecordingTransport:
    """Arma un MockTransport que guarda cada request y responde con status fijo."""

    def __init__(self, status_code=200):
        self.requests = []
        self.status_code = status_code
        self.transport = httpx.MockTransport(self._handle)

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, json={"ok": True})


# Normalización


class TestWhatsApp:
    def test_normalize_text_message(self):
        messages = WhatsAppAdapter().normalize(7, whatsapp_payload())
        assert len(messages) == 1
        msg = messages[0]
        assert msg.agent_id == 7
        assert msg.sender_id == "5491100000000"
        assert msg.text == "Hola"
        assert msg.message_id == "wamid.ABC"
        assert msg.sender_name == "Sam"
        assert msg.timestamp.startswith("2023-11-14T22:13:20")
        assert msg.recipient == "5491100000000"

    def test_non_text_ignored(self):
        assert WhatsAppAdapter().normalize(7, whatsapp_payload(msg_type="image")) == []

    def test_other_object_ignored(self):
        assert WhatsAppAdapter().normalize(7, {"object": "page"}) == []

    def test_format_reply(self):
        assert WhatsAppAdapter().format_reply("549", "Hi") == {
            "messaging_product": "whatsapp",
            "to": "549",
            "type": "text",
            "text": {"body": "Hi"},
        }


class TestTelegram:
    def test_normalize(self):
        payload = {
            "update_id": 1001,
            "message": {
                "message_id": 5,
                "from": {"id": 42, "first_name": "Ana"},
                "chat": {"id": 42},
                "date": 1700000000,
                "text": "hello",
            },
        }
        msg = TelegramAdapter().normalize(1, payload)[0]
        assert msg.sender_id == "42"
        assert msg.message_id == "1001"
        assert msg.sender_name == "Ana"

    def test_missing_ids_leave_message_id_empty(self):
        payload = {"message": {"chat": {"id": 42}, "text": "hello"}}
        msg = TelegramAdapter().normalize(1, payload)[0]
        assert msg.message_id is None

    def test_falls_back_to_message_id(self):
        payload = {"message": {"message_id": 5, "chat": {"id": 42}, "text": "hello"}}
        assert TelegramAdapter().normalize(1, payload)[0].message_id == "5"

    def test_non_text_ignored(self):
        payload = {"update_id": 1, "message": {"chat": {"id": 1}, "sticker": {}}}
        assert TelegramAdapter().normalize(1, payload) == []

    def test_format_reply(self):
        assert TelegramAdapter().format_reply("42", "hi") == {"chat_id": "42", "text": "hi"}


class TestDiscord:
    def test_normalize_replies_to_channel(self):
        payload = {
            "t": "MESSAGE_CREATE",
            "d": {
                "id": "m1",
                "channel_id": "c9",
                "content": "hey bot",
                "author": {"id": "u1", "username": "ana"},
            },
        }
        msg = DiscordAdapter().normalize(1, payload)[0]
        assert msg.sender_id == "u1"
        assert msg.recipient == "c9"
        assert msg.sender_name == "ana"

    def test_bot_messages_ignored(self):
        payload = {"id": "m1", "content": "echo", "author": {"id": "b", "bot": True}}
        assert DiscordAdapter().normalize(1, payload) == []

    def test_reply_truncated(self):
        assert len(DiscordAdapter().format_reply("c9", "x" * 2500)["content"]) == 2000


class TestMetaMessaging:
    def _payload(self, obj, message):
        return {
            "object": obj,
            "entry": [
                {"messaging": [{"sender": {"id": "psid-1"}, "timestamp": 1700000000000, "message": message}]}
            ],
        }

    def test_messenger(self):
        msg = MessengerAdapter().normalize(1, self._payload("page", {"mid": "m.1", "text": "hi"}))[0]
        assert msg.sender_id == "psid-1"
        assert msg.message_id == "m.1"
        # Epoch en milisegundos
        assert msg.timestamp.startswith("2023-11-14T22:13:20")

    def test_instagram_ignores_page_object(self):
        payload = self._payload("page", {"mid": "m.1", "text": "hi"})
        assert InstagramAdapter().normalize(1, payload) == []

    def test_echo_ignored(self):
        payload = self._payload("instagram", {"mid": "m.1", "text": "hi", "is_echo": True})
        assert InstagramAdapter().normalize(1, payload) == []

    def test_format_reply(self):
        assert MessengerAdapter().format_reply("psid-1", "hi") == {
            "recipient": {"id": "psid-1"},
            "message": {"text": "hi"},
            "messaging_type": "RESPONSE",
        }


class TestWebWidget:
    def test_normalize_with_session_id(self):
        msg = WebWidgetAdapter().normalize(3, {"text": "hi", "session_id": "visitor-1"})[0]
        assert msg.sender_id == "visitor-1"
        assert msg.text == "hi"

    def test_missing_sender_ignored(self):
        assert WebWidgetAdapter().normalize(3, {"message": "hi"}) == []

    def test_cannot_deliver(self):
        assert WebWidgetAdapter().can_deliver is False


# Entrega


class TestDeliver:
    @pytest.mark.asyncio
    async def test_whatsapp_posts_to_graph_api(self):
        recorder = RecordingTransport()
        adapter = WhatsAppAdapter("tok", "123", transport=recorder.transport)

        assert await adapter.deliver("549", "Hi there") is True

        request = recorder.requests[0]
        assert str(request.url) == "https://graph.facebook.com/v22.0/123/messages"
        assert request.headers["Authorization"] == "Bearer tok"
        assert json.loads(request.content)["text"] == {"body": "Hi there"}

    @pytest.mark.asyncio
    async def test_telegram_url(self):
        recorder = RecordingTransport()
        adapter = TelegramAdapter("abc:123", transport=recorder.transport)

        assert await adapter.deliver("42", "hi") is True
        assert str(recorder.requests[0].url) == "https://api.telegram.org/botabc:123/sendMessage"

    @pytest.mark.asyncio
    async def test_error_status_returns_false(self):
        recorder = RecordingTransport(status_code=401)
        adapter = DiscordAdapter("bot-token", transport=recorder.transport)
        assert await adapter.deliver("c9", "hi") is False

    @pytest.mark.asyncio
    async def test_transport_error_returns_false(self):
        def fail(request):
            raise httpx.ConnectError("no route", request=request)

        adapter = MessengerAdapter("page-token", transport=httpx.MockTransport(fail))
        assert await adapter.deliver("psid-1", "hi") is False

    @pytest.mark.asyncio
    async def test_without_credentials_skips_request(self):
        recorder = RecordingTransport()
        adapter = WhatsAppAdapter(transport=recorder.transport)

        assert await adapter.deliver("549", "hi") is False
        assert recorder.requests == []


# Registry


class TestChannelRegistry:
    def test_build_registers_all_channels(self, test_settings):
        registry = build_channel_registry(test_settings)
        assert registry.channels == [
            "discord", "instagram", "messenger", "telegram", "web", "whatsapp",
        ]

    def test_unknown_channel(self):
        with pytest.raises(ChannelNotFound):
            ChannelRegistry().get("fax")
