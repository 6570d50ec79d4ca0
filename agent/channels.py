"""
Channels — Adapters por plataforma de mensajería.

Cada adapter solo (de)normaliza y entrega; nunca genera respuestas:
- normalize(payload)          → [InboundMessage]  (eventos sin texto se ignoran)
- format_reply(recipient, text) → dict con el payload nativo del canal
- deliver(recipient, text)    → envía vía httpx si hay credenciales

Canales: whatsapp, telegram, discord, instagram, messenger, web.
"""

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)

GRAPH_API_URL = "https://graph.facebook.com/v22.0"
TELEGRAM_API_URL = "https://api.telegram.org"
DISCORD_API_URL = "https://discord.com/api/v10"

DELIVERY_TIMEOUT_SECONDS = 15.0


@dataclass
class InboundMessage:
    """Mensaje entrante normalizado, independiente del canal."""

    agent_id: int
    sender_id: str
    text: str
    timestamp: str
    message_id: Optional[str] = None
    sender_name: Optional[str] = None
    # Destino de la respuesta cuando no es el remitente (ej: canal de Discord)
    reply_to: Optional[str] = None

    @property
    def recipient(self) -> str:
        return self.reply_to or self.sender_id

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _iso_from_epoch(value: Any) -> str:
    """Epoch en segundos o milisegundos → ISO-8601 UTC."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return datetime.now(timezone.utc).isoformat()
    if number > 1e11:
        number /= 1000
    return datetime.fromtimestamp(number, tz=timezone.utc).isoformat()


class ChannelAdapter:
    """Base de los adapters. Las subclases definen channel_id y el wire format."""

    channel_id = "base"

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        """
        Args:
            transport: Transport httpx alternativo (tests usan httpx.MockTransport)
        """
        self._transport = transport

    def normalize(self, agent_id: int, payload: Dict) -> List[InboundMessage]:
        raise NotImplementedError

    def format_reply(self, recipient: str, text: str) -> Dict:
        raise NotImplementedError

    @property
    def can_deliver(self) -> bool:
        return False

    def _request(self, recipient: str, text: str) -> Dict:
        """Retorna {"url", "json", "headers"} para el envío."""
        raise NotImplementedError

    async def deliver(self, recipient: str, text: str) -> bool:
        """
        Envía la respuesta al canal.

        Returns:
            True si la API del canal respondió 2xx
        """
        if not self.can_deliver:
            logger.warning(f"[{self.channel_id}] credenciales no configuradas, no se envía")
            return False

        request = self._request(recipient, text)
        try:
            async with httpx.AsyncClient(
                timeout=DELIVERY_TIMEOUT_SECONDS, transport=self._transport
            ) as client:
                response = await client.post(
                    request["url"], json=request["json"], headers=request.get("headers")
                )
        except httpx.HTTPError as e:
            logger.error(f"[{self.channel_id}] error enviando mensaje a {recipient}: {e}")
            return False

        if response.is_success:
            logger.info(f"[{self.channel_id}] mensaje enviado a {recipient}")
            return True

        logger.warning(
            f"[{self.channel_id}] error con {recipient}: "
            f"{response.status_code} - {response.text}"
        )
        return False


class WhatsAppAdapter(ChannelAdapter):
    """WhatsApp Cloud API (Meta)."""

    channel_id = "whatsapp"

    def __init__(
        self,
        token: Optional[str] = None,
        phone_number_id: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(transport)
        self.token = token
        self.phone_number_id = phone_number_id

    def normalize(self, agent_id: int, payload: Dict) -> List[InboundMessage]:
        if payload.get("object") != "whatsapp_business_account":
            return []

        messages = []
        for entry in payload.get("entry", []):
            for change in entry.get("changes", []):
                value = change.get("value", {})
                names = {
                    c.get("wa_id"): c.get("profile", {}).get("name")
                    for c in value.get("contacts", [])
                }
                for message in value.get("messages", []):
                    # Solo mensajes de texto (status updates, media, etc. se ignoran)
                    if message.get("type") != "text":
                        continue
                    sender = message.get("from", "")
                    messages.append(
                        InboundMessage(
                            agent_id=agent_id,
                            sender_id=sender,
                            text=message.get("text", {}).get("body", ""),
                            timestamp=_iso_from_epoch(message.get("timestamp")),
                            message_id=message.get("id"),
                            sender_name=names.get(sender),
                        )
                    )
        return messages

    def format_reply(self, recipient: str, text: str) -> Dict:
        return {
            "messaging_product": "whatsapp",
            "to": recipient,
            "type": "text",
            "text": {"body": text},
        }

    @property
    def can_deliver(self) -> bool:
        return bool(self.token and self.phone_number_id)

    def _request(self, recipient: str, text: str) -> Dict:
        return {
            "url": f"{GRAPH_API_URL}/{self.phone_number_id}/messages",
            "json": self.format_reply(recipient, text),
            "headers": {"Authorization": f"Bearer {self.token}"},
        }


class TelegramAdapter(ChannelAdapter):
    """Telegram Bot API (updates por webhook)."""

    channel_id = "telegram"

    def __init__(self, bot_token: Optional[str] = None, transport=None):
        super().__init__(transport)
        self.bot_token = bot_token

    def normalize(self, agent_id: int, payload: Dict) -> List[InboundMessage]:
        message = payload.get("message") or payload.get("edited_message")
        if not message or not message.get("text"):
            return []

        sender = message.get("from", {})
        chat_id = str(message.get("chat", {}).get("id", sender.get("id", "")))
        raw_id = payload.get("update_id", message.get("message_id"))
        return [
            InboundMessage(
                agent_id=agent_id,
                sender_id=chat_id,
                text=message["text"],
                timestamp=_iso_from_epoch(message.get("date")),
                message_id=str(raw_id) if raw_id is not None else None,
                sender_name=sender.get("first_name") or sender.get("username"),
            )
        ]

    def format_reply(self, recipient: str, text: str) -> Dict:
        return {"chat_id": recipient, "text": text}

    @property
    def can_deliver(self) -> bool:
        return bool(self.bot_token)

    def _request(self, recipient: str, text: str) -> Dict:
        return {
            "url": f"{TELEGRAM_API_URL}/bot{self.bot_token}/sendMessage",
            "json": self.format_reply(recipient, text),
        }


class DiscordAdapter(ChannelAdapter):
    """Discord: eventos MESSAGE_CREATE reenviados por el bot."""

    channel_id = "discord"

    def __init__(self, bot_token: Optional[str] = None, transport=None):
        super().__init__(transport)
        self.bot_token = bot_token

    def normalize(self, agent_id: int, payload: Dict) -> List[InboundMessage]:
        event = payload.get("d", payload)
        author = event.get("author") or {}

        # Mensajes de bots (incluido el propio) se ignoran
        if author.get("bot") or not event.get("content"):
            return []

        return [
            InboundMessage(
                agent_id=agent_id,
                sender_id=str(author.get("id", "")),
                text=event["content"],
                timestamp=event.get("timestamp") or datetime.now(timezone.utc).isoformat(),
                message_id=event.get("id"),
                sender_name=author.get("global_name") or author.get("username"),
                reply_to=str(event.get("channel_id")) if event.get("channel_id") else None,
            )
        ]

    def format_reply(self, recipient: str, text: str) -> Dict:
        # Límite de 2000 caracteres por mensaje
        return {"content": text[:2000]}

    @property
    def can_deliver(self) -> bool:
        return bool(self.bot_token)

    def _request(self, recipient: str, text: str) -> Dict:
        return {
            "url": f"{DISCORD_API_URL}/channels/{recipient}/messages",
            "json": self.format_reply(recipient, text),
            "headers": {"Authorization": f"Bot {self.bot_token}"},
        }


class _MetaMessagingAdapter(ChannelAdapter):
    """Messenger e Instagram comparten el formato `entry[].messaging[]`."""

    webhook_object = ""

    def __init__(self, page_token: Optional[str] = None, transport=None):
        super().__init__(transport)
        self.page_token = page_token

    def normalize(self, agent_id: int, payload: Dict) -> List[InboundMessage]:
        if payload.get("object") != self.webhook_object:
            return []

        messages = []
        for entry in payload.get("entry", []):
            for event in entry.get("messaging", []):
                message = event.get("message") or {}
                # Ecos de nuestros propios envíos y eventos sin texto se ignoran
                if message.get("is_echo") or not message.get("text"):
                    continue
                messages.append(
                    InboundMessage(
                        agent_id=agent_id,
                        sender_id=str(event.get("sender", {}).get("id", "")),
                        text=message["text"],
                        timestamp=_iso_from_epoch(event.get("timestamp")),
                        message_id=message.get("mid"),
                    )
                )
        return messages

    def format_reply(self, recipient: str, text: str) -> Dict:
        return {
            "recipient": {"id": recipient},
            "message": {"text": text},
            "messaging_type": "RESPONSE",
        }

    @property
    def can_deliver(self) -> bool:
        return bool(self.page_token)

    def _request(self, recipient: str, text: str) -> Dict:
        return {
            "url": f"{GRAPH_API_URL}/me/messages",
            "json": self.format_reply(recipient, text),
            "headers": {"Authorization": f"Bearer {self.page_token}"},
        }


class MessengerAdapter(_MetaMessagingAdapter):
    channel_id = "messenger"
    webhook_object = "page"


class InstagramAdapter(_MetaMessagingAdapter):
    channel_id = "instagram"
    webhook_object = "instagram"


class WebWidgetAdapter(ChannelAdapter):
    """Widget web embebido: la respuesta vuelve en la misma respuesta HTTP."""

    channel_id = "web"

    def normalize(self, agent_id: int, payload: Dict) -> List[InboundMessage]:
        text = payload.get("message") or payload.get("text")
        sender = payload.get("sender_id") or payload.get("session_id")
        if not text or not sender:
            return []
        return [
            InboundMessage(
                agent_id=agent_id,
                sender_id=str(sender),
                text=text,
                timestamp=payload.get("timestamp") or datetime.now(timezone.utc).isoformat(),
                message_id=payload.get("message_id"),
                sender_name=payload.get("sender_name"),
            )
        ]

    def format_reply(self, recipient: str, text: str) -> Dict:
        return {"recipient": recipient, "reply": text}


class ChannelNotFound(LookupError):
    pass


class ChannelRegistry:
    """Adapters registrados por channel_id."""

    def __init__(self):
        self._adapters: Dict[str, ChannelAdapter] = {}

    def register(self, adapter: ChannelAdapter) -> None:
        if adapter.channel_id in self._adapters:
            logger.warning(f"Reemplazando adapter existente: {adapter.channel_id}")
        self._adapters[adapter.channel_id] = adapter

    def get(self, channel_id: str) -> ChannelAdapter:
        adapter = self._adapters.get(channel_id)
        if adapter is None:
            available = ", ".join(sorted(self._adapters)) or "(none)"
            raise ChannelNotFound(f"Canal no soportado: {channel_id}. Disponibles: {available}")
        return adapter

    @property
    def channels(self) -> List[str]:
        return sorted(self._adapters)


def build_channel_registry(settings, transport=None) -> ChannelRegistry:
    """Registry con los seis canales configurados desde Settings."""
    registry = ChannelRegistry()
    registry.register(
        WhatsAppAdapter(
            token=settings.WHATSAPP_TOKEN,
            phone_number_id=settings.WHATSAPP_PHONE_NUMBER_ID,
            transport=transport,
        )
    )
    registry.register(TelegramAdapter(settings.TELEGRAM_BOT_TOKEN, transport=transport))
    registry.register(DiscordAdapter(settings.DISCORD_BOT_TOKEN, transport=transport))
    registry.register(MessengerAdapter(settings.MESSENGER_PAGE_TOKEN, transport=transport))
    registry.register(InstagramAdapter(settings.INSTAGRAM_PAGE_TOKEN, transport=transport))
    registry.register(WebWidgetAdapter(transport=transport))
    return registry
