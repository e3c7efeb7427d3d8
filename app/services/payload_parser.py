"""Turn WhatsApp webhook bodies into typed inbound messages.

Every message object maps to exactly one of ``TextMessage``,
``MediaMessage`` or ``OtherMessage``; unknown types are kept as
``OtherMessage`` with their raw type tag.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional, Union

from pydantic import ValidationError

from app.schemas.whatsapp import ChangeValue, WebhookPayload
from app.services.errors import MalformedPayloadError
from app.services.phone_utils import normalize_whatsapp_phone

MEDIA_TYPES = {"image", "audio", "video", "document", "sticker"}
STORED_MEDIA_TYPE = {"sticker": "image"}
REPLY_TYPES = {"button", "interactive"}


@dataclass
class InboundMessage:
    provider_message_id: Optional[str]
    from_address: str
    contact_name: Optional[str] = None
    timestamp: Optional[datetime] = None
    raw: dict = field(default_factory=dict)

    @property
    def message_type(self) -> str:
        return "other"

    @property
    def text(self) -> Optional[str]:
        return None

    def placeholder(self) -> str:
        return f"[{self.message_type}]"


@dataclass
class TextMessage(InboundMessage):
    body: str = ""

    @property
    def message_type(self) -> str:
        return "text"

    @property
    def text(self) -> Optional[str]:
        return self.body


@dataclass
class MediaMessage(InboundMessage):
    kind: str = "document"
    media_id: Optional[str] = None
    mime_type: Optional[str] = None
    caption: Optional[str] = None
    filename: Optional[str] = None

    @property
    def message_type(self) -> str:
        return STORED_MEDIA_TYPE.get(self.kind, self.kind)

    @property
    def text(self) -> Optional[str]:
        return self.caption


@dataclass
class OtherMessage(InboundMessage):
    raw_type: str = "unknown"
    body: Optional[str] = None

    @property
    def text(self) -> Optional[str]:
        return self.body

    def placeholder(self) -> str:
        return f"[{self.raw_type}]"


ParsedMessage = Union[TextMessage, MediaMessage, OtherMessage]


@dataclass
class DeliveryStatus:
    provider_message_id: str
    status: str
    recipient: Optional[str] = None
    error_message: Optional[str] = None


@dataclass
class ParsedChange:
    channel_id: Optional[str]
    messages: list = field(default_factory=list)
    statuses: list = field(default_factory=list)


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if value in (None, ""):
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        return None


def _reply_title(msg: dict) -> Optional[str]:
    if msg.get("type") == "button":
        button = msg.get("button") or {}
        return button.get("text") or button.get("payload")
    interactive = msg.get("interactive") or {}
    for key in ("button_reply", "list_reply"):
        reply = interactive.get(key)
        if isinstance(reply, dict) and reply.get("title"):
            return reply["title"]
    return None


def classify_message(msg: dict, contact_name: Optional[str] = None) -> Optional[ParsedMessage]:
    """Classify one message object; returns None only when it has no sender."""
    sender = normalize_whatsapp_phone(str(msg.get("from") or ""))
    if not sender:
        return None

    base = {
        "provider_message_id": msg.get("id") or None,
        "from_address": sender,
        "contact_name": contact_name,
        "timestamp": _parse_timestamp(msg.get("timestamp")),
        "raw": msg,
    }
    msg_type = str(msg.get("type") or "unknown")

    if msg_type == "text":
        text = msg.get("text") or {}
        return TextMessage(**base, body=str(text.get("body") or ""))

    if msg_type in MEDIA_TYPES:
        media = msg.get(msg_type) if isinstance(msg.get(msg_type), dict) else {}
        return MediaMessage(
            **base,
            kind=msg_type,
            media_id=media.get("id"),
            mime_type=media.get("mime_type"),
            caption=media.get("caption"),
            filename=media.get("filename"),
        )

    if msg_type in REPLY_TYPES:
        return OtherMessage(**base, raw_type=msg_type, body=_reply_title(msg))

    return OtherMessage(**base, raw_type=msg_type)


def _contact_names(value: ChangeValue) -> tuple[dict, Optional[str]]:
    by_wa_id = {}
    first_name = None
    for contact in value.contacts:
        name = contact.profile.name if contact.profile else None
        if not name:
            continue
        if first_name is None:
            first_name = name
        if contact.wa_id:
            by_wa_id[contact.wa_id] = name
    return by_wa_id, first_name


def _parse_statuses(value: ChangeValue) -> list[DeliveryStatus]:
    statuses = []
    for status in value.statuses:
        if not status.id or not status.status:
            continue
        error_message = None
        if status.errors:
            error_message = status.errors[0].message or status.errors[0].title
        statuses.append(
            DeliveryStatus(
                provider_message_id=status.id,
                status=status.status,
                recipient=status.recipient_id,
                error_message=error_message,
            )
        )
    return statuses


def parse_webhook_payload(raw: Union[bytes, str, dict]) -> list[ParsedChange]:
    """Parse a webhook body into message-bearing and status-bearing changes.

    Raises MalformedPayloadError when the body is not JSON or not a webhook
    envelope. Changes for fields other than ``messages`` are skipped.
    """
    if isinstance(raw, (bytes, str)):
        try:
            raw = json.loads(raw or b"{}")
        except (ValueError, UnicodeDecodeError) as exc:
            raise MalformedPayloadError(f"Invalid JSON: {exc}") from exc
    if not isinstance(raw, dict):
        raise MalformedPayloadError("Webhook body must be a JSON object")

    try:
        payload = WebhookPayload.model_validate(raw)
    except ValidationError as exc:
        raise MalformedPayloadError(f"Unexpected webhook shape: {exc.error_count()} errors") from exc

    changes: list[ParsedChange] = []
    for entry in payload.entry:
        for change in entry.changes:
            if change.field not in (None, "messages") or change.value is None:
                continue
            value = change.value
            channel_id = (value.metadata.phone_number_id if value.metadata else None) or entry.id
            names_by_wa_id, first_name = _contact_names(value)

            messages = []
            for msg in value.messages:
                if not isinstance(msg, dict):
                    continue
                name = names_by_wa_id.get(str(msg.get("from") or ""), first_name)
                parsed = classify_message(msg, contact_name=name)
                if parsed is not None:
                    messages.append(parsed)

            parsed_change = ParsedChange(channel_id=channel_id, messages=messages, statuses=_parse_statuses(value))
            if parsed_change.messages or parsed_change.statuses:
                changes.append(parsed_change)
    return changes
