"""WhatsApp Cloud API webhook envelope.

Only the envelope is typed; individual message objects stay as dicts and are
classified by ``app.services.payload_parser``.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class _Lenient(BaseModel):
    model_config = ConfigDict(extra="allow")


class WebhookMetadata(_Lenient):
    phone_number_id: Optional[str] = None
    display_phone_number: Optional[str] = None


class ContactProfile(_Lenient):
    name: Optional[str] = None


class WebhookContact(_Lenient):
    wa_id: Optional[str] = None
    profile: Optional[ContactProfile] = None


class StatusError(_Lenient):
    code: Optional[int] = None
    title: Optional[str] = None
    message: Optional[str] = None


class WebhookStatus(_Lenient):
    id: Optional[str] = None
    status: Optional[str] = None
    recipient_id: Optional[str] = None
    timestamp: Optional[str] = None
    errors: list[StatusError] = Field(default_factory=list)


class ChangeValue(_Lenient):
    messaging_product: Optional[str] = None
    metadata: Optional[WebhookMetadata] = None
    contacts: list[WebhookContact] = Field(default_factory=list)
    messages: list[dict[str, Any]] = Field(default_factory=list)
    statuses: list[WebhookStatus] = Field(default_factory=list)


class WebhookChange(_Lenient):
    field: Optional[str] = None
    value: Optional[ChangeValue] = None


class WebhookEntry(_Lenient):
    id: Optional[str] = None
    changes: list[WebhookChange] = Field(default_factory=list)


class WebhookPayload(_Lenient):
    object: Optional[str] = None
    entry: list[WebhookEntry] = Field(default_factory=list)


class WebhookAck(BaseModel):
    ok: bool = True
