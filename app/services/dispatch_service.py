"""Outbound sends: window check, provider call, outbound message record."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Union
from uuid import UUID

from sqlalchemy.orm import Session

from app.db_utils import utcnow
from app.logging_config import get_logger
from app.models import ChannelCredential, Conversation, Message
from app.services import tenant_service, whatsapp_service, window_service
from app.services.alert_service import alert_warning
from app.services.errors import AuthExpiredError, ChannelNotConnectedError, ProviderError

logger = get_logger("dispatch_service")

AUTH_EXPIRED_MESSAGE = "Token de acesso expirado ou inválido"


@dataclass
class FreeformContent:
    text: str


@dataclass
class TemplateContent:
    name: str
    params: list = field(default_factory=list)
    language: Optional[str] = None


OutboundContent = Union[FreeformContent, TemplateContent]


def _build_payload(to: str, content: OutboundContent) -> dict:
    if isinstance(content, TemplateContent):
        return whatsapp_service.build_template_payload(to, content.name, content.params, content.language)
    return whatsapp_service.build_text_payload(to, content.text)


def _display_body(content: OutboundContent) -> str:
    if isinstance(content, TemplateContent):
        if content.params:
            return f"[Template] {content.name}: " + ", ".join(str(value) for value in content.params)
        return f"[Template] {content.name}"
    return content.text


def send_message(
    db: Session,
    conversation: Conversation,
    content: OutboundContent,
    operator_id: Optional[UUID] = None,
    now: Optional[datetime] = None,
) -> Message:
    """Send through the tenant's connected channel and record the outbound message.

    Raises OutsideWindowError, ChannelNotConnectedError, AuthExpiredError or
    ProviderError. Nothing is retried or committed here; on AuthExpiredError
    the caller rolls back its own work and then calls record_auth_failure.
    """
    if isinstance(content, FreeformContent):
        window_service.ensure_can_send_free_form(db, conversation, now=now)

    credential = tenant_service.get_connected_credential(db, conversation.tenant_id)
    if credential is None or not credential.phone_number_id or not credential.access_token:
        raise ChannelNotConnectedError(conversation.tenant_id)

    payload = _build_payload(conversation.phone_number, content)
    result = whatsapp_service.send_payload(credential.phone_number_id, credential.access_token, payload)

    if not result.ok:
        if result.is_auth_error:
            logger.error(
                "WhatsApp credential rejected",
                extra={"context": {"tenant_id": str(conversation.tenant_id), "error": result.error}},
            )
            alert_warning(
                "WhatsApp token expired",
                {"tenant_id": str(conversation.tenant_id), "channel": credential.channel_type, "error": result.error},
            )
            raise AuthExpiredError(AUTH_EXPIRED_MESSAGE, credential_id=credential.id)
        raise ProviderError(result.error or "Erro desconhecido do WhatsApp", result.error_code)

    message = Message(
        conversation_id=conversation.id,
        tenant_id=conversation.tenant_id,
        direction="outbound",
        message_type="text",
        body=_display_body(content),
        provider_message_id=result.message_id,
        sent_by_operator_id=operator_id,
        sent_at=now or utcnow(),
        raw_payload={"request": payload},
    )
    db.add(message)
    db.flush()
    logger.info(
        "Outbound message sent",
        extra={
            "context": {
                "conversation_id": str(conversation.id),
                "provider_message_id": result.message_id,
                "kind": "template" if isinstance(content, TemplateContent) else "freeform",
            }
        },
    )
    return message


def record_auth_failure(db: Session, exc: AuthExpiredError) -> None:
    """Persist the rejected credential after the caller rolled back its work."""
    if exc.credential_id is None:
        return
    credential = db.get(ChannelCredential, exc.credential_id)
    if credential is None:
        return
    tenant_service.mark_credential_error(db, credential, exc.detail)
    db.commit()
