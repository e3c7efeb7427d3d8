"""Inbound WhatsApp pipeline: tenant, media, conversation, routing, chatbot.

Each message unit runs in its own transaction. Errors are contained per
unit so one bad message never blocks the rest of a delivery, and nothing
here is ever raised to the webhook caller.
"""

from dataclasses import dataclass
from typing import Optional, Union

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.db_utils import insert_for, utcnow
from app.logging_config import LoggerAdapter, get_logger
from app.models import Conversation, Message, MessageReceipt
from app.services import (
    chatbot_service,
    conversation_service,
    dispatch_service,
    media_service,
    routing_service,
    tenant_service,
)
from app.services.errors import AuthExpiredError, InboxError, MalformedPayloadError, UnresolvedTenantError
from app.services.payload_parser import DeliveryStatus, MediaMessage, ParsedMessage, parse_webhook_payload
from app.services.routing_service import DeferToChatbot, RoutingStrategy
from app.services.tenant_service import ResolvedTenant

logger = get_logger("ingestion_service")


@dataclass
class IngestionReport:
    received: int = 0
    processed: int = 0
    duplicates: int = 0
    failed: int = 0
    dropped: int = 0
    receipts: int = 0
    replies_sent: int = 0
    replies_failed: int = 0

    def as_dict(self) -> dict:
        return dict(self.__dict__)


@dataclass
class InboundResult:
    status: str  # processed, duplicate
    conversation_id: Optional[object] = None
    is_new: bool = False
    reply: Optional[str] = None


def _already_stored(db: Session, tenant_id, provider_message_id: Optional[str]) -> bool:
    if not provider_message_id:
        return False
    return (
        db.execute(
            select(Message.id).where(
                Message.tenant_id == tenant_id, Message.provider_message_id == provider_message_id
            )
        ).first()
        is not None
    )


def _insert_inbound(db: Session, conversation, message: ParsedMessage, body, stored) -> bool:
    """Insert the inbound row; False when the provider id was already stored."""
    stmt = (
        insert_for(db, Message.__table__)
        .values(
            conversation_id=conversation.id,
            tenant_id=conversation.tenant_id,
            direction="inbound",
            message_type=message.message_type,
            body=body,
            media_url=stored.url if stored else None,
            media_storage_key=stored.key if stored else None,
            provider_message_id=message.provider_message_id,
            sent_at=message.timestamp or utcnow(),
            metadata=message.raw,
        )
        .on_conflict_do_nothing(index_elements=["tenant_id", "provider_message_id"])
    )
    return db.execute(stmt).rowcount > 0


def _message_body(message: ParsedMessage, stored) -> Optional[str]:
    if isinstance(message, MediaMessage):
        if stored is None:
            return message.placeholder()
        return message.caption
    if message.text:
        return message.text
    return message.placeholder()


def process_message(db: Session, tenant: ResolvedTenant, message: ParsedMessage) -> InboundResult:
    """Persist one inbound message and advance routing and chatbot state.

    Commits before returning. The automated reply, if any, is returned and
    not yet sent.
    """
    log = LoggerAdapter(
        logger,
        {"tenant_id": str(tenant.tenant_id), "provider_message_id": message.provider_message_id},
    )

    if _already_stored(db, tenant.tenant_id, message.provider_message_id):
        log.info("Duplicate inbound message skipped")
        return InboundResult(status="duplicate")

    stored = None
    if isinstance(message, MediaMessage) and message.media_id:
        stored = media_service.fetch_and_persist(
            tenant.tenant_id, message.media_id, tenant.credential, mime_type=message.mime_type
        )

    conversation, is_new = conversation_service.resolve_or_create(
        db, tenant.tenant_id, message.from_address, message.contact_name
    )
    if not _insert_inbound(db, conversation, message, _message_body(message, stored), stored):
        db.rollback()
        log.info("Duplicate inbound message skipped on insert")
        return InboundResult(status="duplicate")

    conversation_service.record_inbound(db, conversation, message.timestamp, message.contact_name)

    settings = routing_service.get_settings(db, tenant.tenant_id)
    strategy = routing_service.parse_strategy(settings.strategy)
    reply = None
    if is_new:
        decision = routing_service.route_new_conversation(db, conversation, settings, first_text=message.text)
        if isinstance(decision.outcome, DeferToChatbot):
            reply = chatbot_service.start(db, conversation, settings)
        elif strategy == RoutingStrategy.CHATBOT:
            chatbot_service.skip(db, conversation)
    elif strategy == RoutingStrategy.CHATBOT:
        reply = chatbot_service.handle_message(db, conversation, settings, message.text).text

    conversation_id = conversation.id
    db.commit()
    log.info(
        "Inbound message stored",
        context={"conversation_id": str(conversation_id), "type": message.message_type, "is_new": is_new},
    )
    return InboundResult(status="processed", conversation_id=conversation_id, is_new=is_new, reply=reply)


def send_automated_reply(db: Session, conversation_id, text: str) -> bool:
    """Send a chatbot reply. Failures are logged; stored state is untouched."""
    conversation = db.get(Conversation, conversation_id)
    if conversation is None:
        return False
    try:
        dispatch_service.send_message(db, conversation, dispatch_service.FreeformContent(text))
        db.commit()
        return True
    except InboxError as exc:
        db.rollback()
        if isinstance(exc, AuthExpiredError):
            dispatch_service.record_auth_failure(db, exc)
        logger.warning(
            "Automated reply not sent",
            extra={"context": {"conversation_id": str(conversation_id), "code": exc.code, "error": exc.detail}},
        )
    except Exception as exc:
        db.rollback()
        logger.error(
            "Automated reply crashed",
            extra={"context": {"conversation_id": str(conversation_id), "error": str(exc)}},
            exc_info=True,
        )
    return False


def record_receipts(db: Session, tenant: ResolvedTenant, statuses: list[DeliveryStatus]) -> int:
    for status in statuses:
        db.add(
            MessageReceipt(
                tenant_id=tenant.tenant_id,
                provider_message_id=status.provider_message_id,
                status=status.status,
                error_message=status.error_message,
                received_at=utcnow(),
            )
        )
    db.commit()
    return len(statuses)


def ingest_payload(db: Session, raw: Union[bytes, str, dict]) -> IngestionReport:
    report = IngestionReport()
    try:
        changes = parse_webhook_payload(raw)
    except MalformedPayloadError as exc:
        logger.warning("Malformed webhook payload dropped", extra={"context": {"error": exc.detail}})
        return report

    for change in changes:
        report.received += len(change.messages)
        try:
            tenant = tenant_service.resolve_tenant(db, change.channel_id)
        except UnresolvedTenantError as exc:
            report.dropped += len(change.messages)
            logger.warning(
                "Webhook change dropped: tenant not resolved",
                extra={"context": {"channel_id": exc.channel_id, "messages": len(change.messages)}},
            )
            continue

        for message in change.messages:
            try:
                result = process_message(db, tenant, message)
            except Exception as exc:
                db.rollback()
                report.failed += 1
                logger.error(
                    "Inbound message failed",
                    extra={
                        "context": {
                            "tenant_id": str(tenant.tenant_id),
                            "provider_message_id": message.provider_message_id,
                            "error": str(exc),
                        }
                    },
                    exc_info=True,
                )
                continue

            if result.status == "duplicate":
                report.duplicates += 1
                continue
            report.processed += 1
            if result.reply:
                if send_automated_reply(db, result.conversation_id, result.reply):
                    report.replies_sent += 1
                else:
                    report.replies_failed += 1

        if change.statuses:
            try:
                report.receipts += record_receipts(db, tenant, change.statuses)
            except Exception as exc:
                db.rollback()
                logger.error("Delivery receipts not stored", extra={"context": {"error": str(exc)}})

    logger.info("Webhook processed", extra={"context": report.as_dict()})
    return report
