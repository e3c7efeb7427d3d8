from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from app.db_utils import ensure_utc, insert_for, utcnow
from app.logging_config import get_logger
from app.models import (
    Conversation,
    ConversationView,
    CustomerRecord,
    EligibleOperator,
    Message,
    MessageReceipt,
)
from app.services import directory_service
from app.services.result import Result
from app.services.routing_service import replace_eligible_operators
from app.services.visibility_service import Actor

logger = get_logger("conversation_service")

STATUS_OPEN = "open"
STATUS_CLOSED = "closed"
STATUS_COMPLETED = "completed"
VALID_STATUSES = {STATUS_OPEN, STATUS_CLOSED, STATUS_COMPLETED}

IDLE_WINDOW = timedelta(hours=24)


def _find(db: Session, tenant_id: UUID, phone_number: str) -> Optional[Conversation]:
    return (
        db.query(Conversation)
        .filter(Conversation.tenant_id == tenant_id, Conversation.phone_number == phone_number)
        .first()
    )


def resolve_or_create(
    db: Session,
    tenant_id: UUID,
    phone_number: str,
    contact_name: Optional[str] = None,
) -> tuple[Conversation, bool]:
    """Find the conversation for (tenant, address) or create it.

    Concurrent first-contact deliveries race on the unique constraint; the
    losing insert is a no-op and every caller reads back the same row.
    """
    conversation = _find(db, tenant_id, phone_number)
    if conversation:
        return conversation, False

    stmt = (
        insert_for(db, Conversation.__table__)
        .values(
            id=uuid4(),
            tenant_id=tenant_id,
            phone_number=phone_number,
            contact_name=contact_name,
            status=STATUS_OPEN,
            created_at=utcnow(),
        )
        .on_conflict_do_nothing(index_elements=["tenant_id", "phone_number"])
    )
    result = db.execute(stmt)
    is_new = result.rowcount > 0

    conversation = _find(db, tenant_id, phone_number)
    if conversation is None:
        raise RuntimeError(f"Conversation for {phone_number} vanished after insert")

    if is_new:
        logger.info(
            "Conversation created",
            extra={"context": {"tenant_id": str(tenant_id), "conversation_id": str(conversation.id)}},
        )
    return conversation, is_new


def record_inbound(
    db: Session,
    conversation: Conversation,
    at: Optional[datetime] = None,
    contact_name: Optional[str] = None,
) -> Conversation:
    """Every inbound message reopens the conversation.

    The idle clock only moves forward, so a late redelivery of an older
    message cannot rewind it.
    """
    at = at or utcnow()
    current = ensure_utc(conversation.last_inbound_at)
    if current is None or current < at:
        conversation.last_inbound_at = at
    conversation.status = STATUS_OPEN
    if contact_name and not conversation.contact_name:
        conversation.contact_name = contact_name
    db.flush()
    return conversation


def close_idle(
    db: Session,
    tenant_id: Optional[UUID] = None,
    older_than: timedelta = IDLE_WINDOW,
    now: Optional[datetime] = None,
) -> int:
    """Close open conversations without inbound activity inside the window."""
    cutoff = (now or utcnow()) - older_than
    query = db.query(Conversation).filter(
        Conversation.status == STATUS_OPEN,
        Conversation.last_inbound_at.isnot(None),
        Conversation.last_inbound_at < cutoff,
    )
    if tenant_id is not None:
        query = query.filter(Conversation.tenant_id == tenant_id)
    closed = query.update({Conversation.status: STATUS_CLOSED}, synchronize_session=False)
    db.flush()
    if closed:
        logger.info(
            "Idle conversations closed",
            extra={"context": {"tenant_id": str(tenant_id) if tenant_id else None, "closed": closed}},
        )
    return closed


def claim(db: Session, conversation: Conversation, operator_id: UUID) -> Result[Conversation]:
    """Take an unassigned conversation. Only one claimer can ever win."""
    if not directory_service.is_active_operator(db, conversation.tenant_id, operator_id):
        return Result.failure("Operator does not belong to this clinic", "invalid_operator")

    eligible = {
        row[0]
        for row in db.query(EligibleOperator.operator_id)
        .filter(EligibleOperator.conversation_id == conversation.id)
        .all()
    }
    if eligible and operator_id not in eligible:
        return Result.failure("Operator is not eligible for this conversation", "forbidden")

    now = utcnow()
    updated = (
        db.query(Conversation)
        .filter(Conversation.id == conversation.id, Conversation.assigned_operator_id.is_(None))
        .update(
            {Conversation.assigned_operator_id: operator_id, Conversation.assigned_at: now},
            synchronize_session=False,
        )
    )
    if updated != 1:
        db.refresh(conversation)
        return Result.failure("Conversation already assigned", "already_assigned")

    replace_eligible_operators(db, conversation.id, [])
    db.flush()
    db.refresh(conversation)
    logger.info(
        "Conversation claimed",
        extra={"context": {"conversation_id": str(conversation.id), "operator_id": str(operator_id)}},
    )
    return Result.success(conversation)


def assign(db: Session, conversation: Conversation, operator_id: UUID, actor: Actor) -> Result[Conversation]:
    """Explicit hand-off by an admin or the current assignee."""
    if not actor.is_admin and conversation.assigned_operator_id != actor.user_id:
        return Result.failure("Only an admin or the assigned operator can transfer", "forbidden")
    if not directory_service.is_active_operator(db, conversation.tenant_id, operator_id):
        return Result.failure("Target operator does not belong to this clinic", "invalid_operator")

    previous = conversation.assigned_operator_id
    conversation.assigned_operator_id = operator_id
    conversation.assigned_at = utcnow()
    replace_eligible_operators(db, conversation.id, [])
    db.flush()
    logger.info(
        "Conversation assigned",
        extra={
            "context": {
                "conversation_id": str(conversation.id),
                "from": str(previous) if previous else None,
                "to": str(operator_id),
                "by": str(actor.user_id),
            }
        },
    )
    return Result.success(conversation)


def set_status(db: Session, conversation: Conversation, status: str) -> Result[Conversation]:
    if status not in VALID_STATUSES:
        return Result.failure(f"Unknown status: {status}", "invalid_status")
    conversation.status = status
    db.flush()
    return Result.success(conversation)


def link_customer(db: Session, conversation: Conversation, customer_record_id: Optional[UUID]) -> Result[Conversation]:
    if customer_record_id is not None:
        record = (
            db.query(CustomerRecord)
            .filter(CustomerRecord.id == customer_record_id, CustomerRecord.tenant_id == conversation.tenant_id)
            .first()
        )
        if record is None:
            return Result.failure("Customer record not found", "not_found")
    conversation.customer_record_id = customer_record_id
    db.flush()
    return Result.success(conversation)


def mark_viewed(db: Session, user_id: UUID, conversation: Conversation, at: Optional[datetime] = None) -> None:
    viewed_at = at or utcnow()
    view = (
        db.query(ConversationView)
        .filter(ConversationView.user_id == user_id, ConversationView.conversation_id == conversation.id)
        .first()
    )
    if view:
        view.last_viewed_at = viewed_at
    else:
        db.add(ConversationView(user_id=user_id, conversation_id=conversation.id, last_viewed_at=viewed_at))
    db.flush()


def erase(db: Session, conversation: Conversation, storage) -> int:
    """Delete a conversation with its messages and stored media.

    Media objects go first so a storage failure leaves the rows in place
    and the erasure can be retried.
    """
    messages = db.query(Message).filter(Message.conversation_id == conversation.id).all()
    media_keys = [message.media_storage_key for message in messages if message.media_storage_key]
    for key in media_keys:
        storage.delete(key)

    provider_ids = [message.provider_message_id for message in messages if message.provider_message_id]
    if provider_ids:
        db.query(MessageReceipt).filter(
            MessageReceipt.tenant_id == conversation.tenant_id,
            MessageReceipt.provider_message_id.in_(provider_ids),
        ).delete(synchronize_session=False)
    db.query(Message).filter(Message.conversation_id == conversation.id).delete(synchronize_session=False)
    db.query(EligibleOperator).filter(EligibleOperator.conversation_id == conversation.id).delete(
        synchronize_session=False
    )
    db.query(ConversationView).filter(ConversationView.conversation_id == conversation.id).delete(
        synchronize_session=False
    )
    conversation_id = conversation.id
    db.delete(conversation)
    db.flush()
    logger.info(
        "Conversation erased",
        extra={"context": {"conversation_id": str(conversation_id), "media_deleted": len(media_keys)}},
    )
    return len(media_keys)
