"""Which conversations a user can see, and how many unread messages each has."""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from sqlalchemy import and_, exists, func, or_
from sqlalchemy.orm import Session

from app.models import Conversation, ConversationView, EligibleOperator, Message, RoutingSettings

ROLE_ADMIN = "admin"
ROLE_OPERATOR = "operator"

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class Actor:
    tenant_id: UUID
    user_id: UUID
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


def _visibility_filter(db: Session, actor: Actor):
    """SQL criterion for non-admin visibility."""
    settings = db.query(RoutingSettings).filter(RoutingSettings.tenant_id == actor.tenant_id).first()
    assigned_to_me = Conversation.assigned_operator_id == actor.user_id
    unassigned = Conversation.assigned_operator_id.is_(None)

    if settings is not None and settings.strategy == "general_secretary":
        if settings.designated_operator_id == actor.user_id:
            return or_(assigned_to_me, unassigned)
        return assigned_to_me

    has_pool = exists().where(EligibleOperator.conversation_id == Conversation.id)
    in_pool = exists().where(
        and_(EligibleOperator.conversation_id == Conversation.id, EligibleOperator.operator_id == actor.user_id)
    )
    return or_(assigned_to_me, and_(unassigned, or_(~has_pool, in_pool)))


def list_visible(db: Session, actor: Actor, status: Optional[str] = None) -> list[Conversation]:
    query = db.query(Conversation).filter(Conversation.tenant_id == actor.tenant_id)
    if not actor.is_admin:
        query = query.filter(_visibility_filter(db, actor))
    if status:
        query = query.filter(Conversation.status == status)
    return query.order_by(Conversation.last_inbound_at.desc(), Conversation.created_at.desc()).all()


def can_view(db: Session, actor: Actor, conversation: Conversation) -> bool:
    if conversation.tenant_id != actor.tenant_id:
        return False
    if actor.is_admin:
        return True
    return (
        db.query(Conversation.id)
        .filter(Conversation.id == conversation.id, _visibility_filter(db, actor))
        .first()
        is not None
    )


def _watermark(db: Session, user_id: UUID, conversation_id: UUID) -> datetime:
    view = (
        db.query(ConversationView.last_viewed_at)
        .filter(ConversationView.user_id == user_id, ConversationView.conversation_id == conversation_id)
        .first()
    )
    return view[0] if view else EPOCH


def unread_count(db: Session, user_id: UUID, conversation_id: UUID) -> int:
    watermark = _watermark(db, user_id, conversation_id)
    return (
        db.query(func.count(Message.id))
        .filter(
            Message.conversation_id == conversation_id,
            Message.direction == "inbound",
            Message.sent_at > watermark,
        )
        .scalar()
        or 0
    )


def unread_counts(db: Session, user_id: UUID, conversation_ids: list[UUID]) -> dict[UUID, int]:
    return {conversation_id: unread_count(db, user_id, conversation_id) for conversation_id in conversation_ids}
