"""24-hour customer service window for free-form WhatsApp messages."""

from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.db_utils import ensure_utc, utcnow
from app.models import Conversation, Message
from app.services.errors import OutsideWindowError

FREE_FORM_WINDOW = timedelta(hours=24)


def last_inbound_at(db: Session, conversation: Conversation) -> Optional[datetime]:
    value = (
        db.query(func.max(Message.sent_at))
        .filter(Message.conversation_id == conversation.id, Message.direction == "inbound")
        .scalar()
    )
    return ensure_utc(value)


def can_send_free_form(db: Session, conversation: Conversation, now: Optional[datetime] = None) -> bool:
    """Only inbound messages open the window; outbound sends never extend it."""
    last = last_inbound_at(db, conversation)
    if last is None:
        return False
    return (now or utcnow()) - last < FREE_FORM_WINDOW


def ensure_can_send_free_form(db: Session, conversation: Conversation, now: Optional[datetime] = None) -> None:
    if not can_send_free_form(db, conversation, now=now):
        raise OutsideWindowError(conversation.id)
