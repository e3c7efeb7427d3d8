import uuid

from sqlalchemy import Column, ForeignKey, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.orm import relationship

from app.database import Base
from app.db_utils import utcnow


class Conversation(Base):
    __tablename__ = "conversations"
    __table_args__ = (UniqueConstraint("tenant_id", "phone_number", name="uq_conversations_tenant_phone"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id"), nullable=False, index=True)
    phone_number = Column(Text, nullable=False)
    contact_name = Column(Text)
    status = Column(Text, nullable=False, default="open")  # open, closed, completed
    assigned_operator_id = Column(UUID(as_uuid=True), ForeignKey("operators.id", ondelete="SET NULL"))
    assigned_at = Column(TIMESTAMP(timezone=True))
    chatbot_step = Column(Text)  # menu, awaiting_procedure, done
    last_inbound_at = Column(TIMESTAMP(timezone=True))
    customer_record_id = Column(UUID(as_uuid=True), ForeignKey("customer_records.id", ondelete="SET NULL"))
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, default=utcnow)

    messages = relationship("Message", back_populates="conversation", order_by="Message.sent_at")


class EligibleOperator(Base):
    """Candidate operators for an unassigned conversation."""

    __tablename__ = "conversation_eligible_operators"

    conversation_id = Column(
        UUID(as_uuid=True), ForeignKey("conversations.id", ondelete="CASCADE"), primary_key=True
    )
    operator_id = Column(UUID(as_uuid=True), ForeignKey("operators.id", ondelete="CASCADE"), primary_key=True)


class ConversationView(Base):
    """Last time a user opened a conversation; drives unread counts only."""

    __tablename__ = "conversation_views"

    user_id = Column(UUID(as_uuid=True), primary_key=True)
    conversation_id = Column(
        UUID(as_uuid=True), ForeignKey("conversations.id", ondelete="CASCADE"), primary_key=True
    )
    last_viewed_at = Column(TIMESTAMP(timezone=True), nullable=False)
