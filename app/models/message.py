import uuid

from sqlalchemy import Column, ForeignKey, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP, UUID
from sqlalchemy.orm import relationship

from app.database import Base
from app.db_utils import utcnow


class Message(Base):
    __tablename__ = "messages"
    __table_args__ = (
        UniqueConstraint("tenant_id", "provider_message_id", name="uq_messages_tenant_provider_id"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    conversation_id = Column(
        UUID(as_uuid=True), ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    tenant_id = Column(UUID(as_uuid=True), nullable=False)
    direction = Column(Text, nullable=False)  # inbound, outbound
    message_type = Column(Text, nullable=False, default="text")  # text, image, audio, video, document, other
    body = Column(Text)
    media_url = Column(Text)
    media_storage_key = Column(Text)
    provider_message_id = Column(Text)
    sent_by_operator_id = Column(UUID(as_uuid=True))
    sent_at = Column(TIMESTAMP(timezone=True), nullable=False, default=utcnow)
    raw_payload = Column("metadata", JSONB, nullable=False, default=dict)

    conversation = relationship("Conversation", back_populates="messages")


class MessageReceipt(Base):
    """Delivery status callback for an outbound message."""

    __tablename__ = "message_receipts"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), nullable=False)
    provider_message_id = Column(Text, nullable=False, index=True)
    status = Column(Text, nullable=False)  # sent, delivered, read, failed
    error_message = Column(Text)
    received_at = Column(TIMESTAMP(timezone=True), nullable=False, default=utcnow)
