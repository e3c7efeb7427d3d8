import uuid

from sqlalchemy import Column, ForeignKey, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID

from app.database import Base
from app.db_utils import utcnow


class ChannelCredential(Base):
    __tablename__ = "channel_credentials"
    __table_args__ = (UniqueConstraint("tenant_id", "channel_type", name="uq_channel_credentials_tenant_channel"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id"), nullable=False)
    channel_type = Column(Text, nullable=False)  # whatsapp_meta, whatsapp_simple
    access_token = Column(Text)
    phone_number_id = Column(Text, index=True)
    waba_id = Column(Text)
    status = Column(Text, nullable=False, default="pending")  # connected, pending, error
    error_message = Column(Text)
    updated_at = Column(TIMESTAMP(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
