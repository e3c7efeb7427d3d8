import uuid

from sqlalchemy import Column, ForeignKey, Text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID

from app.database import Base


class CustomerRecord(Base):
    __tablename__ = "customer_records"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id"), nullable=False, index=True)
    name = Column(Text)
    phone = Column(Text)


class Engagement(Base):
    """Appointment of a customer with a provider."""

    __tablename__ = "engagements"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id"), nullable=False, index=True)
    customer_record_id = Column(
        UUID(as_uuid=True), ForeignKey("customer_records.id", ondelete="CASCADE"), nullable=False
    )
    provider_id = Column(UUID(as_uuid=True), ForeignKey("providers.id"))
    status = Column(Text, nullable=False, default="scheduled")  # scheduled, confirmed, done, cancelled
    scheduled_at = Column(TIMESTAMP(timezone=True), nullable=False)
