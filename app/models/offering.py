import uuid

from sqlalchemy import Column, ForeignKey, Text
from sqlalchemy.dialects.postgresql import UUID

from app.database import Base


class Offering(Base):
    """Bookable service (procedure) listed by the chatbot."""

    __tablename__ = "offerings"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id"), nullable=False, index=True)
    name = Column(Text, nullable=False)


class ProviderOffering(Base):
    __tablename__ = "provider_offerings"

    provider_id = Column(UUID(as_uuid=True), ForeignKey("providers.id", ondelete="CASCADE"), primary_key=True)
    offering_id = Column(UUID(as_uuid=True), ForeignKey("offerings.id", ondelete="CASCADE"), primary_key=True)
    tenant_id = Column(UUID(as_uuid=True), nullable=False, index=True)
