from sqlalchemy import Boolean, Column, ForeignKey, Text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID

from app.database import Base
from app.db_utils import utcnow


class RoutingSettings(Base):
    __tablename__ = "routing_settings"

    tenant_id = Column(UUID(as_uuid=True), ForeignKey("tenants.id"), primary_key=True)
    strategy = Column(Text, nullable=False, default="first_responder")
    designated_operator_id = Column(UUID(as_uuid=True), ForeignKey("operators.id", ondelete="SET NULL"))
    chatbot_fallback_strategy = Column(Text, nullable=False, default="first_responder")
    greet_on_first_contact = Column(Boolean, nullable=False, default=True)
    updated_at = Column(TIMESTAMP(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
