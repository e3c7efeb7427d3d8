"""Read-only lookups over operators, providers, offerings and customer records."""

from typing import Optional
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.models import (
    Conversation,
    CustomerRecord,
    Engagement,
    Offering,
    Operator,
    OperatorProvider,
    ProviderOffering,
    ReferralCode,
)
from app.services.phone_utils import phone_matches

CANCELLED_ENGAGEMENT_STATUS = "cancelled"


def list_operators(db: Session, tenant_id: UUID, include_inactive: bool = False) -> list[Operator]:
    query = db.query(Operator).filter(Operator.tenant_id == tenant_id)
    if not include_inactive:
        query = query.filter(Operator.active.is_(True))
    return query.order_by(Operator.name, Operator.id).all()


def list_operator_ids(db: Session, tenant_id: UUID) -> list[UUID]:
    return [operator.id for operator in list_operators(db, tenant_id)]


def is_active_operator(db: Session, tenant_id: UUID, operator_id: Optional[UUID]) -> bool:
    if operator_id is None:
        return False
    return (
        db.query(Operator.id)
        .filter(Operator.tenant_id == tenant_id, Operator.id == operator_id, Operator.active.is_(True))
        .first()
        is not None
    )


def list_offerings(db: Session, tenant_id: UUID) -> list[Offering]:
    return db.query(Offering).filter(Offering.tenant_id == tenant_id).order_by(Offering.name, Offering.id).all()


def _active_operator_ids_for_providers(db: Session, tenant_id: UUID, provider_ids) -> list[UUID]:
    if not provider_ids:
        return []
    rows = (
        db.query(Operator.id)
        .join(OperatorProvider, OperatorProvider.operator_id == Operator.id)
        .filter(
            Operator.tenant_id == tenant_id,
            Operator.active.is_(True),
            OperatorProvider.provider_id.in_(list(provider_ids)),
        )
        .distinct()
        .all()
    )
    return sorted((row[0] for row in rows), key=str)


def operators_for_provider(db: Session, tenant_id: UUID, provider_id: UUID) -> list[UUID]:
    return _active_operator_ids_for_providers(db, tenant_id, [provider_id])


def operators_for_offering(db: Session, tenant_id: UUID, offering_id: UUID) -> list[UUID]:
    """Operators linked to any provider that performs the offering."""
    provider_ids = [
        row[0]
        for row in db.query(ProviderOffering.provider_id)
        .filter(ProviderOffering.tenant_id == tenant_id, ProviderOffering.offering_id == offering_id)
        .all()
    ]
    return _active_operator_ids_for_providers(db, tenant_id, provider_ids)


def find_customer_by_address(db: Session, tenant_id: UUID, address: str) -> Optional[CustomerRecord]:
    records = (
        db.query(CustomerRecord)
        .filter(CustomerRecord.tenant_id == tenant_id, CustomerRecord.phone.isnot(None))
        .order_by(CustomerRecord.id)
        .all()
    )
    for record in records:
        if phone_matches(record.phone, address):
            return record
    return None


def latest_engagement_provider(db: Session, customer_record_id: UUID) -> Optional[UUID]:
    engagement = (
        db.query(Engagement)
        .filter(
            Engagement.customer_record_id == customer_record_id,
            Engagement.status != CANCELLED_ENGAGEMENT_STATUS,
        )
        .order_by(Engagement.scheduled_at.desc())
        .first()
    )
    return engagement.provider_id if engagement else None


def open_conversation_counts(db: Session, tenant_id: UUID, operator_ids: list[UUID]) -> dict[UUID, int]:
    """Open conversations per operator, zero-filled for every id given."""
    counts = {operator_id: 0 for operator_id in operator_ids}
    if not operator_ids:
        return counts
    rows = (
        db.query(Conversation.assigned_operator_id, func.count(Conversation.id))
        .filter(
            Conversation.tenant_id == tenant_id,
            Conversation.status == "open",
            Conversation.assigned_operator_id.in_(operator_ids),
        )
        .group_by(Conversation.assigned_operator_id)
        .all()
    )
    for operator_id, count in rows:
        counts[operator_id] = count
    return counts


def match_referral_provider(db: Session, tenant_id: UUID, text: Optional[str]) -> Optional[UUID]:
    """Provider whose referral code appears in the text (case-insensitive)."""
    normalized = (text or "").strip().lower()
    if not normalized:
        return None
    codes = db.query(ReferralCode).filter(ReferralCode.tenant_id == tenant_id).order_by(ReferralCode.code).all()
    for row in codes:
        code = (row.code or "").strip().lower()
        if code and code in normalized:
            return row.provider_id
    return None
