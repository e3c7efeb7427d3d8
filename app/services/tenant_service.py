from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.config import settings
from app.logging_config import get_logger
from app.models import ChannelCredential
from app.services.errors import UnresolvedTenantError

logger = get_logger("tenant_service")

WHATSAPP_CHANNELS = ("whatsapp_meta", "whatsapp_simple")
STATUS_CONNECTED = "connected"
STATUS_ERROR = "error"


@dataclass
class ResolvedTenant:
    tenant_id: UUID
    credential: ChannelCredential
    via_fallback: bool = False


def resolve_tenant(db: Session, channel_id: Optional[str], allow_fallback: Optional[bool] = None) -> ResolvedTenant:
    """Find the tenant whose connected credential owns the sender id.

    The single-tenant fallback is only used when enabled and exactly one
    tenant has a connected WhatsApp credential.
    """
    connected = db.query(ChannelCredential).filter(
        ChannelCredential.channel_type.in_(WHATSAPP_CHANNELS),
        ChannelCredential.status == STATUS_CONNECTED,
    )

    if channel_id:
        credential = (
            connected.filter(
                or_(ChannelCredential.phone_number_id == channel_id, ChannelCredential.waba_id == channel_id)
            )
            .order_by(ChannelCredential.channel_type)
            .first()
        )
        if credential:
            return ResolvedTenant(tenant_id=credential.tenant_id, credential=credential)

    fallback_enabled = settings.single_tenant_fallback if allow_fallback is None else allow_fallback
    if fallback_enabled:
        candidates = connected.order_by(ChannelCredential.channel_type).all()
        tenant_ids = {credential.tenant_id for credential in candidates}
        if len(tenant_ids) == 1:
            credential = candidates[0]
            logger.warning(
                "Tenant resolved by single-tenant fallback",
                extra={"context": {"channel_id": channel_id, "tenant_id": str(credential.tenant_id)}},
            )
            return ResolvedTenant(tenant_id=credential.tenant_id, credential=credential, via_fallback=True)

    raise UnresolvedTenantError(channel_id)


def get_connected_credential(db: Session, tenant_id: UUID) -> Optional[ChannelCredential]:
    """Connected credential used for sends; whatsapp_meta is preferred."""
    credentials = (
        db.query(ChannelCredential)
        .filter(
            ChannelCredential.tenant_id == tenant_id,
            ChannelCredential.channel_type.in_(WHATSAPP_CHANNELS),
            ChannelCredential.status == STATUS_CONNECTED,
        )
        .all()
    )
    for channel_type in WHATSAPP_CHANNELS:
        for credential in credentials:
            if credential.channel_type == channel_type:
                return credential
    return None


def mark_credential_error(db: Session, credential: ChannelCredential, message: str) -> None:
    """Credentials never heal on their own; the clinic must reconnect."""
    credential.status = STATUS_ERROR
    credential.error_message = message
    db.flush()
