"""Clinic administration: routing configuration, operators, maintenance."""

from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from app.config import settings as app_settings
from app.database import get_db
from app.dependencies import get_actor, require_admin, require_admin_token
from app.logging_config import get_logger
from app.models import RoutingSettings
from app.schemas.routing import CloseIdleResponse, OperatorOut, RoutingSettingsOut, RoutingSettingsUpdate
from app.services import conversation_service, directory_service, routing_service
from app.services.debug_buffer import webhook_debug_buffer
from app.services.visibility_service import Actor

logger = get_logger("admin")

router = APIRouter(prefix="/admin", tags=["admin"])


# === ROUTING ===


@router.get("/routing-settings", response_model=RoutingSettingsOut)
def get_routing_settings(actor: Actor = Depends(require_admin), db: Session = Depends(get_db)):
    return RoutingSettingsOut.model_validate(routing_service.get_settings(db, actor.tenant_id))


@router.put("/routing-settings", response_model=RoutingSettingsOut)
def update_routing_settings(
    data: RoutingSettingsUpdate,
    actor: Actor = Depends(require_admin),
    db: Session = Depends(get_db),
):
    if data.designated_operator_id is not None and not directory_service.is_active_operator(
        db, actor.tenant_id, data.designated_operator_id
    ):
        raise HTTPException(status_code=400, detail="designated_operator_id is not an active operator")

    row = db.query(RoutingSettings).filter(RoutingSettings.tenant_id == actor.tenant_id).first()
    if row is None:
        row = RoutingSettings(tenant_id=actor.tenant_id)
        db.add(row)
    row.strategy = data.strategy.value
    row.designated_operator_id = data.designated_operator_id
    row.chatbot_fallback_strategy = data.chatbot_fallback_strategy.value
    row.greet_on_first_contact = data.greet_on_first_contact
    db.commit()
    db.refresh(row)

    logger.info(
        "Routing settings updated",
        extra={"context": {"tenant_id": str(actor.tenant_id), "strategy": row.strategy, "by": str(actor.user_id)}},
    )
    return RoutingSettingsOut.model_validate(row)


@router.get("/operators", response_model=list[OperatorOut])
def list_operators(actor: Actor = Depends(get_actor), db: Session = Depends(get_db)):
    operators = directory_service.list_operators(db, actor.tenant_id)
    counts = directory_service.open_conversation_counts(db, actor.tenant_id, [operator.id for operator in operators])
    result = []
    for operator in operators:
        out = OperatorOut.model_validate(operator)
        out.open_conversations = counts.get(operator.id, 0)
        result.append(out)
    return result


# === MAINTENANCE ===


@router.post("/close-idle", response_model=CloseIdleResponse)
def close_idle_conversations(actor: Actor = Depends(require_admin), db: Session = Depends(get_db)):
    closed = conversation_service.close_idle(
        db, tenant_id=actor.tenant_id, older_than=timedelta(hours=app_settings.conversation_idle_hours)
    )
    db.commit()
    return CloseIdleResponse(closed=closed)


@router.get("/webhook-debug", dependencies=[Depends(require_admin_token)])
def get_webhook_debug(limit: int = Query(default=10, ge=1, le=100)):
    """Most recent raw webhook bodies, newest first."""
    return {"items": webhook_debug_buffer.recent(limit)}
