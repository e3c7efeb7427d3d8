"""Request identity supplied by the upstream identity service as headers."""

from typing import Optional
from uuid import UUID

from fastapi import Depends, Header, HTTPException, status

from app.config import settings
from app.services.visibility_service import ROLE_ADMIN, ROLE_OPERATOR, Actor

VALID_ROLES = {ROLE_ADMIN, ROLE_OPERATOR}


def _parse_uuid(value: str, header: str) -> UUID:
    try:
        return UUID(value)
    except (TypeError, ValueError):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=f"Invalid {header} header")


def get_actor(
    x_tenant_id: Optional[str] = Header(default=None, alias="X-Tenant-Id"),
    x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
    x_user_role: str = Header(default=ROLE_OPERATOR, alias="X-User-Role"),
) -> Actor:
    if not x_tenant_id or not x_user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing identity headers")
    role = (x_user_role or "").strip().lower()
    if role not in VALID_ROLES:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=f"Unknown role: {x_user_role}")
    return Actor(
        tenant_id=_parse_uuid(x_tenant_id, "X-Tenant-Id"),
        user_id=_parse_uuid(x_user_id, "X-User-Id"),
        role=role,
    )


def require_admin(actor: Actor = Depends(get_actor)) -> Actor:
    if not actor.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin role required")
    return actor


def require_admin_token(x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token")) -> None:
    """Operations token for cross-tenant diagnostics."""
    expected = settings.admin_token
    if not expected:
        raise HTTPException(status_code=500, detail="ADMIN_TOKEN not configured")
    if not x_admin_token or x_admin_token != expected:
        raise HTTPException(status_code=401, detail="Invalid admin token")
