"""Error taxonomy for ingestion and outbound sends.

Ingestion errors are contained by the webhook boundary. Send-path errors
propagate to the caller and map onto HTTP responses through
``to_http_exception``.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import HTTPException


@dataclass(eq=False)
class InboxError(Exception):
    code: str
    detail: str
    status_code: int = 400

    def __str__(self) -> str:
        return self.detail

    def to_http_exception(self) -> HTTPException:
        return HTTPException(status_code=self.status_code, detail={"code": self.code, "message": self.detail})


class MalformedPayloadError(InboxError):
    def __init__(self, detail: str):
        super().__init__(code="malformed_payload", detail=detail, status_code=400)


class UnresolvedTenantError(InboxError):
    def __init__(self, channel_id: Optional[str]):
        self.channel_id = channel_id
        super().__init__(
            code="unresolved_tenant",
            detail=f"No connected credential for channel id {channel_id!r}",
            status_code=404,
        )


class OutsideWindowError(InboxError):
    def __init__(self, conversation_id):
        self.conversation_id = conversation_id
        super().__init__(
            code="outside_window",
            detail="Free-form messages are only allowed within 24h of the last customer message; use a template",
            status_code=409,
        )


class ChannelNotConnectedError(InboxError):
    def __init__(self, tenant_id):
        self.tenant_id = tenant_id
        super().__init__(
            code="channel_not_connected",
            detail="WhatsApp is not connected for this clinic",
            status_code=409,
        )


class AuthExpiredError(InboxError):
    def __init__(self, detail: str = "Token de acesso expirado ou inválido", credential_id=None):
        self.credential_id = credential_id
        super().__init__(code="auth_expired", detail=detail, status_code=401)


class ProviderError(InboxError):
    def __init__(self, detail: str, provider_code: Optional[int] = None):
        self.provider_code = provider_code
        super().__init__(code="provider_error", detail=detail, status_code=502)


class MediaFetchFailedError(InboxError):
    def __init__(self, media_id: str, detail: str):
        self.media_id = media_id
        super().__init__(code="media_fetch_failed", detail=detail, status_code=502)
