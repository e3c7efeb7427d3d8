from app.schemas.conversation import (
    AssignRequest,
    ConversationOut,
    LinkCustomerRequest,
    MessageOut,
    SendTemplateRequest,
    SendTextRequest,
    UnreadCountResponse,
)
from app.schemas.routing import OperatorOut, RoutingSettingsOut, RoutingSettingsUpdate
from app.schemas.whatsapp import WebhookAck, WebhookPayload

__all__ = [
    "ConversationOut",
    "MessageOut",
    "SendTextRequest",
    "SendTemplateRequest",
    "AssignRequest",
    "LinkCustomerRequest",
    "UnreadCountResponse",
    "RoutingSettingsOut",
    "RoutingSettingsUpdate",
    "OperatorOut",
    "WebhookAck",
    "WebhookPayload",
]
