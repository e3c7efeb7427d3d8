from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class ConversationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    phone_number: str
    contact_name: Optional[str] = None
    status: str
    assigned_operator_id: Optional[UUID] = None
    assigned_at: Optional[datetime] = None
    chatbot_step: Optional[str] = None
    last_inbound_at: Optional[datetime] = None
    customer_record_id: Optional[UUID] = None
    created_at: datetime
    unread_count: int = 0


class MessageOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    direction: str
    message_type: str
    body: Optional[str] = None
    media_url: Optional[str] = None
    provider_message_id: Optional[str] = None
    sent_by_operator_id: Optional[UUID] = None
    sent_at: datetime
    delivery_status: Optional[str] = None


class SendTextRequest(BaseModel):
    text: str = Field(min_length=1, max_length=4096)


class SendTemplateRequest(BaseModel):
    name: str = Field(min_length=1)
    params: list[str] = Field(default_factory=list)
    language: Optional[str] = None


class AssignRequest(BaseModel):
    operator_id: UUID


class LinkCustomerRequest(BaseModel):
    customer_record_id: Optional[UUID] = None


class UnreadCountResponse(BaseModel):
    total: int
    by_conversation: dict[UUID, int]


class EraseResponse(BaseModel):
    deleted: bool
    media_deleted: int
