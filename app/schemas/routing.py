from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, model_validator

from app.services.routing_service import FALLBACK_STRATEGIES, RoutingStrategy


class RoutingSettingsOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    strategy: str
    designated_operator_id: Optional[UUID] = None
    chatbot_fallback_strategy: str
    greet_on_first_contact: bool


class RoutingSettingsUpdate(BaseModel):
    strategy: RoutingStrategy
    designated_operator_id: Optional[UUID] = None
    chatbot_fallback_strategy: RoutingStrategy = RoutingStrategy.FIRST_RESPONDER
    greet_on_first_contact: bool = True

    @model_validator(mode="after")
    def check_strategy_fields(self) -> "RoutingSettingsUpdate":
        if self.strategy == RoutingStrategy.GENERAL_SECRETARY and self.designated_operator_id is None:
            raise ValueError("designated_operator_id is required for general_secretary")
        if self.chatbot_fallback_strategy not in FALLBACK_STRATEGIES:
            raise ValueError("chatbot_fallback_strategy must be first_responder or round_robin")
        return self


class OperatorOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    active: bool
    open_conversations: int = 0


class CloseIdleResponse(BaseModel):
    closed: int
