from enum import Enum
from typing import Optional


class ChatbotStep(str, Enum):
    MENU = "menu"
    AWAITING_PROCEDURE = "awaiting_procedure"
    DONE = "done"


VALID_TRANSITIONS = {
    ChatbotStep.MENU: [ChatbotStep.MENU, ChatbotStep.AWAITING_PROCEDURE, ChatbotStep.DONE],
    ChatbotStep.AWAITING_PROCEDURE: [ChatbotStep.AWAITING_PROCEDURE, ChatbotStep.DONE],
    ChatbotStep.DONE: [],
}


class InvalidTransitionError(Exception):
    def __init__(self, from_step: ChatbotStep, to_step: ChatbotStep):
        self.from_step = from_step
        self.to_step = to_step
        super().__init__(f"Invalid transition: {from_step.value} -> {to_step.value}")


def parse_step(value: Optional[str]) -> Optional[ChatbotStep]:
    """Map the stored column value to a step; unknown values count as no step."""
    if not value:
        return None
    try:
        return ChatbotStep(value)
    except ValueError:
        return None


def can_transition(from_step: ChatbotStep, to_step: ChatbotStep) -> bool:
    """Check if transition is valid."""
    allowed = VALID_TRANSITIONS.get(from_step, [])
    return to_step in allowed


def transition(from_step: ChatbotStep, to_step: ChatbotStep) -> ChatbotStep:
    """Perform step transition. Raises InvalidTransitionError if not allowed."""
    if not can_transition(from_step, to_step):
        raise InvalidTransitionError(from_step, to_step)
    return to_step


def is_active(step: Optional[ChatbotStep]) -> bool:
    """The chatbot only handles messages while it has a non-terminal step."""
    return step is not None and step != ChatbotStep.DONE
