from app.services.result import Result
from app.services.state_machine import (
    ChatbotStep,
    InvalidTransitionError,
    can_transition,
    is_active,
    parse_step,
    transition,
)
