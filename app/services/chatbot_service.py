"""Menu flow that runs while a chatbot-routed conversation has no operator.

The flow only decides the reply text and the next step; the caller commits
and then sends the reply through the dispatcher.
"""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from app.logging_config import get_logger
from app.models import Conversation, RoutingSettings
from app.services import directory_service, routing_service
from app.services.phone_utils import digits_only
from app.services.routing_service import AssignTo, RoutingOutcome
from app.services.state_machine import ChatbotStep, is_active, parse_step, transition

logger = get_logger("chatbot_service")

CHATBOT_MENU = """Olá! Como posso ajudar?

1️⃣ Agendar consulta
2️⃣ Remarcar
3️⃣ Cancelar
4️⃣ Falar com atendente

Digite o número da opção desejada."""

REPLY_NO_OFFERINGS = "Não há procedimentos cadastrados. Um atendente entrará em contato em breve."
REPLY_OFFERINGS = "Qual procedimento deseja agendar?\n\n{lines}\n\nDigite o número da opção."
REPLY_FORWARDED = "Encaminhando para sua secretária. Aguarde um momento."
REPLY_ENGAGEMENT_NOT_FOUND = (
    "Para remarcar ou cancelar, precisamos localizar seu agendamento. Um atendente entrará em contato em breve."
)
REPLY_HUMAN = "Em breve um atendente responderá."
REPLY_REGISTERED = "Sua solicitação foi registrada. Um atendente entrará em contato em breve."
REPLY_INVALID_OPTION = "Opção inválida. Digite o número do procedimento desejado."


@dataclass
class ChatbotReply:
    text: Optional[str]
    step: Optional[ChatbotStep]
    outcome: Optional[RoutingOutcome] = None


def _set_step(conversation: Conversation, new_step: ChatbotStep) -> None:
    current = parse_step(conversation.chatbot_step)
    if current is not None:
        new_step = transition(current, new_step)
    conversation.chatbot_step = new_step.value


def start(db: Session, conversation: Conversation, settings: RoutingSettings) -> Optional[str]:
    """Enter the menu for a new conversation; returns the greeting if one is due."""
    conversation.chatbot_step = ChatbotStep.MENU.value
    db.flush()
    if settings.greet_on_first_contact:
        return CHATBOT_MENU
    return None


def skip(db: Session, conversation: Conversation) -> None:
    """Routing already found an operator; the flow never runs."""
    conversation.chatbot_step = ChatbotStep.DONE.value
    db.flush()


def menu_choice(text: Optional[str]) -> str:
    digits = digits_only(text)
    return digits[0] if digits else ""


def _finish(
    db: Session,
    conversation: Conversation,
    settings: RoutingSettings,
    candidates: list,
    reply: str,
) -> ChatbotReply:
    if len(candidates) == 1:
        outcome: RoutingOutcome = AssignTo(candidates[0])
        routing_service.apply_outcome(db, conversation, outcome)
    else:
        outcome = routing_service.apply_fallback(db, conversation, settings, candidates)
    _set_step(conversation, ChatbotStep.DONE)
    db.flush()
    return ChatbotReply(text=reply, step=ChatbotStep.DONE, outcome=outcome)


def _handle_menu(db: Session, conversation: Conversation, settings: RoutingSettings, text: Optional[str]) -> ChatbotReply:
    choice = menu_choice(text)

    if choice == "1":
        offerings = directory_service.list_offerings(db, conversation.tenant_id)
        if not offerings:
            return _finish(db, conversation, settings, [], REPLY_NO_OFFERINGS)
        lines = "\n".join(f"{index}. {offering.name}" for index, offering in enumerate(offerings, start=1))
        _set_step(conversation, ChatbotStep.AWAITING_PROCEDURE)
        db.flush()
        return ChatbotReply(text=REPLY_OFFERINGS.format(lines=lines), step=ChatbotStep.AWAITING_PROCEDURE)

    if choice in ("2", "3"):
        candidates = []
        record = directory_service.find_customer_by_address(db, conversation.tenant_id, conversation.phone_number)
        if record is not None:
            provider_id = directory_service.latest_engagement_provider(db, record.id)
            if provider_id is not None:
                candidates = directory_service.operators_for_provider(db, conversation.tenant_id, provider_id)
        reply = REPLY_FORWARDED if candidates else REPLY_ENGAGEMENT_NOT_FOUND
        return _finish(db, conversation, settings, candidates, reply)

    if choice == "4":
        return _finish(db, conversation, settings, [], REPLY_HUMAN)

    return ChatbotReply(text=CHATBOT_MENU, step=ChatbotStep.MENU)


def _handle_awaiting_procedure(
    db: Session, conversation: Conversation, settings: RoutingSettings, text: Optional[str]
) -> ChatbotReply:
    digits = digits_only(text)
    offerings = directory_service.list_offerings(db, conversation.tenant_id)
    number = int(digits) if digits else 0
    if not 1 <= number <= len(offerings):
        return ChatbotReply(text=REPLY_INVALID_OPTION, step=ChatbotStep.AWAITING_PROCEDURE)

    offering = offerings[number - 1]
    candidates = directory_service.operators_for_offering(db, conversation.tenant_id, offering.id)
    return _finish(db, conversation, settings, candidates, REPLY_REGISTERED)


def handle_message(
    db: Session,
    conversation: Conversation,
    settings: RoutingSettings,
    text: Optional[str],
) -> ChatbotReply:
    """Advance the flow by one inbound message.

    No-op once the flow is done or an operator already took the conversation.
    """
    step = parse_step(conversation.chatbot_step)
    if not is_active(step) or conversation.assigned_operator_id is not None:
        return ChatbotReply(text=None, step=step)

    if step == ChatbotStep.MENU:
        reply = _handle_menu(db, conversation, settings, text)
    else:
        reply = _handle_awaiting_procedure(db, conversation, settings, text)

    logger.info(
        "Chatbot step handled",
        extra={
            "context": {
                "conversation_id": str(conversation.id),
                "from": step.value,
                "to": reply.step.value if reply.step else None,
            }
        },
    )
    return reply
