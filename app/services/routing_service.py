"""Assignment decisions for new conversations.

``decide`` and ``decide_fallback`` are pure: they only look at the settings
and operator loads they are given. ``route_new_conversation`` gathers those
inputs from the database and writes the outcome.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Union
from uuid import UUID

from sqlalchemy.orm import Session

from app.db_utils import utcnow
from app.logging_config import get_logger
from app.models import Conversation, EligibleOperator, RoutingSettings
from app.services import directory_service

logger = get_logger("routing_service")


class RoutingStrategy(str, Enum):
    FIRST_RESPONDER = "first_responder"
    GENERAL_SECRETARY = "general_secretary"
    ROUND_ROBIN = "round_robin"
    CHATBOT = "chatbot"


FALLBACK_STRATEGIES = {RoutingStrategy.FIRST_RESPONDER, RoutingStrategy.ROUND_ROBIN}


@dataclass(frozen=True)
class AssignTo:
    operator_id: UUID


@dataclass(frozen=True)
class Pool:
    operator_ids: tuple = field(default_factory=tuple)
    # restricted pools are written to the eligible set; open pools are not
    restricted: bool = False


@dataclass(frozen=True)
class DeferToChatbot:
    pass


RoutingOutcome = Union[AssignTo, Pool, DeferToChatbot]


@dataclass
class RoutingDecision:
    outcome: RoutingOutcome
    source: str  # strategy, referral


def parse_strategy(value: Optional[str], default: RoutingStrategy = RoutingStrategy.FIRST_RESPONDER) -> RoutingStrategy:
    try:
        return RoutingStrategy(value)
    except ValueError:
        return default


def get_settings(db: Session, tenant_id: UUID) -> RoutingSettings:
    """Stored settings, or unsaved defaults when the tenant never configured routing."""
    settings = db.query(RoutingSettings).filter(RoutingSettings.tenant_id == tenant_id).first()
    if settings is None:
        settings = RoutingSettings(
            tenant_id=tenant_id,
            strategy=RoutingStrategy.FIRST_RESPONDER.value,
            designated_operator_id=None,
            chatbot_fallback_strategy=RoutingStrategy.FIRST_RESPONDER.value,
            greet_on_first_contact=True,
        )
    return settings


def pick_least_loaded(operator_ids, open_counts: dict) -> Optional[UUID]:
    """Fewest open conversations wins; ties go to the lowest id."""
    if not operator_ids:
        return None
    return min(operator_ids, key=lambda operator_id: (open_counts.get(operator_id, 0), str(operator_id)))


def decide(settings: RoutingSettings, operator_ids: list[UUID], open_counts: dict) -> RoutingOutcome:
    strategy = parse_strategy(settings.strategy)
    everyone = Pool(tuple(operator_ids))

    if strategy == RoutingStrategy.CHATBOT:
        return DeferToChatbot()

    if strategy == RoutingStrategy.GENERAL_SECRETARY:
        designated = settings.designated_operator_id
        if designated is not None and designated in operator_ids:
            return AssignTo(designated)
        return everyone

    if strategy == RoutingStrategy.ROUND_ROBIN:
        chosen = pick_least_loaded(operator_ids, open_counts)
        return AssignTo(chosen) if chosen is not None else everyone

    return everyone


def decide_fallback(
    fallback: Optional[str],
    candidates: list[UUID],
    operator_ids: list[UUID],
    open_counts: dict,
) -> RoutingOutcome:
    """Outcome once the chatbot finished without a single operator.

    ``candidates`` are the operators the flow narrowed the conversation down
    to (possibly none).
    """
    strategy = parse_strategy(fallback)
    if strategy not in FALLBACK_STRATEGIES:
        strategy = RoutingStrategy.FIRST_RESPONDER

    if len(candidates) == 1:
        return AssignTo(candidates[0])

    if strategy == RoutingStrategy.ROUND_ROBIN:
        chosen = pick_least_loaded(candidates or operator_ids, open_counts)
        if chosen is not None:
            return AssignTo(chosen)
        return Pool(tuple(operator_ids))

    if len(candidates) > 1:
        return Pool(tuple(candidates), restricted=True)
    return Pool(tuple(operator_ids))


def replace_eligible_operators(db: Session, conversation_id: UUID, operator_ids) -> None:
    db.query(EligibleOperator).filter(EligibleOperator.conversation_id == conversation_id).delete(
        synchronize_session=False
    )
    for operator_id in operator_ids:
        db.add(EligibleOperator(conversation_id=conversation_id, operator_id=operator_id))


def apply_outcome(
    db: Session,
    conversation: Conversation,
    outcome: RoutingOutcome,
    now: Optional[datetime] = None,
) -> None:
    if isinstance(outcome, AssignTo):
        conversation.assigned_operator_id = outcome.operator_id
        conversation.assigned_at = now or utcnow()
        replace_eligible_operators(db, conversation.id, [])
    elif isinstance(outcome, Pool) and outcome.restricted:
        replace_eligible_operators(db, conversation.id, outcome.operator_ids)
    db.flush()


def _load_inputs(db: Session, tenant_id: UUID) -> tuple[list[UUID], dict]:
    operator_ids = directory_service.list_operator_ids(db, tenant_id)
    open_counts = directory_service.open_conversation_counts(db, tenant_id, operator_ids)
    return operator_ids, open_counts


def apply_fallback(
    db: Session,
    conversation: Conversation,
    settings: RoutingSettings,
    candidates: list[UUID],
) -> RoutingOutcome:
    operator_ids, open_counts = _load_inputs(db, conversation.tenant_id)
    outcome = decide_fallback(settings.chatbot_fallback_strategy, candidates, operator_ids, open_counts)
    apply_outcome(db, conversation, outcome)
    logger.info(
        "Chatbot fallback applied",
        extra={
            "context": {
                "conversation_id": str(conversation.id),
                "fallback": settings.chatbot_fallback_strategy,
                "candidates": len(candidates),
                "outcome": type(outcome).__name__,
            }
        },
    )
    return outcome


def route_new_conversation(
    db: Session,
    conversation: Conversation,
    settings: RoutingSettings,
    first_text: Optional[str] = None,
) -> RoutingDecision:
    """Run once, right after the conversation row is created.

    A referral code in the first message takes precedence over the
    configured strategy.
    """
    operator_ids, open_counts = _load_inputs(db, conversation.tenant_id)

    provider_id = directory_service.match_referral_provider(db, conversation.tenant_id, first_text)
    if provider_id is not None:
        candidates = directory_service.operators_for_provider(db, conversation.tenant_id, provider_id)
        if candidates:
            outcome = decide_fallback(settings.chatbot_fallback_strategy, candidates, operator_ids, open_counts)
            apply_outcome(db, conversation, outcome)
            logger.info(
                "Referral routing applied",
                extra={
                    "context": {
                        "conversation_id": str(conversation.id),
                        "provider_id": str(provider_id),
                        "outcome": type(outcome).__name__,
                    }
                },
            )
            return RoutingDecision(outcome=outcome, source="referral")

    outcome = decide(settings, operator_ids, open_counts)
    apply_outcome(db, conversation, outcome)
    logger.info(
        "Routing applied",
        extra={
            "context": {
                "conversation_id": str(conversation.id),
                "strategy": settings.strategy,
                "outcome": type(outcome).__name__,
            }
        },
    )
    return RoutingDecision(outcome=outcome, source="strategy")
