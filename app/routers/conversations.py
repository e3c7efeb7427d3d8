"""Operator-facing conversation API: listing, replies, assignment, lifecycle."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from app.database import get_db
from app.dependencies import get_actor, require_admin
from app.logging_config import get_logger
from app.models import Conversation, Message, MessageReceipt
from app.schemas.conversation import (
    AssignRequest,
    ConversationOut,
    EraseResponse,
    LinkCustomerRequest,
    MessageOut,
    SendTemplateRequest,
    SendTextRequest,
    UnreadCountResponse,
)
from app.services import conversation_service, dispatch_service, visibility_service
from app.services.errors import AuthExpiredError, InboxError
from app.services.result import Result
from app.services.storage_service import storage
from app.services.visibility_service import Actor

logger = get_logger("conversations")

router = APIRouter(prefix="/conversations", tags=["conversations"])


def _raise_for_result(result: Result) -> None:
    if not result.ok:
        raise HTTPException(status_code=result.status_code, detail={"code": result.error_code, "message": result.error})


def _get_conversation(db: Session, actor: Actor, conversation_id: UUID) -> Conversation:
    conversation = (
        db.query(Conversation)
        .filter(Conversation.id == conversation_id, Conversation.tenant_id == actor.tenant_id)
        .first()
    )
    if conversation is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Conversation not found")
    return conversation


def _get_visible_conversation(db: Session, actor: Actor, conversation_id: UUID) -> Conversation:
    conversation = _get_conversation(db, actor, conversation_id)
    if not visibility_service.can_view(db, actor, conversation):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Conversation not visible")
    return conversation


def _to_out(db: Session, actor: Actor, conversation: Conversation) -> ConversationOut:
    out = ConversationOut.model_validate(conversation)
    out.unread_count = visibility_service.unread_count(db, actor.user_id, conversation.id)
    return out


def _prepare_reply(db: Session, actor: Actor, conversation: Conversation) -> None:
    """Operators reply only to their own or unassigned conversations.

    Under first-responder routing the first operator to reply claims the
    conversation.
    """
    if actor.is_admin:
        return
    if conversation.assigned_operator_id is None:
        _raise_for_result(conversation_service.claim(db, conversation, actor.user_id))
    elif conversation.assigned_operator_id != actor.user_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Conversation assigned to another operator")


def _send(db: Session, actor: Actor, conversation: Conversation, content) -> MessageOut:
    _prepare_reply(db, actor, conversation)
    try:
        message = dispatch_service.send_message(db, conversation, content, operator_id=actor.user_id)
    except InboxError as exc:
        db.rollback()
        if isinstance(exc, AuthExpiredError):
            dispatch_service.record_auth_failure(db, exc)
        raise exc.to_http_exception()
    db.commit()
    db.refresh(message)
    return MessageOut.model_validate(message)


@router.get("", response_model=list[ConversationOut])
def list_conversations(
    status_filter: Optional[str] = Query(default=None, alias="status"),
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    conversations = visibility_service.list_visible(db, actor, status=status_filter)
    return [_to_out(db, actor, conversation) for conversation in conversations]


@router.get("/unread-count", response_model=UnreadCountResponse)
def get_unread_count(actor: Actor = Depends(get_actor), db: Session = Depends(get_db)):
    conversations = visibility_service.list_visible(db, actor)
    counts = visibility_service.unread_counts(db, actor.user_id, [conversation.id for conversation in conversations])
    return UnreadCountResponse(total=sum(counts.values()), by_conversation={k: v for k, v in counts.items() if v})


@router.get("/{conversation_id}/messages", response_model=list[MessageOut])
def list_messages(conversation_id: UUID, actor: Actor = Depends(get_actor), db: Session = Depends(get_db)):
    conversation = _get_visible_conversation(db, actor, conversation_id)
    messages = (
        db.query(Message)
        .filter(Message.conversation_id == conversation.id)
        .order_by(Message.sent_at, Message.id)
        .all()
    )
    provider_ids = [m.provider_message_id for m in messages if m.direction == "outbound" and m.provider_message_id]
    latest_status: dict[str, str] = {}
    if provider_ids:
        receipts = (
            db.query(MessageReceipt)
            .filter(
                MessageReceipt.tenant_id == conversation.tenant_id,
                MessageReceipt.provider_message_id.in_(provider_ids),
            )
            .order_by(MessageReceipt.received_at)
            .all()
        )
        for receipt in receipts:
            latest_status[receipt.provider_message_id] = receipt.status

    result = []
    for message in messages:
        out = MessageOut.model_validate(message)
        out.delivery_status = latest_status.get(message.provider_message_id or "")
        result.append(out)
    return result


@router.post("/{conversation_id}/messages", response_model=MessageOut, status_code=status.HTTP_201_CREATED)
def send_freeform(
    conversation_id: UUID,
    data: SendTextRequest,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    conversation = _get_visible_conversation(db, actor, conversation_id)
    return _send(db, actor, conversation, dispatch_service.FreeformContent(text=data.text))


@router.post("/{conversation_id}/template", response_model=MessageOut, status_code=status.HTTP_201_CREATED)
def send_template(
    conversation_id: UUID,
    data: SendTemplateRequest,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    conversation = _get_visible_conversation(db, actor, conversation_id)
    content = dispatch_service.TemplateContent(name=data.name, params=data.params, language=data.language)
    return _send(db, actor, conversation, content)


@router.post("/{conversation_id}/claim", response_model=ConversationOut)
def claim_conversation(conversation_id: UUID, actor: Actor = Depends(get_actor), db: Session = Depends(get_db)):
    conversation = _get_visible_conversation(db, actor, conversation_id)
    result = conversation_service.claim(db, conversation, actor.user_id)
    if not result.ok:
        db.rollback()
    _raise_for_result(result)
    db.commit()
    return _to_out(db, actor, conversation)


@router.post("/{conversation_id}/assign", response_model=ConversationOut)
def assign_conversation(
    conversation_id: UUID,
    data: AssignRequest,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    conversation = _get_conversation(db, actor, conversation_id)
    _raise_for_result(conversation_service.assign(db, conversation, data.operator_id, actor))
    db.commit()
    return _to_out(db, actor, conversation)


def _change_status(db: Session, actor: Actor, conversation_id: UUID, new_status: str) -> ConversationOut:
    conversation = _get_visible_conversation(db, actor, conversation_id)
    _raise_for_result(conversation_service.set_status(db, conversation, new_status))
    db.commit()
    logger.info(
        "Conversation status changed",
        extra={"context": {"conversation_id": str(conversation_id), "status": new_status, "by": str(actor.user_id)}},
    )
    return _to_out(db, actor, conversation)


@router.post("/{conversation_id}/close", response_model=ConversationOut)
def close_conversation(conversation_id: UUID, actor: Actor = Depends(get_actor), db: Session = Depends(get_db)):
    return _change_status(db, actor, conversation_id, conversation_service.STATUS_CLOSED)


@router.post("/{conversation_id}/complete", response_model=ConversationOut)
def complete_conversation(conversation_id: UUID, actor: Actor = Depends(get_actor), db: Session = Depends(get_db)):
    return _change_status(db, actor, conversation_id, conversation_service.STATUS_COMPLETED)


@router.post("/{conversation_id}/view", status_code=status.HTTP_204_NO_CONTENT)
def mark_viewed(conversation_id: UUID, actor: Actor = Depends(get_actor), db: Session = Depends(get_db)):
    conversation = _get_visible_conversation(db, actor, conversation_id)
    conversation_service.mark_viewed(db, actor.user_id, conversation)
    db.commit()


@router.post("/{conversation_id}/customer", response_model=ConversationOut)
def link_customer(
    conversation_id: UUID,
    data: LinkCustomerRequest,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    conversation = _get_visible_conversation(db, actor, conversation_id)
    _raise_for_result(conversation_service.link_customer(db, conversation, data.customer_record_id))
    db.commit()
    return _to_out(db, actor, conversation)


@router.delete("/{conversation_id}", response_model=EraseResponse)
def erase_conversation(conversation_id: UUID, actor: Actor = Depends(require_admin), db: Session = Depends(get_db)):
    conversation = _get_conversation(db, actor, conversation_id)
    try:
        media_deleted = conversation_service.erase(db, conversation, storage)
    except Exception as exc:
        db.rollback()
        logger.error(
            "Conversation erasure failed",
            extra={"context": {"conversation_id": str(conversation_id), "error": str(exc)}},
        )
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Failed to delete stored media")
    db.commit()
    return EraseResponse(deleted=True, media_deleted=media_deleted)
