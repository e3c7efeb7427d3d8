"""WhatsApp Cloud API webhook: subscription handshake and inbound deliveries."""

import json
from pathlib import Path

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import FileResponse, PlainTextResponse
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from app.config import settings
from app.database import get_db
from app.logging_config import get_logger
from app.schemas.whatsapp import WebhookAck
from app.services.debug_buffer import webhook_debug_buffer
from app.services.ingestion_service import ingest_payload
from app.services.storage_service import LocalBackend, verify_signed_media_path

logger = get_logger("webhook")

router = APIRouter(tags=["webhook"])


def _debug_body(raw: bytes):
    try:
        return json.loads(raw or b"{}")
    except (ValueError, UnicodeDecodeError):
        return raw[:2000].decode("utf-8", errors="replace")


@router.get("/whatsapp/webhook", response_class=PlainTextResponse)
async def verify_webhook(
    mode: str = Query(default="", alias="hub.mode"),
    verify_token: str = Query(default="", alias="hub.verify_token"),
    challenge: str = Query(default="", alias="hub.challenge"),
):
    """Subscription handshake: echo the challenge when the token matches."""
    if mode == "subscribe" and challenge and verify_token == settings.whatsapp_verify_token:
        return PlainTextResponse(challenge)
    logger.warning("Webhook verification rejected", extra={"context": {"mode": mode}})
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")


@router.post("/whatsapp/webhook", response_model=WebhookAck)
async def receive_webhook(request: Request, db: Session = Depends(get_db)) -> WebhookAck:
    """Accept a delivery. Always acknowledges so the provider never retries."""
    raw = await request.body()
    webhook_debug_buffer.record(_debug_body(raw))
    try:
        await run_in_threadpool(ingest_payload, db, raw)
    except Exception as exc:
        logger.error("Webhook processing crashed", extra={"context": {"error": str(exc)}}, exc_info=True)
    return WebhookAck(ok=True)


@router.get("/media/{media_path:path}")
async def serve_media(media_path: str, expires: int, sig: str):
    """Serve locally stored media via signed URLs."""
    normalized_path = (media_path or "").strip().lstrip("/")
    if not normalized_path:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing media path")
    if not verify_signed_media_path(normalized_path, expires, sig):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid or expired signature")

    try:
        target_path: Path = LocalBackend().resolve_path(normalized_path)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid media path")
    if not target_path.exists() or not target_path.is_file():
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Media not found")

    return FileResponse(target_path)
