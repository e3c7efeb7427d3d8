import asyncio
import os
from datetime import timedelta

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from app.config import settings
from app.database import SessionLocal, get_db
from app.logging_config import get_logger, setup_logging
from app.models import ChannelCredential, Conversation, Message
from app.routers import admin, conversations, webhook
from app.services.alert_service import alert_critical
from app.services.conversation_service import close_idle

setup_logging("DEBUG" if settings.debug else "INFO")

app = FastAPI(
    title="Clinic Inbox API",
    description="WhatsApp inbound routing and conversation assignment for clinics",
    version="0.1.0",
)

cors_env = os.environ.get("CORS_ALLOW_ORIGINS", "*")
cors_origins = [origin.strip() for origin in cors_env.split(",") if origin.strip()]
if not cors_origins:
    cors_origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(webhook.router)
app.include_router(conversations.router)
app.include_router(admin.router)

sweep_logger = get_logger("idle_sweep")
_idle_sweep_task: asyncio.Task | None = None


def _is_env_enabled(value: str | None, default: bool = True) -> bool:
    if value is None:
        return default
    return value.strip().lower() not in {"0", "false", "no", "off"}


def _is_idle_sweep_enabled() -> bool:
    if os.environ.get("PYTEST_CURRENT_TEST"):
        return False
    return _is_env_enabled(os.environ.get("IDLE_SWEEP_ENABLED"), default=True)


def run_idle_sweep() -> int:
    """Close idle conversations for every tenant in one transaction."""
    db = SessionLocal()
    try:
        closed = close_idle(db, older_than=timedelta(hours=settings.conversation_idle_hours))
        db.commit()
        return closed
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


async def _idle_sweep_loop() -> None:
    failures = 0
    while True:
        try:
            await asyncio.sleep(max(settings.idle_sweep_interval_seconds, 1.0))
            closed = await run_in_threadpool(run_idle_sweep)
            failures = 0
            if closed:
                sweep_logger.info("Idle sweep closed conversations", extra={"context": {"closed": closed}})
        except asyncio.CancelledError:
            break
        except Exception as exc:
            failures += 1
            sweep_logger.error("Idle sweep failed", extra={"context": {"error": str(exc), "failures": failures}})
            if failures == 3:
                alert_critical("Idle conversation sweep keeps failing", {"error": str(exc)})


@app.on_event("startup")
async def start_idle_sweep() -> None:
    global _idle_sweep_task
    if not _is_idle_sweep_enabled():
        return
    if _idle_sweep_task is None or _idle_sweep_task.done():
        _idle_sweep_task = asyncio.create_task(_idle_sweep_loop())
        sweep_logger.info("Idle sweep started")


@app.on_event("shutdown")
async def stop_idle_sweep() -> None:
    global _idle_sweep_task
    if _idle_sweep_task is None:
        return
    _idle_sweep_task.cancel()
    try:
        await _idle_sweep_task
    except asyncio.CancelledError:
        pass
    _idle_sweep_task = None


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/db-check")
def db_check(db: Session = Depends(get_db)):
    return {
        "status": "ok",
        "conversations": db.query(Conversation).count(),
        "messages": db.query(Message).count(),
        "connected_channels": db.query(ChannelCredential).filter(ChannelCredential.status == "connected").count(),
    }
