import os

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("MEDIA_SIGNING_SECRET", "test-signing-secret")
os.environ.setdefault("WHATSAPP_VERIFY_TOKEN", "test-verify-token")
os.environ.setdefault("ADMIN_TOKEN", "test-admin-token")
os.environ.setdefault("IDLE_SWEEP_ENABLED", "false")

from datetime import datetime, timezone  # noqa: E402
from unittest.mock import Mock  # noqa: E402
from uuid import uuid4  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402


def _patch_jsonb_for_sqlite():
    """Make JSONB compile as JSON for the SQLite dialect."""
    from sqlalchemy.dialects.sqlite.base import SQLiteTypeCompiler

    if not hasattr(SQLiteTypeCompiler, "visit_JSONB"):

        def visit_JSONB(self, type_, **kw):
            return self.visit_JSON(type_, **kw)

        SQLiteTypeCompiler.visit_JSONB = visit_JSONB


_patch_jsonb_for_sqlite()

from app.database import Base, get_db  # noqa: E402
from app.main import app  # noqa: E402
from app.models import (  # noqa: E402
    ChannelCredential,
    Conversation,
    CustomerRecord,
    Engagement,
    Message,
    Offering,
    Operator,
    OperatorProvider,
    Provider,
    ProviderOffering,
    ReferralCode,
    RoutingSettings,
    Tenant,
)
from app.services.whatsapp_service import SendResult  # noqa: E402


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(bind=engine, autoflush=False, autocommit=False)()
    yield session
    session.close()


@pytest.fixture
def now():
    return datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def tenant(db):
    tenant = Tenant(id=uuid4(), name="Clínica Exemplo")
    db.add(tenant)
    db.commit()
    return tenant


@pytest.fixture
def credential(db, tenant):
    credential = ChannelCredential(
        tenant_id=tenant.id,
        channel_type="whatsapp_meta",
        access_token="token-abc",
        phone_number_id="1099887766",
        waba_id="waba-1",
        status="connected",
    )
    db.add(credential)
    db.commit()
    return credential


@pytest.fixture
def make_operator(db, tenant):
    def _make(name: str = "Ana", active: bool = True, tenant_id=None) -> Operator:
        operator = Operator(id=uuid4(), tenant_id=tenant_id or tenant.id, name=name, active=active)
        db.add(operator)
        db.commit()
        return operator

    return _make


@pytest.fixture
def make_provider(db, tenant):
    def _make(name: str, operators=(), referral_code=None) -> Provider:
        provider = Provider(id=uuid4(), tenant_id=tenant.id, name=name)
        db.add(provider)
        db.flush()
        for operator in operators:
            db.add(OperatorProvider(operator_id=operator.id, provider_id=provider.id, tenant_id=tenant.id))
        if referral_code:
            db.add(ReferralCode(tenant_id=tenant.id, provider_id=provider.id, code=referral_code))
        db.commit()
        return provider

    return _make


@pytest.fixture
def make_offering(db, tenant):
    def _make(name: str, providers=()) -> Offering:
        offering = Offering(id=uuid4(), tenant_id=tenant.id, name=name)
        db.add(offering)
        db.flush()
        for provider in providers:
            db.add(ProviderOffering(provider_id=provider.id, offering_id=offering.id, tenant_id=tenant.id))
        db.commit()
        return offering

    return _make


@pytest.fixture
def make_customer(db, tenant):
    def _make(phone: str, provider=None, status: str = "scheduled", scheduled_at=None) -> CustomerRecord:
        record = CustomerRecord(id=uuid4(), tenant_id=tenant.id, name="Paciente", phone=phone)
        db.add(record)
        db.flush()
        if provider is not None:
            db.add(
                Engagement(
                    tenant_id=tenant.id,
                    customer_record_id=record.id,
                    provider_id=provider.id,
                    status=status,
                    scheduled_at=scheduled_at or datetime(2026, 1, 10, 9, 0, tzinfo=timezone.utc),
                )
            )
        db.commit()
        return record

    return _make


@pytest.fixture
def set_routing(db, tenant):
    def _set(strategy: str, designated=None, fallback: str = "first_responder", greet: bool = True) -> RoutingSettings:
        settings = db.query(RoutingSettings).filter(RoutingSettings.tenant_id == tenant.id).first()
        if settings is None:
            settings = RoutingSettings(tenant_id=tenant.id)
            db.add(settings)
        settings.strategy = strategy
        settings.designated_operator_id = designated.id if designated is not None else None
        settings.chatbot_fallback_strategy = fallback
        settings.greet_on_first_contact = greet
        db.commit()
        return settings

    return _set


@pytest.fixture
def make_conversation(db, tenant):
    def _make(phone: str = "5511988887777", assigned=None, status: str = "open", **fields) -> Conversation:
        conversation = Conversation(
            id=uuid4(),
            tenant_id=tenant.id,
            phone_number=phone,
            status=status,
            assigned_operator_id=assigned.id if assigned is not None else None,
            **fields,
        )
        db.add(conversation)
        db.commit()
        return conversation

    return _make


@pytest.fixture
def add_inbound(db):
    def _add(conversation: Conversation, at: datetime, body: str = "Oi", provider_message_id=None) -> Message:
        message = Message(
            conversation_id=conversation.id,
            tenant_id=conversation.tenant_id,
            direction="inbound",
            message_type="text",
            body=body,
            provider_message_id=provider_message_id,
            sent_at=at,
        )
        db.add(message)
        db.commit()
        return message

    return _add


@pytest.fixture
def sent_ok():
    """Provider send double that always succeeds."""
    counter = {"n": 0}

    def _send(phone_number_id, access_token, payload):
        counter["n"] += 1
        return SendResult(ok=True, message_id=f"wamid.out{counter['n']}")

    return Mock(side_effect=_send)


@pytest.fixture
def client(db):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def headers(tenant):
    """Identity headers as set by the upstream identity service."""

    def _headers(user_id, role: str = "operator") -> dict:
        return {"X-Tenant-Id": str(tenant.id), "X-User-Id": str(user_id), "X-User-Role": role}

    return _headers
