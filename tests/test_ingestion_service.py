from unittest.mock import patch

import pytest

from app.models import ChannelCredential, Conversation, EligibleOperator, Message, MessageReceipt
from app.services import chatbot_service
from app.services.ingestion_service import ingest_payload
from app.services.media_service import StoredMedia
from app.services.whatsapp_service import SendResult
from whatsapp_payloads import meta_payload, text_message

SENDER = "5511988887777"


def _outbound(db):
    return db.query(Message).filter(Message.direction == "outbound").order_by(Message.sent_at).all()


def _conversation(db):
    return db.query(Conversation).filter(Conversation.phone_number == SENDER).one()


@pytest.fixture
def provider_send(sent_ok):
    with patch("app.services.whatsapp_service.send_payload", sent_ok):
        yield sent_ok


class TestIdempotency:
    def test_replayed_delivery_stores_one_message(self, db, credential, provider_send):
        body = meta_payload([text_message("Olá", message_id="wamid.same")])

        first = ingest_payload(db, body)
        second = ingest_payload(db, body)

        assert first.processed == 1
        assert second.duplicates == 1
        assert second.processed == 0
        assert db.query(Message).filter(Message.direction == "inbound").count() == 1

    def test_duplicate_inside_one_delivery(self, db, credential, provider_send):
        message = text_message("Olá", message_id="wamid.twice")

        report = ingest_payload(db, meta_payload([message, dict(message)]))

        assert report.processed == 1
        assert report.duplicates == 1

    def test_first_contact_creates_one_conversation(self, db, credential, provider_send):
        ingest_payload(db, meta_payload([text_message("Oi"), text_message("Tudo bem?")]))

        assert db.query(Conversation).count() == 1
        assert db.query(Message).filter(Message.direction == "inbound").count() == 2


class TestTenantResolution:
    def test_unknown_channel_is_dropped(self, db, credential, provider_send):
        report = ingest_payload(db, meta_payload([text_message("Oi")], phone_number_id="999"))

        assert report.dropped == 1
        assert db.query(Conversation).count() == 0

    def test_single_tenant_fallback(self, db, credential, provider_send):
        with patch("app.services.tenant_service.settings.single_tenant_fallback", True):
            report = ingest_payload(db, meta_payload([text_message("Oi")], phone_number_id="999"))

        assert report.processed == 1
        assert _conversation(db).tenant_id == credential.tenant_id

    def test_malformed_payload_is_dropped(self, db, credential):
        report = ingest_payload(db, b"{broken")
        assert report.received == 0


class TestStrategies:
    def test_round_robin_assigns_on_first_contact(self, db, credential, make_operator, set_routing, provider_send):
        ana = make_operator("Ana")
        set_routing("round_robin")

        ingest_payload(db, meta_payload([text_message("Oi")]))

        assert _conversation(db).assigned_operator_id == ana.id
        provider_send.assert_not_called()

    def test_contact_name_is_stored(self, db, credential, provider_send):
        ingest_payload(
            db,
            meta_payload([text_message("Oi")], contacts=[{"wa_id": SENDER, "profile": {"name": "Maria"}}]),
        )
        assert _conversation(db).contact_name == "Maria"


class TestChatbotFlow:
    def test_first_message_gets_menu(self, db, credential, make_operator, set_routing, provider_send):
        make_operator("Ana")
        set_routing("chatbot")

        report = ingest_payload(db, meta_payload([text_message("Olá")]))

        conversation = _conversation(db)
        assert conversation.chatbot_step == "menu"
        assert conversation.assigned_operator_id is None
        assert report.replies_sent == 1
        assert [message.body for message in _outbound(db)] == [chatbot_service.CHATBOT_MENU]

    def test_no_greeting_when_disabled(self, db, credential, set_routing, provider_send):
        set_routing("chatbot", greet=False)

        ingest_payload(db, meta_payload([text_message("Olá")]))

        assert _conversation(db).chatbot_step == "menu"
        provider_send.assert_not_called()

    def test_schedule_without_offerings_finishes(self, db, credential, make_operator, set_routing, provider_send):
        make_operator("Ana")
        set_routing("chatbot")
        ingest_payload(db, meta_payload([text_message("Olá")]))

        report = ingest_payload(db, meta_payload([text_message("1")]))

        assert report.replies_sent == 1
        assert _conversation(db).chatbot_step == "done"
        assert _outbound(db)[-1].body == chatbot_service.REPLY_NO_OFFERINGS
        assert len(_outbound(db)) == 2

    def test_procedure_choice_assigns_single_operator(
        self, db, credential, make_operator, make_provider, make_offering, set_routing, provider_send
    ):
        make_operator("Ana")
        bia = make_operator("Bia")
        lima = make_provider("Dra. Lima", operators=[bia])
        make_offering("Botox", providers=[lima])
        make_offering("Limpeza de pele")
        set_routing("chatbot")

        ingest_payload(db, meta_payload([text_message("Olá")]))
        ingest_payload(db, meta_payload([text_message("1")]))
        assert _conversation(db).chatbot_step == "awaiting_procedure"
        assert "1. Botox" in _outbound(db)[-1].body
        assert "2. Limpeza de pele" in _outbound(db)[-1].body

        ingest_payload(db, meta_payload([text_message("7")]))
        assert _outbound(db)[-1].body == chatbot_service.REPLY_INVALID_OPTION
        assert _conversation(db).chatbot_step == "awaiting_procedure"

        ingest_payload(db, meta_payload([text_message("1")]))
        conversation = _conversation(db)
        assert conversation.chatbot_step == "done"
        assert conversation.assigned_operator_id == bia.id
        assert _outbound(db)[-1].body == chatbot_service.REPLY_REGISTERED

    def test_assigned_conversation_skips_chatbot(self, db, credential, make_operator, set_routing, provider_send):
        ana = make_operator("Ana")
        set_routing("chatbot")
        ingest_payload(db, meta_payload([text_message("Olá")]))
        conversation = _conversation(db)
        conversation.assigned_operator_id = ana.id
        db.commit()

        report = ingest_payload(db, meta_payload([text_message("4")]))

        assert report.replies_sent == 0
        assert _conversation(db).chatbot_step == "menu"

    def test_referral_code_skips_chatbot(
        self, db, credential, make_operator, make_provider, set_routing, provider_send
    ):
        bia = make_operator("Bia")
        make_provider("Dra. Lima", operators=[bia], referral_code="LIMA10")
        set_routing("chatbot")

        report = ingest_payload(db, meta_payload([text_message("Vim pela indicação LIMA10")]))

        conversation = _conversation(db)
        assert conversation.assigned_operator_id == bia.id
        assert conversation.chatbot_step == "done"
        assert report.replies_sent == 0

    def test_send_failure_keeps_inbound_state(self, db, credential, set_routing):
        set_routing("chatbot")
        failing = SendResult(ok=False, error="Internal error", error_code=131000)

        with patch("app.services.whatsapp_service.send_payload", return_value=failing):
            report = ingest_payload(db, meta_payload([text_message("Olá")]))

        assert report.processed == 1
        assert report.replies_failed == 1
        assert _conversation(db).chatbot_step == "menu"
        assert db.query(Message).filter(Message.direction == "inbound").count() == 1
        assert _outbound(db) == []

    @patch("app.services.dispatch_service.alert_warning")
    def test_rejected_token_on_menu_marks_credential(self, mock_alert, db, credential, set_routing):
        set_routing("chatbot")
        rejected = SendResult(ok=False, error="expired", error_code=190)

        with patch("app.services.whatsapp_service.send_payload", return_value=rejected):
            report = ingest_payload(db, meta_payload([text_message("Olá")]))

        assert report.replies_failed == 1
        db.expire_all()
        assert db.get(ChannelCredential, credential.id).status == "error"
        assert _conversation(db).chatbot_step == "menu"

    def test_several_candidates_restrict_pool(
        self, db, credential, make_operator, make_provider, make_offering, set_routing, provider_send
    ):
        ana, bia = make_operator("Ana"), make_operator("Bia")
        make_operator("Caio")
        lima = make_provider("Dra. Lima", operators=[ana])
        souza = make_provider("Dr. Souza", operators=[bia])
        make_offering("Botox", providers=[lima, souza])
        set_routing("chatbot", fallback="first_responder")

        for text in ("Olá", "1", "1"):
            ingest_payload(db, meta_payload([text_message(text)]))

        eligible = {row.operator_id for row in db.query(EligibleOperator).all()}
        assert eligible == {ana.id, bia.id}
        assert _conversation(db).assigned_operator_id is None


class TestMediaAndReceipts:
    def test_media_is_stored(self, db, credential, provider_send):
        stored = StoredMedia(url="https://cdn.example/t/media-1.jpg", key="t/media-1.jpg", mime_type="image/jpeg")
        image = {
            "from": SENDER,
            "id": "wamid.img",
            "type": "image",
            "image": {"id": "media-1", "mime_type": "image/jpeg", "caption": "exame"},
        }

        with patch("app.services.media_service.fetch_and_persist", return_value=stored) as mock_fetch:
            ingest_payload(db, meta_payload([image]))

        message = db.query(Message).filter(Message.provider_message_id == "wamid.img").one()
        assert message.message_type == "image"
        assert message.media_url == stored.url
        assert message.media_storage_key == "t/media-1.jpg"
        assert message.body == "exame"
        assert mock_fetch.call_args[0][1] == "media-1"

    def test_media_failure_stores_placeholder(self, db, credential, provider_send):
        audio = {"from": SENDER, "id": "wamid.aud", "type": "audio", "audio": {"id": "media-2"}}

        with patch("app.services.media_service.fetch_and_persist", return_value=None):
            report = ingest_payload(db, meta_payload([audio]))

        message = db.query(Message).filter(Message.provider_message_id == "wamid.aud").one()
        assert report.processed == 1
        assert message.media_url is None
        assert message.body == "[audio]"

    def test_delivery_receipts_recorded(self, db, credential):
        report = ingest_payload(
            db,
            meta_payload(None, statuses=[{"id": "wamid.out1", "status": "read", "recipient_id": SENDER}]),
        )

        assert report.receipts == 1
        assert db.query(MessageReceipt).one().status == "read"
