from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from deskbot.config import Settings, settings
from deskbot.database import get_db
from deskbot.dependencies import get_inbound_service, get_session_store, get_worker
from deskbot.main import app
from deskbot.models import OutboxMessage
from deskbot.routers.webhook import meta_message_to_event
from deskbot.schemas.webhook import MetaMessage
from deskbot.services.dedup_cache import InMemoryDedupCache
from deskbot.services.dispatcher import ReplyDispatcher
from deskbot.services.fsm_states import ContentKind, FSMState
from deskbot.services.handoff_service import start_handoff
from deskbot.services.inbound_service import InboundService
from deskbot.services.outbox_service import OutboxStatus, enqueue_outbox_message
from deskbot.services.outbox_worker import OutboxWorker
from deskbot.services.rewrite_service import RewriteService
from deskbot.services.session_store import SessionStore
from deskbot.services.whatsapp_transport import MockTransport

from conftest import PHONE

ADMIN = {"X-Admin-Token": "secret"}


@pytest.fixture
def sessions():
    return SessionStore()


@pytest.fixture
def transport():
    return MockTransport()


@pytest.fixture
def client(session_factory, engine, sessions, transport, monkeypatch):
    def _get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    dispatcher = ReplyDispatcher(RewriteService(provider=None, enabled=False), {"default": "5491100000000"})
    service = InboundService(InMemoryDedupCache(), sessions, engine, dispatcher, session_factory)
    worker = OutboxWorker(session_factory, transport, Settings())

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_inbound_service] = lambda: service
    app.dependency_overrides[get_session_store] = lambda: sessions
    app.dependency_overrides[get_worker] = lambda: worker
    monkeypatch.setattr(settings, "admin_token", "secret")
    monkeypatch.setattr(settings, "whatsapp_verify_token", "verify-me")
    yield TestClient(app)
    app.dependency_overrides.clear()


def _meta_payload(*messages, name="Ana"):
    return {
        "object": "whatsapp_business_account",
        "entry": [
            {
                "id": "1",
                "changes": [
                    {
                        "field": "messages",
                        "value": {
                            "contacts": [{"wa_id": PHONE, "profile": {"name": name}}],
                            "messages": list(messages),
                        },
                    }
                ],
            }
        ],
    }


class TestMetaMapping:
    def test_text(self):
        message = MetaMessage.model_validate(
            {"from": PHONE, "id": "wamid.1", "type": "text", "text": {"body": "hola"}}
        )
        event = meta_message_to_event(message, "Ana")

        assert event.conversation_id == PHONE
        assert event.text == "hola"
        assert event.content_kind == ContentKind.TEXT
        assert event.correlation_id == "wamid.1"
        assert event.contact_name == "Ana"

    def test_list_reply_is_menu_selection(self):
        message = MetaMessage.model_validate(
            {
                "from": PHONE,
                "id": "wamid.2",
                "type": "interactive",
                "interactive": {"type": "list_reply", "list_reply": {"id": "root_cliente", "title": "Soy Cliente"}},
            }
        )
        event = meta_message_to_event(message)

        assert event.text == "root_cliente"
        assert event.content_kind == ContentKind.MENU_SELECTION

    def test_document_keeps_caption(self):
        message = MetaMessage.model_validate(
            {"from": PHONE, "id": "wamid.3", "type": "document", "document": {"id": "m1", "caption": "ventas marzo"}}
        )
        event = meta_message_to_event(message)

        assert event.content_kind == ContentKind.DOCUMENT
        assert event.text == "ventas marzo"

    def test_unsupported_type(self):
        message = MetaMessage.model_validate({"from": PHONE, "id": "wamid.4", "type": "location"})
        assert meta_message_to_event(message) is None


class TestWebhook:
    def test_verify_challenge(self, client):
        response = client.get(
            "/webhook/whatsapp",
            params={"hub.mode": "subscribe", "hub.verify_token": "verify-me", "hub.challenge": "12345"},
        )
        assert response.status_code == 200
        assert response.text == "12345"

    def test_verify_wrong_token(self, client):
        response = client.get(
            "/webhook/whatsapp",
            params={"hub.mode": "subscribe", "hub.verify_token": "nope", "hub.challenge": "12345"},
        )
        assert response.status_code == 403

    def test_messages_are_processed_and_redelivery_is_deduped(self, client, sessions):
        message = {"from": PHONE, "id": "wamid.1", "timestamp": "1700000000", "type": "text", "text": {"body": "hola"}}
        unsupported = {"from": PHONE, "id": "wamid.2", "type": "location"}

        first = client.post("/webhook/whatsapp", json=_meta_payload(message, unsupported))
        again = client.post("/webhook/whatsapp", json=_meta_payload(message))

        assert first.json() == {"success": True, "processed": 1, "duplicates": 0, "statuses": 0}
        assert again.json() == {"success": True, "processed": 0, "duplicates": 1, "statuses": 0}
        assert sessions.get(PHONE).data["contact_name"] == "Ana"

    def test_delivery_statuses_are_recorded(self, client, db):
        entry_id = enqueue_outbox_message(
            db, conversation_id=PHONE, recipient=PHONE, payload={"type": "text", "text": {"body": "x"}}
        )
        entry = db.get(OutboxMessage, entry_id)
        entry.remote_id = "wamid.out.1"
        db.commit()
        payload = _meta_payload()
        payload["entry"][0]["changes"][0]["value"]["statuses"] = [
            {"id": "wamid.out.1", "status": "delivered", "recipient_id": PHONE, "timestamp": "1700000001"},
            {"id": "wamid.out.2", "status": "failed", "errors": [{"code": 131026}]},
        ]

        with patch("deskbot.services.outbox_service.logger") as outbox_logger:
            response = client.post("/webhook/whatsapp", json=payload)

        assert response.json() == {"success": True, "processed": 0, "duplicates": 0, "statuses": 2}
        delivered = outbox_logger.info.call_args.kwargs["extra"]["context"]
        assert delivered["outbox_id"] == entry_id
        assert delivered["status"] == "delivered"
        failed = outbox_logger.warning.call_args.kwargs["extra"]["context"]
        assert failed["errors"] == [{"code": 131026}]

    def test_inbound_endpoint(self, client):
        response = client.post(
            "/inbound",
            json={"conversationId": PHONE, "text": "root_cliente", "contentKind": "menu-selection", "messageId": "m1"},
        )

        body = response.json()
        assert response.status_code == 200
        assert body["success"] is True
        assert body["state"] == FSMState.IDENTIFY.value
        assert len(body["outbox_ids"]) == 1

    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok"}


class TestAdmin:
    def test_token_required(self, client):
        assert client.get("/admin/outbox").status_code == 401
        assert client.get("/admin/outbox", headers={"X-Admin-Token": "wrong"}).status_code == 401

    def test_unconfigured_token(self, client, monkeypatch):
        monkeypatch.setattr(settings, "admin_token", None)
        assert client.get("/admin/outbox", headers=ADMIN).status_code == 500

    def test_process_delivers_queued_replies(self, client, transport, db):
        client.post("/inbound", json={"conversationId": PHONE, "text": "hola", "messageId": "m1"})

        response = client.post("/admin/outbox/process", headers=ADMIN)

        assert response.json()["sent"] == 1
        assert len(transport.sent) == 1
        assert transport.sent[0]["recipient"] == PHONE
        (entry,) = db.query(OutboxMessage).all()
        assert entry.status == OutboxStatus.SENT.value

    def test_list_and_get_outbox(self, client, db):
        entry_id = enqueue_outbox_message(
            db, conversation_id=PHONE, recipient=PHONE, payload={"type": "text", "text": {"body": "x"}}
        )

        listed = client.get("/admin/outbox", params={"status": "pending"}, headers=ADMIN).json()
        assert [item["id"] for item in listed] == [entry_id]
        assert listed[0]["conversationId"] == PHONE
        assert listed[0]["payloadKind"] == "text"

        assert client.get(f"/admin/outbox/{entry_id}", headers=ADMIN).json()["id"] == entry_id
        assert client.get("/admin/outbox/missing", headers=ADMIN).status_code == 404
        assert client.get("/admin/outbox", params={"status": "bogus"}, headers=ADMIN).status_code == 400

    def test_resend(self, client, db):
        entry_id = enqueue_outbox_message(
            db, conversation_id=PHONE, recipient=PHONE, payload={"type": "text", "text": {"body": "x"}}
        )
        entry = db.get(OutboxMessage, entry_id)
        entry.status = OutboxStatus.FAILED.value
        entry.error = "HTTP 400"
        db.commit()

        response = client.post(f"/admin/outbox/{entry_id}/resend", headers=ADMIN)

        assert response.status_code == 200
        assert response.json()["status"] == "pending"
        assert response.json()["error"] is None

        entry.status = OutboxStatus.SENDING.value
        db.commit()
        assert client.post(f"/admin/outbox/{entry_id}/resend", headers=ADMIN).status_code == 409
        assert client.post("/admin/outbox/missing/resend", headers=ADMIN).status_code == 404

    def test_close_handoff(self, client, db, sessions):
        start_handoff(db, PHONE, reason="user_request", staff_text="x", staff_phones={})
        db.commit()

        response = client.post(f"/admin/conversations/{PHONE}/handoff/close", headers=ADMIN)

        assert response.status_code == 200
        assert response.json() == {"success": True, "conversation_id": PHONE, "handoff_status": "handoff_closed"}
        assert sessions.get(PHONE).state == FSMState.FINALIZE

        assert client.post(f"/admin/conversations/{PHONE}/handoff/close", headers=ADMIN).status_code == 409
        assert client.post("/admin/conversations/5490/handoff/close", headers=ADMIN).status_code == 404

    def test_messages_and_session(self, client):
        client.post("/inbound", json={"conversationId": PHONE, "text": "hola", "messageId": "m1"})

        messages = client.get(f"/admin/conversations/{PHONE}/messages", headers=ADMIN).json()
        assert sorted(m["role"] for m in messages) == ["bot", "user"]

        session = client.get(f"/admin/sessions/{PHONE}", headers=ADMIN).json()
        assert session["state"] == FSMState.ROOT.value
        assert session["locked"] is False
        assert client.get("/admin/sessions/5490", headers=ADMIN).status_code == 404
