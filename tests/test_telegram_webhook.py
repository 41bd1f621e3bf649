from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from app.config import settings
from app.database import get_db
from app.main import app
from app.models import EmailSuggestion
from app.routers.telegram_webhook import get_telegram
from app.schemas.telegram import TelegramUpdate
from app.services.ledger_service import get_history
from app.services.reply_service import HELP_TEXT, offer_email_learning

CHAT_ID = -1001


@pytest.fixture
def client(db_session, telegram, monkeypatch):
    monkeypatch.setattr(settings, "telegram_chat_id", str(CHAT_ID))
    monkeypatch.setattr(settings, "telegram_webhook_secret", None)
    monkeypatch.setattr(settings, "app_base_url", "https://app.example.com")
    app.dependency_overrides[get_db] = lambda: db_session
    app.dependency_overrides[get_telegram] = lambda: telegram
    yield TestClient(app)
    app.dependency_overrides.clear()


def _message(text, reply_to=None, chat_id=CHAT_ID, is_bot=False):
    message = {
        "message_id": 10,
        "date": 1714575600,
        "chat": {"id": chat_id, "type": "supergroup"},
        "from": {"id": 7, "is_bot": is_bot, "first_name": "Ops"},
        "text": text,
    }
    if reply_to is not None:
        message["reply_to_message"] = {
            "message_id": 9,
            "date": 1714575000,
            "chat": {"id": chat_id, "type": "supergroup"},
            "from": {"id": 1, "is_bot": True, "first_name": "Linker"},
            "text": reply_to,
        }
    return {"update_id": 1, "message": message}


NOTICE = "New transcript needs linking\nTranscript ID: tr-1\nTitle: Weekly sync"


def test_update_schema_reads_from_alias():
    update = TelegramUpdate.model_validate(_message("Acme", reply_to=NOTICE))
    assert update.message.from_user.first_name == "Ops"
    assert update.message.replied_text == NOTICE
    assert update.message.reply_to_message.from_user.is_bot


class TestTelegramMessages:
    def test_reply_links_transcript(self, client, db_session, telegram, make_client, make_transcript):
        acme = make_client("Acme")
        make_transcript(linking_status="needs_human")

        response = client.post("/telegram/webhook", json=_message("Acme", reply_to=NOTICE))

        assert response.json() == {"ok": True, "message": "linked"}
        latest = get_history(db_session, "tr-1")[-1]
        assert (latest.stage, latest.client_id) == ("telegram", acme.id)
        assert telegram.send_message.call_args_list[0].kwargs["chat_id"] == str(CHAT_ID)

    def test_plain_message_gets_help(self, client, telegram):
        response = client.post("/telegram/webhook", json=_message("hello"))
        assert response.json()["message"] == "Help sent"
        telegram.send_message.assert_called_once_with(chat_id=str(CHAT_ID), text=HELP_TEXT)

    def test_bot_messages_ignored(self, client, telegram):
        response = client.post("/telegram/webhook", json=_message("Acme", reply_to=NOTICE, is_bot=True))
        assert response.json()["message"] == "Ignoring bot message"
        telegram.send_message.assert_not_called()

    def test_other_chat_ignored(self, client, telegram):
        response = client.post("/telegram/webhook", json=_message("Acme", reply_to=NOTICE, chat_id=555))
        assert response.json()["message"] == "Ignored chat"
        telegram.send_message.assert_not_called()

    def test_invalid_payload(self, client):
        response = client.post("/telegram/webhook", content=b"\xff\xfe not json")
        assert response.json()["ok"] is False

    def test_unexpected_update_shape_ignored(self, client):
        response = client.post("/telegram/webhook", json={"update_id": 1, "message": {"text": "no chat"}})
        assert response.json() == {"ok": True, "message": "Ignored"}

    def test_handler_error_is_reported(self, client):
        with patch("app.routers.telegram_webhook.process_linking_reply", side_effect=RuntimeError("boom")):
            response = client.post("/telegram/webhook", json=_message("Acme", reply_to=NOTICE))
        assert response.json() == {"ok": False, "message": "Internal error"}


class TestWebhookSecret:
    @pytest.fixture(autouse=True)
    def _secret(self, client, monkeypatch):
        monkeypatch.setattr(settings, "telegram_webhook_secret", "s3cret")

    def test_missing_secret_rejected(self, client, db_session, telegram, make_client, make_transcript):
        make_client("Acme")
        make_transcript(linking_status="needs_human")

        response = client.post("/telegram/webhook", json=_message("Acme", reply_to=NOTICE))

        assert response.status_code == 401
        assert get_history(db_session, "tr-1") == []
        telegram.send_message.assert_not_called()

    def test_wrong_secret_rejected(self, client, telegram):
        response = client.post(
            "/telegram/webhook",
            json=_message("hello"),
            headers={"X-Telegram-Bot-Api-Secret-Token": "guess"},
        )
        assert response.status_code == 401
        telegram.send_message.assert_not_called()

    def test_matching_secret_accepted(self, client, db_session, make_client, make_transcript):
        make_client("Acme")
        make_transcript(linking_status="needs_human")

        response = client.post(
            "/telegram/webhook",
            json=_message("Acme", reply_to=NOTICE),
            headers={"X-Telegram-Bot-Api-Secret-Token": "s3cret"},
        )

        assert response.json() == {"ok": True, "message": "linked"}


class TestCallbackQueries:
    def _callback(self, data):
        return {
            "update_id": 2,
            "callback_query": {
                "id": "cb-1",
                "from": {"id": 7, "first_name": "Ops"},
                "message": {"message_id": 33, "date": 1714575600, "chat": {"id": CHAT_ID, "type": "supergroup"}},
                "data": data,
            },
        }

    def test_add_email_button(self, client, db_session, config, telegram, make_client, make_transcript):
        acme = make_client("Acme")
        transcript = make_transcript(participants=["cfo@acme.com"])
        [suggestion] = offer_email_learning(db_session, transcript, acme, config, telegram)

        response = client.post("/telegram/webhook", json=self._callback(f"addemail_{suggestion.id}"))

        assert response.json() == {"ok": True, "message": "Added cfo@acme.com to Acme"}
        telegram.answer_callback_query.assert_called_once_with("cb-1", "Added cfo@acme.com to Acme")
        telegram.edit_reply_markup.assert_called_once_with(str(CHAT_ID), 33)
        assert db_session.query(EmailSuggestion).one().status == "accepted"

    def test_unknown_action(self, client, telegram):
        response = client.post("/telegram/webhook", json=self._callback("frobnicate_123"))
        assert response.json()["ok"] is False
        telegram.answer_callback_query.assert_called_once()

    def test_malformed_data(self, client, telegram):
        response = client.post("/telegram/webhook", json=self._callback("nounderscore"))
        assert response.json()["ok"] is False


class TestWebhookInfo:
    def test_reports_status(self, client, telegram):
        telegram.get_webhook_info.return_value = {
            "ok": True,
            "result": {"url": "https://linker.example.com/telegram/webhook", "pending_update_count": 2},
        }
        body = client.get("/telegram/webhook").json()
        assert body["webhook_configured"] is True
        assert body["pending_updates"] == 2

    def test_no_token(self, db_session):
        app.dependency_overrides[get_telegram] = lambda: None
        try:
            response = TestClient(app).get("/telegram/webhook")
        finally:
            app.dependency_overrides.clear()
        assert response.status_code == 500
