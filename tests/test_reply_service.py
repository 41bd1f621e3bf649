from unittest.mock import patch

from sqlalchemy.exc import OperationalError

from app.models import Client, EmailSuggestion
from app.services import ledger_service
from app.services.ledger_service import get_history
from app.services.linking_state import Outcome
from app.services.reply_service import (
    HELP_TEXT,
    LINK_FAILED_TEXT,
    MANUAL_REASON,
    NO_CLIENTS_TEXT,
    handle_email_suggestion_callback,
    offer_email_learning,
    process_linking_reply,
)

CHAT = "-1001"
NOTICE = "🔗 New transcript needs linking\nTranscript ID: tr-1\nTitle: Weekly sync"


def _entries(db):
    return [(entry.stage, entry.outcome) for entry in get_history(db, "tr-1")]


def _last_text(telegram):
    return telegram.send_message.call_args.kwargs["text"]


class TestProcessLinkingReply:
    def test_reply_without_transcript_id(self, db_session, config, telegram):
        outcome = process_linking_reply(db_session, CHAT, "Good morning", "Acme", config, telegram)
        assert outcome.action == "help"
        assert _last_text(telegram) == HELP_TEXT

    def test_unknown_transcript(self, db_session, config, telegram):
        outcome = process_linking_reply(db_session, CHAT, NOTICE, "Acme", config, telegram)
        assert outcome.action == "transcript_not_found"
        assert "tr-1" in _last_text(telegram)

    def test_empty_reply(self, db_session, config, telegram, make_transcript):
        make_transcript(linking_status="needs_human")
        outcome = process_linking_reply(db_session, CHAT, NOTICE, "   ", config, telegram)
        assert outcome.action == "empty_reply"
        assert _entries(db_session) == []

    def test_manual_keeps_needs_human(self, db_session, config, telegram, make_client, make_transcript):
        make_client("Manual Labour Ltd")
        transcript = make_transcript(linking_status="needs_human")

        outcome = process_linking_reply(db_session, CHAT, NOTICE, "manual please", config, telegram)

        assert outcome.action == "manual"
        assert transcript.linking_status == "needs_human"
        latest = get_history(db_session, "tr-1")[-1]
        assert (latest.stage, latest.outcome, latest.reason) == ("telegram", "no_match", MANUAL_REASON)
        assert "https://app.example.com/resolve-transcript/tr-1" in _last_text(telegram)

    def test_no_clients(self, db_session, config, telegram, make_transcript):
        make_transcript(linking_status="needs_human")
        outcome = process_linking_reply(db_session, CHAT, NOTICE, "Acme", config, telegram)
        assert outcome.action == "no_clients"
        assert _last_text(telegram) == NO_CLIENTS_TEXT

    def test_no_match(self, db_session, config, telegram, make_client, make_transcript):
        make_client("Acme")
        make_transcript(linking_status="needs_human")

        outcome = process_linking_reply(db_session, CHAT, NOTICE, "Umbrella", config, telegram)

        assert outcome.action == "no_match"
        assert _entries(db_session) == [("telegram", "no_match")]
        assert "No Match Found" in _last_text(telegram)

    def test_reply_text_is_escaped_in_answer(self, db_session, config, telegram, make_client, make_transcript):
        make_client("Acme")
        make_transcript(linking_status="needs_human")

        process_linking_reply(db_session, CHAT, NOTICE, "<b>R&D_team</b>", config, telegram)

        assert "&lt;b&gt;r&amp;d_team&lt;/b&gt;" in _last_text(telegram).lower()

    def test_ambiguous_changes_nothing(self, db_session, config, telegram, make_client, make_transcript):
        make_client("Acme Inc", "a@acme.com")
        make_client("Acme International", "b@acme-intl.com")
        transcript = make_transcript(linking_status="needs_human")

        outcome = process_linking_reply(db_session, CHAT, NOTICE, "acme", config, telegram)

        assert outcome.action == "ambiguous"
        assert transcript.linking_status == "needs_human"
        assert _entries(db_session) == []
        text = _last_text(telegram)
        assert "Acme Inc (a@acme.com)" in text
        assert "Acme International (b@acme-intl.com)" in text

    def test_link_and_offer_emails(self, db_session, config, telegram, make_client, make_transcript):
        acme = make_client("Acme Inc", "ceo@acme.com")
        make_client("Acme International")
        transcript = make_transcript(participants=["owner@agency.io", "ceo@acme.com", "cfo@acme.com"], linking_status="needs_human")

        outcome = process_linking_reply(db_session, CHAT, NOTICE, "Acme Inc", config, telegram)

        assert outcome.action == "linked"
        assert outcome.client_id == acme.id
        assert transcript.linking_status == "manually_linked"
        assert transcript.client_id == acme.id

        latest = get_history(db_session, "tr-1")[-1]
        assert latest.confidence == 0.95
        assert latest.reason == 'Linked to Acme Inc via Telegram reply: "Acme Inc" (exact_business, matcher v2)'

        texts = [call.kwargs["text"] for call in telegram.send_message.call_args_list]
        assert "Success!" in texts[0]
        assert "cfo@acme.com" in texts[1]
        suggestion = db_session.query(EmailSuggestion).one()
        assert suggestion.email == "cfo@acme.com"
        assert telegram.send_message.call_args.kwargs["reply_markup"]["inline_keyboard"][0][0]["callback_data"] == (
            f"addemail_{suggestion.id}"
        )

    def test_already_linked(self, db_session, config, telegram, make_client, make_transcript):
        acme = make_client("Acme")
        make_transcript(linking_status="ai_linked", client_id=acme.id)

        outcome = process_linking_reply(db_session, CHAT, NOTICE, "manual", config, telegram)

        assert outcome.action == "already_linked"
        assert _entries(db_session) == []
        assert "Acme" in _last_text(telegram)

    def test_failed_link_is_recorded_and_reported(self, db_session, config, telegram, make_client, make_transcript):
        make_client("Acme")
        transcript = make_transcript(linking_status="needs_human")
        real_record = ledger_service.record_attempt

        def failing_success(db, transcript, record, **kwargs):
            if record.outcome == Outcome.SUCCESS:
                raise OperationalError("INSERT", {}, Exception("database is locked"))
            return real_record(db, transcript, record, **kwargs)

        with patch("app.services.reply_service.record_attempt", side_effect=failing_success), patch(
            "app.services.reply_service.alert_error"
        ) as alert:
            outcome = process_linking_reply(db_session, CHAT, NOTICE, "Acme", config, telegram)

        assert outcome.action == "link_failed"
        assert _entries(db_session) == [("telegram", "error")]
        db_session.refresh(transcript)
        assert transcript.linking_status == "needs_human"
        assert transcript.client_id is None
        assert _last_text(telegram) == LINK_FAILED_TEXT
        alert.assert_called_once()


class TestEmailLearning:
    def test_no_offer_without_chat(self, db_session, config, make_client, make_transcript):
        client = make_client("Acme")
        transcript = make_transcript(participants=["x@acme.com"])
        assert offer_email_learning(db_session, transcript, client, config, None) == []

    def test_suggestion_not_repeated(self, db_session, config, telegram, make_client, make_transcript):
        client = make_client("Acme")
        transcript = make_transcript(participants=["x@acme.com"])

        first = offer_email_learning(db_session, transcript, client, config, telegram)
        second = offer_email_learning(db_session, transcript, client, config, telegram)

        assert len(first) == 1
        assert second == []

    def test_failed_send_drops_suggestion(self, db_session, config, telegram, make_client, make_transcript):
        telegram.send_message.return_value = {"ok": False, "description": "chat not found"}
        client = make_client("Acme")
        transcript = make_transcript(participants=["x@acme.com"])

        assert offer_email_learning(db_session, transcript, client, config, telegram) == []
        assert db_session.query(EmailSuggestion).count() == 0

    def test_limit(self, db_session, config, telegram, make_client, make_transcript):
        client = make_client("Acme")
        transcript = make_transcript(participants=[f"p{i}@acme.com" for i in range(5)])
        assert len(offer_email_learning(db_session, transcript, client, config, telegram)) == config.max_email_suggestions


class TestEmailSuggestionCallback:
    def _suggestion(self, db_session, config, telegram, make_client, make_transcript):
        client = make_client("Acme", "ceo@acme.com")
        transcript = make_transcript(participants=["cfo@acme.com"])
        [suggestion] = offer_email_learning(db_session, transcript, client, config, telegram)
        return client, suggestion

    def test_add(self, db_session, config, telegram, make_client, make_transcript):
        client, suggestion = self._suggestion(db_session, config, telegram, make_client, make_transcript)

        result = handle_email_suggestion_callback(db_session, "addemail", suggestion.id)

        assert result.ok
        assert result.value == "Added cfo@acme.com to Acme"
        stored = db_session.query(Client).filter_by(id=client.id).one()
        assert "cfo@acme.com" in stored.known_emails()
        assert suggestion.status == "accepted"

    def test_skip_then_already_handled(self, db_session, config, telegram, make_client, make_transcript):
        client, suggestion = self._suggestion(db_session, config, telegram, make_client, make_transcript)

        assert handle_email_suggestion_callback(db_session, "skipemail", suggestion.id).value == "Skipped"
        assert handle_email_suggestion_callback(db_session, "addemail", suggestion.id).value == "Already handled"
        assert "cfo@acme.com" not in client.known_emails()

    def test_unknown_suggestion(self, db_session):
        result = handle_email_suggestion_callback(db_session, "addemail", "nope")
        assert not result.ok
        assert result.error_code == "not_found"

    def test_unknown_action(self, db_session, config, telegram, make_client, make_transcript):
        _, suggestion = self._suggestion(db_session, config, telegram, make_client, make_transcript)
        result = handle_email_suggestion_callback(db_session, "maybe", suggestion.id)
        assert result.error_code == "unknown_action"
