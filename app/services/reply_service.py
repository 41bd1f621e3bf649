"""Human stage: operator replies to escalation messages in Telegram."""

import html
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import ResolutionConfig
from app.logging_config import get_logger
from app.models import Client, EmailSuggestion, Transcript
from app.services.alert_service import alert_error
from app.services.candidate_service import add_client_email, get_client, list_clients_for_owner
from app.services.deterministic_matcher import filter_external_participants
from app.services.errors import LinkingError
from app.services.ledger_service import AttemptRecord, get_transcript, record_attempt
from app.services.linking_state import Outcome, Stage, is_linked
from app.services.reply_parser import (
    AmbiguousMatch,
    REPLY_MATCHER_VERSION,
    ReplyMatch,
    extract_transcript_id,
    is_manual_request,
    match_client_from_reply,
)
from app.services.result import Result
from app.services.telegram_service import (
    TelegramService,
    build_email_learning_buttons,
    format_email_suggestion,
)

logger = get_logger("reply_service")

HELP_TEXT = (
    "ℹ️ Please reply directly to a transcript notification message to link it to a client.\n\n"
    "Or send a message starting with the transcript ID if you know it."
)
EMPTY_REPLY_TEXT = "I couldn't read that message. Please provide the client name or email."
NO_CLIENTS_TEXT = "❌ I couldn't find any clients to match against. Please add the client first."
LINK_FAILED_TEXT = "❌ <b>Error</b>\n\nSorry, I couldn't complete that. Please try again or use the manual link."
MANUAL_REASON = "Operator requested manual handling via Telegram."


@dataclass
class ReplyOutcome:
    action: str
    transcript_id: Optional[str] = None
    client_id: Optional[str] = None


def _send(telegram: Optional[TelegramService], chat_id: str, text: str) -> None:
    if telegram is None:
        logger.warning("Telegram not configured; reply dropped", extra={"context": {"chat_id": chat_id}})
        return
    result = telegram.send_message(chat_id=chat_id, text=text)
    if not result.get("ok"):
        logger.warning("Telegram reply not delivered", extra={"context": {"chat_id": chat_id}})


def _format_no_match(text: str) -> str:
    return (
        f'❌ <b>No Match Found</b>\n\nI couldn\'t map "{html.escape(text)}" to any existing client.\n\n'
        "Please reply with:\n"
        "• The exact business name\n"
        "• The business email address\n"
        '• Or reply "manual" to handle it manually'
    )


def _format_ambiguous(candidates: list[Client]) -> str:
    options = "\n".join(
        f"• {html.escape(client.business_name)}"
        + (f" ({html.escape(client.business_email)})" if client.business_email else "")
        for client in candidates
    )
    return f"⚠️ I found multiple possible matches:\n{options}\n\nPlease reply with the exact business email to confirm."


def _format_success(transcript: Transcript, match: ReplyMatch, manual_link: Optional[str]) -> str:
    text = (
        f"✅ <b>Success!</b>\n\nLinked transcript <b>{html.escape(transcript.title or '')}</b> "
        f"to <b>{html.escape(match.client.business_name)}</b>.\n\n"
        f"📊 Confidence: {match.confidence * 100:.0f}%\n"
        f"📝 Reason: {html.escape(match.reason)}"
    )
    if manual_link:
        text += f"\n\nView transcript: {html.escape(manual_link)}"
    return text


def _record_link_failure(db: Session, transcript_id: str, error: Exception) -> None:
    """Append a telegram/error entry after a failed link write, on a fresh read of the transcript."""
    db.rollback()
    transcript = get_transcript(db, transcript_id)
    if transcript is None or is_linked(transcript.linking_status):
        return
    try:
        record_attempt(
            db,
            transcript,
            AttemptRecord(
                stage=Stage.TELEGRAM,
                outcome=Outcome.ERROR,
                reason=f"Link attempt failed: {error}",
            ),
        )
        db.commit()
    except (LinkingError, SQLAlchemyError) as exc:
        db.rollback()
        logger.error(
            f"Could not record link failure: {exc}",
            extra={"context": {"transcript_id": transcript_id}},
        )


def process_linking_reply(
    db: Session,
    chat_id: str,
    replied_text: Optional[str],
    text: Optional[str],
    config: ResolutionConfig,
    telegram: Optional[TelegramService],
) -> ReplyOutcome:
    """Handle one operator reply to an escalation message.

    Args:
        chat_id: chat the reply came from; answers go back there
        replied_text: text (or caption) of the bot message being replied to
        text: the operator's reply
    """
    transcript_id = extract_transcript_id(replied_text)
    if not transcript_id:
        _send(telegram, chat_id, HELP_TEXT)
        return ReplyOutcome(action="help")

    transcript = get_transcript(db, transcript_id)
    if transcript is None:
        _send(telegram, chat_id, f"⚠️ Could not find transcript {transcript_id}. Please double-check the ID.")
        return ReplyOutcome(action="transcript_not_found", transcript_id=transcript_id)

    text = (text or "").strip()
    if not text:
        _send(telegram, chat_id, EMPTY_REPLY_TEXT)
        return ReplyOutcome(action="empty_reply", transcript_id=transcript_id)

    if is_linked(transcript.linking_status):
        client = get_client(db, transcript.client_id) if transcript.client_id else None
        name = client.business_name if client else transcript.client_id
        _send(
            telegram,
            chat_id,
            f"✅ Transcript <b>{html.escape(transcript.title or '')}</b> "
            f"is already linked to <b>{html.escape(name or '')}</b>.",
        )
        return ReplyOutcome(action="already_linked", transcript_id=transcript_id, client_id=transcript.client_id)

    manual_link = config.manual_link(transcript_id)

    if is_manual_request(text):
        record_attempt(
            db,
            transcript,
            AttemptRecord(stage=Stage.TELEGRAM, outcome=Outcome.NO_MATCH, reason=MANUAL_REASON),
        )
        db.commit()
        _send(
            telegram,
            chat_id,
            f"✅ Noted. You can complete the link manually here:\n{html.escape(manual_link)}"
            if manual_link
            else "✅ Noted. We'll wait for manual linking in the dashboard.",
        )
        return ReplyOutcome(action="manual", transcript_id=transcript_id)

    clients = list_clients_for_owner(db, transcript.owner_email)
    if not clients:
        _send(telegram, chat_id, NO_CLIENTS_TEXT)
        return ReplyOutcome(action="no_clients", transcript_id=transcript_id)

    match = match_client_from_reply(text, clients, config)

    if isinstance(match, AmbiguousMatch):
        _send(telegram, chat_id, _format_ambiguous(match.candidates))
        return ReplyOutcome(action="ambiguous", transcript_id=transcript_id)

    if match is None:
        record_attempt(
            db,
            transcript,
            AttemptRecord(
                stage=Stage.TELEGRAM,
                outcome=Outcome.NO_MATCH,
                reason=f'Telegram reply "{text}" did not match any client.',
            ),
        )
        db.commit()
        _send(telegram, chat_id, _format_no_match(text))
        return ReplyOutcome(action="no_match", transcript_id=transcript_id)

    try:
        record_attempt(
            db,
            transcript,
            AttemptRecord(
                stage=Stage.TELEGRAM,
                outcome=Outcome.SUCCESS,
                confidence=match.confidence,
                client_id=match.client.id,
                reason=(
                    f'Linked to {match.client.business_name} via Telegram reply: "{text}" '
                    f"({match.rule}, matcher v{REPLY_MATCHER_VERSION})"
                ),
            ),
        )
        db.commit()
    except (LinkingError, SQLAlchemyError) as exc:
        logger.error(
            f"Failed to link transcript via Telegram: {exc}",
            extra={"context": {"transcript_id": transcript_id, "client_id": match.client.id}},
        )
        _record_link_failure(db, transcript_id, exc)
        alert_error("Telegram link failed", {"transcript_id": transcript_id, "error": str(exc)})
        _send(telegram, chat_id, LINK_FAILED_TEXT)
        return ReplyOutcome(action="link_failed", transcript_id=transcript_id, client_id=match.client.id)

    _send(telegram, chat_id, _format_success(transcript, match, manual_link))
    offer_email_learning(db, transcript, match.client, config, telegram, chat_id)
    return ReplyOutcome(action="linked", transcript_id=transcript_id, client_id=match.client.id)


def _already_offered(db: Session, client_id: str, email: str) -> bool:
    return (
        db.query(EmailSuggestion)
        .filter(EmailSuggestion.client_id == client_id, EmailSuggestion.email == email)
        .first()
        is not None
    )


def suggest_emails(db: Session, transcript: Transcript, client: Client, limit: int) -> list[str]:
    """External participant emails the client does not know yet, never offered before."""
    known = set(client.known_emails())
    suggestions = []
    for email in filter_external_participants(transcript.owner_email, transcript.participants or []):
        if email in known or _already_offered(db, client.id, email):
            continue
        suggestions.append(email)
        if len(suggestions) >= limit:
            break
    return suggestions


def offer_email_learning(
    db: Session,
    transcript: Transcript,
    client: Client,
    config: ResolutionConfig,
    telegram: Optional[TelegramService],
    chat_id: Optional[str] = None,
) -> list[EmailSuggestion]:
    """Offer new participant emails to the operator after a model or human link."""
    chat_id = chat_id or config.telegram_chat_id
    if telegram is None or not chat_id:
        return []

    created = []
    for email in suggest_emails(db, transcript, client, config.max_email_suggestions):
        suggestion = EmailSuggestion(
            transcript_id=transcript.transcript_id,
            client_id=client.id,
            email=email,
            status="pending",
            created_at=datetime.now(timezone.utc),
        )
        db.add(suggestion)
        db.flush()

        result = telegram.send_message(
            chat_id=chat_id,
            text=format_email_suggestion(email, client.business_name),
            reply_markup=build_email_learning_buttons(suggestion.id),
        )
        if not result.get("ok"):
            # Not offered, so drop it and let a later link offer it again
            db.delete(suggestion)
            db.flush()
            continue
        created.append(suggestion)

    if created:
        db.commit()
        logger.info(
            "Email suggestions offered",
            extra={"context": {"transcript_id": transcript.transcript_id, "count": len(created)}},
        )
    return created


def handle_email_suggestion_callback(db: Session, action: str, suggestion_id: str) -> Result[str]:
    """Apply an Add/Skip button press. The value is the text to show the operator."""
    suggestion = db.query(EmailSuggestion).filter(EmailSuggestion.id == suggestion_id).first()
    if suggestion is None:
        return Result.failure("Suggestion not found", "not_found")

    if suggestion.status != "pending":
        return Result.success("Already handled")

    now = datetime.now(timezone.utc)
    if action == "addemail":
        client = get_client(db, suggestion.client_id)
        if client is None:
            return Result.failure("Client not found", "client_not_found")
        added = add_client_email(db, client, suggestion.email)
        if not added.ok:
            return Result.failure(added.error, added.error_code)
        suggestion.status = "accepted"
        suggestion.decided_at = now
        db.commit()
        return Result.success(f"Added {suggestion.email} to {client.business_name}")

    if action == "skipemail":
        suggestion.status = "skipped"
        suggestion.decided_at = now
        db.commit()
        return Result.success("Skipped")

    return Result.failure(f"Unknown action: {action}", "unknown_action")
