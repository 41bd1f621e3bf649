from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from app.config import ResolutionConfig, settings
from app.logging_config import get_logger
from app.models import Transcript
from app.services.alert_service import alert_error, alert_warning
from app.services.ledger_service import AttemptRecord, has_escalation_notice, record_attempt
from app.services.linking_state import Outcome, Stage, is_linked
from app.services.telegram_service import TelegramService, format_linking_notification

logger = get_logger("escalation_service")


@dataclass
class NotificationResult:
    status: str  # sent, skipped, error
    reason: str
    message_id: Optional[int] = None


def get_escalation_chat_id(config: ResolutionConfig) -> Optional[str]:
    return config.telegram_chat_id or settings.telegram_chat_id


def get_telegram_service(telegram: Optional[TelegramService] = None) -> Optional[TelegramService]:
    if telegram is not None:
        return telegram
    if not settings.telegram_bot_token:
        return None
    return TelegramService(settings.telegram_bot_token, timeout_seconds=settings.telegram_timeout_seconds)


def notify_transcript_linking(
    db: Session,
    transcript: Transcript,
    config: ResolutionConfig,
    telegram: Optional[TelegramService] = None,
) -> NotificationResult:
    """Ask a human in Telegram which client this transcript belongs to.

    Sends at most one notification per transcript. Delivery failures are written
    to the ledger and never raised.
    """
    telegram = get_telegram_service(telegram)
    chat_id = get_escalation_chat_id(config)
    if telegram is None or not chat_id:
        reason = "Telegram bot token or chat ID not configured."
        logger.warning(reason, extra={"context": {"transcript_id": transcript.transcript_id}})
        alert_warning(reason, {"transcript_id": transcript.transcript_id})
        return NotificationResult(status="skipped", reason=reason)

    if is_linked(transcript.linking_status):
        return NotificationResult(status="skipped", reason="Transcript is already linked.")

    if has_escalation_notice(db, transcript.transcript_id):
        return NotificationResult(status="skipped", reason="Telegram notification already sent for this transcript.")

    text = format_linking_notification(
        transcript_id=transcript.transcript_id,
        title=transcript.title,
        date=transcript.date,
        participants=transcript.participants,
        status=transcript.linking_status,
        body=transcript.transcript,
        manual_link=config.manual_link(transcript.transcript_id),
    )

    result = telegram.send_message(chat_id=chat_id, text=text)

    if not result.get("ok"):
        error = result.get("description") or result.get("error") or "unknown error"
        reason = f"Failed to send Telegram notification: {error}"
        record_attempt(db, transcript, AttemptRecord(stage=Stage.TELEGRAM, outcome=Outcome.ERROR, reason=reason))
        alert_error("Telegram escalation failed", {"transcript_id": transcript.transcript_id, "error": error})
        return NotificationResult(status="error", reason=reason)

    message_id = (result.get("result") or {}).get("message_id") or 0
    record_attempt(
        db,
        transcript,
        AttemptRecord(
            stage=Stage.TELEGRAM,
            outcome=Outcome.SUCCESS,
            reason=f"Escalated to Telegram (message {message_id}).",
        ),
    )
    logger.info(
        "Transcript escalated to Telegram",
        extra={"context": {"transcript_id": transcript.transcript_id, "message_id": message_id}},
    )
    return NotificationResult(status="sent", reason="Escalated to Telegram.", message_id=message_id)
