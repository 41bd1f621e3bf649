"""Orchestrates the resolution stages for one transcript.

Stages run cheapest first and stop at the first link:
deterministic email match, then the language model, then a Telegram escalation
that a human completes later. Every stage's outcome is appended to the ledger.
"""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from app.config import ResolutionConfig, settings
from app.logging_config import get_logger, transcript_logger
from app.models import Transcript
from app.services.ai_linking_service import get_llm_provider, run_ai_stage
from app.services.candidate_service import get_account_settings, list_clients_for_owner, resolve_client_by_id
from app.services.deterministic_matcher import match_by_participant_emails, no_match_reason
from app.services.errors import ClientNotFoundError, ConcurrentResolutionError, TranscriptNotFoundError
from app.services.escalation_service import NotificationResult, get_telegram_service, notify_transcript_linking
from app.services.ledger_service import AttemptRecord, get_transcript, record_attempt
from app.services.linking_state import (
    InvalidTransitionError,
    LinkingStatus,
    Outcome,
    Stage,
    can_transition,
    is_linked,
)
from app.services.llm import LLMProvider
from app.services.reply_service import offer_email_learning
from app.services.telegram_service import TelegramService

logger = get_logger("resolution_service")


@dataclass
class ResolutionOutcome:
    transcript_id: str
    status: str  # already_linked, auto_linked, ai_linked, needs_human
    client_id: Optional[str] = None
    confidence: Optional[float] = None
    reason: Optional[str] = None
    notification: Optional[NotificationResult] = None


def get_llm_for_owner(db: Session, owner_email: str, config: ResolutionConfig) -> LLMProvider:
    """Provider built from the owner's key, falling back to the process-wide key.

    Raises ConfigurationError when neither is set.
    """
    account = get_account_settings(db, owner_email)
    api_key = (account.llm_api_key if account else None) or settings.llm_api_key
    return get_llm_provider(api_key, config, base_url=settings.llm_base_url)


def _already_linked(transcript: Transcript) -> ResolutionOutcome:
    return ResolutionOutcome(
        transcript_id=transcript.transcript_id,
        status="already_linked",
        client_id=transcript.client_id,
    )


def resolve_transcript(
    db: Session,
    transcript_id: str,
    config: ResolutionConfig,
    llm: Optional[LLMProvider] = None,
    telegram: Optional[TelegramService] = None,
) -> ResolutionOutcome:
    """Run the resolution stages for a transcript.

    Raises TranscriptNotFoundError for an unknown id and ConfigurationError when the
    model stage has no credential. A concurrent writer winning the race is reported
    as ``already_linked`` when it linked the transcript.
    """
    transcript = get_transcript(db, transcript_id)
    if transcript is None:
        raise TranscriptNotFoundError(transcript_id)

    if is_linked(transcript.linking_status):
        return _already_linked(transcript)

    try:
        return _run_stages(db, transcript, config, llm, telegram)
    except ConcurrentResolutionError:
        db.rollback()
        current = get_transcript(db, transcript_id)
        if current is not None and is_linked(current.linking_status):
            logger.info(
                "Concurrent resolution already linked transcript",
                extra={"context": {"transcript_id": transcript_id, "client_id": current.client_id}},
            )
            return _already_linked(current)
        raise


def _run_stages(
    db: Session,
    transcript: Transcript,
    config: ResolutionConfig,
    llm: Optional[LLMProvider],
    telegram: Optional[TelegramService],
) -> ResolutionOutcome:
    log = transcript_logger("resolution_service", transcript.transcript_id, owner=transcript.owner_email)
    clients = list_clients_for_owner(db, transcript.owner_email)

    match = match_by_participant_emails(transcript.owner_email, transcript.participants, clients)
    if match:
        record_attempt(
            db,
            transcript,
            AttemptRecord(
                stage=Stage.AUTO,
                outcome=Outcome.SUCCESS,
                confidence=match.confidence,
                client_id=match.client.id,
                reason=match.reason,
            ),
        )
        db.commit()
        log.info("Linked deterministically", context={"client_id": match.client.id})
        return ResolutionOutcome(
            transcript_id=transcript.transcript_id,
            status=LinkingStatus.AUTO_LINKED.value,
            client_id=match.client.id,
            confidence=match.confidence,
            reason=match.reason,
        )

    miss_reason = no_match_reason(transcript.owner_email, transcript.participants)
    record_attempt(
        db,
        transcript,
        AttemptRecord(stage=Stage.AUTO, outcome=Outcome.NO_MATCH, reason=miss_reason),
    )
    db.commit()

    if clients and llm is None:
        llm = get_llm_for_owner(db, transcript.owner_email, config)

    ai_result = run_ai_stage(transcript, clients, config, llm)
    record_attempt(
        db,
        transcript,
        AttemptRecord(
            stage=Stage.AI,
            outcome=ai_result.outcome,
            confidence=ai_result.confidence,
            client_id=ai_result.client.id if ai_result.client else ai_result.suggested_client_id,
            reason=ai_result.reason,
        ),
    )
    db.commit()

    if ai_result.linked:
        log.info("Linked by model", context={"client_id": ai_result.client.id, "confidence": ai_result.confidence})
        offer_email_learning(db, transcript, ai_result.client, config, get_telegram_service(telegram))
        return ResolutionOutcome(
            transcript_id=transcript.transcript_id,
            status=LinkingStatus.AI_LINKED.value,
            client_id=ai_result.client.id,
            confidence=ai_result.confidence,
            reason=ai_result.reason,
        )

    return escalate(db, transcript, config, telegram, reason=ai_result.reason, confidence=ai_result.confidence)


def escalate(
    db: Session,
    transcript: Transcript,
    config: ResolutionConfig,
    telegram: Optional[TelegramService],
    reason: Optional[str] = None,
    confidence: Optional[float] = None,
) -> ResolutionOutcome:
    notification = notify_transcript_linking(db, transcript, config, telegram)
    db.commit()
    logger.info(
        "Transcript needs a human",
        extra={"context": {"transcript_id": transcript.transcript_id, "notification": notification.status}},
    )
    return ResolutionOutcome(
        transcript_id=transcript.transcript_id,
        status=LinkingStatus(transcript.linking_status).value,
        confidence=confidence,
        reason=reason,
        notification=notification,
    )


def manual_link(db: Session, transcript_id: str, client_id: str, reason: Optional[str] = None) -> Transcript:
    """Operator links a transcript to a client from the dashboard."""
    transcript = get_transcript(db, transcript_id)
    if transcript is None:
        raise TranscriptNotFoundError(transcript_id)

    client = resolve_client_by_id(db, transcript.owner_email, client_id)
    if client is None:
        raise ClientNotFoundError(client_id)

    if is_linked(transcript.linking_status) and transcript.client_id == client.id:
        return transcript

    record_attempt(
        db,
        transcript,
        AttemptRecord(
            stage=Stage.MANUAL,
            outcome=Outcome.SUCCESS,
            confidence=1.0,
            client_id=client.id,
            reason=reason or f"Linked to {client.business_name} by operator.",
        ),
    )
    db.commit()
    return transcript


def manual_unlink(db: Session, transcript_id: str, reason: Optional[str] = None) -> Transcript:
    """Operator removes a link. Only linked (or already unlinked) transcripts can be unlinked."""
    transcript = get_transcript(db, transcript_id)
    if transcript is None:
        raise TranscriptNotFoundError(transcript_id)

    current = LinkingStatus(transcript.linking_status or LinkingStatus.UNLINKED.value)
    if not can_transition(current, LinkingStatus.UNLINKED):
        raise InvalidTransitionError(current, LinkingStatus.UNLINKED)

    record_attempt(
        db,
        transcript,
        AttemptRecord(
            stage=Stage.MANUAL,
            outcome=Outcome.NO_MATCH,
            client_id=None,
            reason=reason or "Unlinked by operator.",
        ),
    )
    db.commit()
    return transcript


def list_unlinked(db: Session, owner_email: str) -> list[Transcript]:
    return (
        db.query(Transcript)
        .filter(
            Transcript.owner_email == owner_email,
            Transcript.linking_status.in_([LinkingStatus.UNLINKED.value, LinkingStatus.NEEDS_HUMAN.value]),
        )
        .order_by(Transcript.date.desc())
        .all()
    )


def resolve_unlinked_for_owner(
    db: Session,
    owner_email: str,
    config: ResolutionConfig,
    llm: Optional[LLMProvider] = None,
    telegram: Optional[TelegramService] = None,
) -> list[ResolutionOutcome]:
    """Re-run resolution for every unresolved transcript of an owner.

    A missing model credential stops the batch; other per-transcript failures are
    logged and skipped.
    """
    outcomes = []
    for transcript in list_unlinked(db, owner_email):
        try:
            outcomes.append(resolve_transcript(db, transcript.transcript_id, config, llm=llm, telegram=telegram))
        except (ConcurrentResolutionError, InvalidTransitionError) as exc:
            db.rollback()
            logger.warning(
                f"Skipping transcript in batch: {exc}",
                extra={"context": {"transcript_id": transcript.transcript_id, "owner": owner_email}},
            )
    logger.info(
        "Batch resolution finished",
        extra={"context": {"owner": owner_email, "processed": len(outcomes)}},
    )
    return outcomes
