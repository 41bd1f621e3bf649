"""Resolution ledger: append-only history of linking attempts per transcript.

Every append projects the entry onto the transcript (status, client_id,
last attempt time) with a conditional update on the transcript's version, so
two concurrent stages can never both write a result.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from app.logging_config import get_logger
from app.models import LinkingAttempt, Transcript
from app.services.errors import ConcurrentResolutionError, TranscriptNotFoundError
from app.services.linking_state import (
    LinkingStatus,
    Outcome,
    Stage,
    derive_status,
    is_linked,
    transition,
)

logger = get_logger("ledger_service")


@dataclass
class AttemptRecord:
    stage: Stage
    outcome: Outcome
    reason: str
    confidence: Optional[float] = None
    client_id: Optional[str] = None


def get_transcript(db: Session, transcript_id: str) -> Optional[Transcript]:
    return db.query(Transcript).filter(Transcript.transcript_id == transcript_id).first()


def get_history(db: Session, transcript_id: str) -> list[LinkingAttempt]:
    return (
        db.query(LinkingAttempt)
        .filter(LinkingAttempt.transcript_id == transcript_id)
        .order_by(LinkingAttempt.sequence)
        .all()
    )


def get_latest_attempt(db: Session, transcript_id: str) -> Optional[LinkingAttempt]:
    return (
        db.query(LinkingAttempt)
        .filter(LinkingAttempt.transcript_id == transcript_id)
        .order_by(LinkingAttempt.sequence.desc())
        .first()
    )


def has_escalation_notice(db: Session, transcript_id: str) -> bool:
    """True once a Telegram notification was delivered for this transcript."""
    return (
        db.query(LinkingAttempt)
        .filter(
            LinkingAttempt.transcript_id == transcript_id,
            LinkingAttempt.stage == Stage.TELEGRAM.value,
            LinkingAttempt.outcome == Outcome.SUCCESS.value,
            LinkingAttempt.client_id.is_(None),
        )
        .first()
        is not None
    )


def record_attempt(
    db: Session,
    transcript: Transcript,
    record: AttemptRecord,
    *,
    timestamp: Optional[datetime] = None,
) -> LinkingAttempt:
    """Append one ledger entry and project it onto the transcript.

    Raises ConcurrentResolutionError when the transcript's version moved since it
    was read; nothing is written in that case.
    """
    now = timestamp or datetime.now(timezone.utc)
    expected_version = transcript.version or 0
    current = LinkingStatus(transcript.linking_status or LinkingStatus.UNLINKED.value)
    new_status = derive_status(record.stage, record.outcome, record.client_id, current)

    transition(current, new_status)

    client_id = record.client_id if is_linked(new_status) else None

    result = db.execute(
        update(Transcript)
        .where(
            Transcript.transcript_id == transcript.transcript_id,
            Transcript.version == expected_version,
        )
        .values(
            linking_status=new_status.value,
            client_id=client_id,
            last_link_attempt_at=now,
            version=expected_version + 1,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise ConcurrentResolutionError(transcript.transcript_id, expected_version)

    attempt = LinkingAttempt(
        transcript_id=transcript.transcript_id,
        sequence=expected_version + 1,
        stage=Stage(record.stage).value,
        outcome=Outcome(record.outcome).value,
        timestamp=now,
        confidence=record.confidence,
        client_id=record.client_id,
        reason=record.reason,
    )
    db.add(attempt)
    db.flush()

    # Keep the in-session object in step with the row we just wrote
    transcript.linking_status = new_status.value
    transcript.client_id = client_id
    transcript.last_link_attempt_at = now
    transcript.version = expected_version + 1

    logger.info(
        "Linking attempt recorded",
        extra={
            "context": {
                "transcript_id": transcript.transcript_id,
                "stage": attempt.stage,
                "outcome": attempt.outcome,
                "status": new_status.value,
                "confidence": record.confidence,
                "client_id": record.client_id,
            }
        },
    )
    return attempt


def record_attempt_by_id(db: Session, transcript_id: str, record: AttemptRecord) -> LinkingAttempt:
    transcript = get_transcript(db, transcript_id)
    if transcript is None:
        raise TranscriptNotFoundError(transcript_id)
    return record_attempt(db, transcript, record)


def check_projection(transcript: Transcript, latest: Optional[LinkingAttempt]) -> list[str]:
    """Compare a transcript with its latest ledger entry. Returns a list of violations."""
    violations = []
    status = LinkingStatus(transcript.linking_status or LinkingStatus.UNLINKED.value)
    linked = is_linked(status)

    if linked and not transcript.client_id:
        violations.append("linked_without_client")
    if not linked and transcript.client_id:
        violations.append("client_without_link")

    if latest is None:
        if status != LinkingStatus.UNLINKED:
            violations.append("status_without_history")
        return violations

    expected = derive_status(latest.stage, latest.outcome, latest.client_id, status)
    if expected != status:
        violations.append("status_mismatch")
    if linked and latest.client_id != transcript.client_id:
        violations.append("client_mismatch")

    return violations
