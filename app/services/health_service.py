from datetime import datetime, timezone

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.logging_config import get_logger
from app.models import Transcript
from app.services.ledger_service import check_projection, get_latest_attempt
from app.services.linking_state import LinkingStatus, derive_status, is_linked

logger = get_logger("health_service")


def check_linking_invariants(db: Session, heal: bool = False) -> dict:
    """Compare every transcript with its latest ledger entry.

    With heal=True the transcript is re-projected from the ledger, which is the
    source of truth; no ledger entry is written.
    """
    violations = []
    healed = 0

    for transcript in db.query(Transcript).all():
        latest = get_latest_attempt(db, transcript.transcript_id)
        issues = check_projection(transcript, latest)
        if not issues:
            continue

        entry = {
            "transcript_id": transcript.transcript_id,
            "issues": issues,
            "status": transcript.linking_status,
            "client_id": transcript.client_id,
        }

        if heal:
            if latest is None:
                status = LinkingStatus.UNLINKED
                client_id = None
            else:
                status = derive_status(latest.stage, latest.outcome, latest.client_id, transcript.linking_status)
                client_id = latest.client_id if is_linked(status) else None
            transcript.linking_status = status.value
            transcript.client_id = client_id
            transcript.version = (transcript.version or 0) + 1
            entry["action"] = f"reprojected_to_{status.value}"
            healed += 1

        violations.append(entry)
        logger.warning(f"Linking invariant violated for {transcript.transcript_id}: {', '.join(issues)}")

    if heal and healed:
        db.commit()

    return {
        "violation_count": len(violations),
        "healed_count": healed,
        "details": violations,
        "checked_at": datetime.now(timezone.utc).isoformat(),
    }


def get_linking_health(db: Session) -> dict:
    """Transcript counts per linking status."""
    rows = db.query(Transcript.linking_status, func.count(Transcript.transcript_id)).group_by(Transcript.linking_status).all()
    counts = {status.value: 0 for status in LinkingStatus}
    for status, count in rows:
        counts[status] = count
    return {
        "transcripts": counts,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
