"""Fireflies transcript fetch, storage, and the background ingest task."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional

import httpx
from sqlalchemy.orm import Session

from app.config import ResolutionConfig, settings
from app.database import SessionLocal
from app.logging_config import get_logger
from app.models import Transcript, WebhookEvent
from app.services.alert_service import alert_error, alert_warning
from app.services.candidate_service import get_account_settings
from app.services.errors import ConfigurationError, FirefliesAPIError, LinkingError
from app.services.ledger_service import get_transcript
from app.services.resolution_service import escalate, resolve_transcript

logger = get_logger("fireflies_service")

COMPLETION_EVENTS = {"transcription completed", "transcription.completed"}

TRANSCRIPT_QUERY = """
query GetTranscript($id: String!) {
  transcript(id: $id) {
    id
    title
    date
    duration
    participants
    sentences {
      text
      speaker_name
    }
    summary {
      notes
    }
  }
}
"""


@dataclass
class FirefliesTranscript:
    id: str
    title: str
    date: Optional[datetime]
    duration: Optional[int] = None
    participants: list[str] = field(default_factory=list)
    transcript: str = ""
    notes: Optional[str] = None


def is_completion_event(event_type: Optional[str]) -> bool:
    return (event_type or "").strip().lower() in COMPLETION_EVENTS


def parse_fireflies_date(value) -> Optional[datetime]:
    """Fireflies sends epoch milliseconds; older payloads used ISO strings."""
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    text = str(value).strip()
    if text.isdigit():
        return datetime.fromtimestamp(int(text) / 1000, tz=timezone.utc)
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        logger.warning(f"Unparseable Fireflies date: {text}")
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


class FirefliesClient:
    """Minimal Fireflies GraphQL client."""

    def __init__(self, api_key: str, api_url: Optional[str] = None, timeout_seconds: Optional[float] = None):
        self.api_key = api_key
        self.api_url = api_url or settings.fireflies_api_url
        self.timeout_seconds = timeout_seconds or settings.fireflies_timeout_seconds

    def _error_message(self, response: httpx.Response) -> str:
        message = f"Fireflies API error: {response.status_code}"
        try:
            payload = response.json()
        except ValueError:
            return f"{message} {response.text[:200]}".strip()
        if isinstance(payload, dict):
            if payload.get("message"):
                return f"Fireflies API error: {payload['message']}"
            errors = payload.get("errors") or []
            if errors:
                return f"Fireflies API error: {errors[0].get('message')}"
        return message

    def fetch_transcript(self, transcript_id: str) -> Optional[FirefliesTranscript]:
        """Fetch one transcript. Returns None when Fireflies does not know the id."""
        try:
            with httpx.Client(timeout=self.timeout_seconds) as client:
                response = client.post(
                    self.api_url,
                    headers={
                        "Authorization": f"Bearer {self.api_key}",
                        "Content-Type": "application/json",
                    },
                    json={"query": TRANSCRIPT_QUERY, "variables": {"id": transcript_id}},
                )
        except httpx.HTTPError as exc:
            raise FirefliesAPIError(f"Fireflies request failed: {exc}") from exc

        if response.status_code != 200:
            raise FirefliesAPIError(self._error_message(response))

        data = response.json()
        if data.get("errors"):
            raise FirefliesAPIError(f"Fireflies API GraphQL error: {data['errors'][0].get('message')}")

        raw = (data.get("data") or {}).get("transcript")
        if not raw:
            return None

        sentences = raw.get("sentences") or []
        summary = raw.get("summary") or {}
        return FirefliesTranscript(
            id=raw.get("id") or transcript_id,
            title=raw.get("title") or "Untitled Meeting",
            date=parse_fireflies_date(raw.get("date")),
            duration=raw.get("duration"),
            participants=[p for p in (raw.get("participants") or []) if p],
            transcript=" ".join(s.get("text", "") for s in sentences if s.get("text")),
            notes=summary.get("notes"),
        )


def get_fireflies_client(db: Session, owner_email: str) -> FirefliesClient:
    account = get_account_settings(db, owner_email)
    api_key = (account.fireflies_api_key if account else None) or settings.fireflies_api_key
    if not api_key:
        raise ConfigurationError(f"Fireflies API key is not configured for {owner_email}.")
    return FirefliesClient(api_key)


def store_webhook_event(
    db: Session,
    owner_email: str,
    event_type: Optional[str],
    meeting_id: str,
    payload: dict,
) -> WebhookEvent:
    event = WebhookEvent(
        owner_email=owner_email,
        event_type=event_type,
        meeting_id=meeting_id,
        payload=payload,
        received_at=datetime.now(timezone.utc),
    )
    db.add(event)
    db.commit()
    return event


def store_transcript(db: Session, owner_email: str, meeting_id: str, fetched: FirefliesTranscript) -> Transcript:
    """Insert or refresh a transcript. Linking fields are never touched here."""
    now = datetime.now(timezone.utc)
    transcript = get_transcript(db, fetched.id)

    if transcript is None:
        transcript = Transcript(
            transcript_id=fetched.id,
            owner_email=owner_email,
            meeting_id=meeting_id,
            linking_status="unlinked",
            version=0,
        )
        db.add(transcript)

    transcript.title = fetched.title
    transcript.date = fetched.date
    transcript.duration = fetched.duration
    transcript.participants = fetched.participants
    transcript.transcript = fetched.transcript
    transcript.notes = fetched.notes
    transcript.synced_at = now
    db.commit()

    logger.info(
        "Transcript stored",
        extra={"context": {"transcript_id": fetched.id, "owner": owner_email, "participants": len(fetched.participants)}},
    )
    return transcript


def ingest_and_resolve(
    owner_email: str,
    meeting_id: str,
    session_factory: Callable[[], Session] = SessionLocal,
) -> None:
    """Background task: fetch the transcript behind a webhook, store it, resolve it.

    Runs after the webhook has answered, in its own session. Failures are logged
    and alerted, never raised.
    """
    db = session_factory()
    config = ResolutionConfig.from_settings(settings)
    try:
        fetched = get_fireflies_client(db, owner_email).fetch_transcript(meeting_id)
        if fetched is None:
            logger.warning(
                "Transcript not found in Fireflies",
                extra={"context": {"meeting_id": meeting_id, "owner": owner_email}},
            )
            return

        transcript = store_transcript(db, owner_email, meeting_id, fetched)

        try:
            outcome = resolve_transcript(db, transcript.transcript_id, config)
        except ConfigurationError as exc:
            # No model credential: a human can still answer
            db.rollback()
            alert_warning(str(exc), {"transcript_id": transcript.transcript_id, "owner": owner_email})
            transcript = get_transcript(db, fetched.id)
            outcome = escalate(db, transcript, config, None, reason=str(exc))

        logger.info(
            "Webhook transcript resolved",
            extra={"context": {"transcript_id": outcome.transcript_id, "status": outcome.status}},
        )
    except ConfigurationError as exc:
        logger.error(f"Ingest skipped: {exc}", extra={"context": {"meeting_id": meeting_id}})
        alert_error(str(exc), {"meeting_id": meeting_id, "owner": owner_email})
    except FirefliesAPIError as exc:
        logger.error(f"Fireflies fetch failed: {exc}", extra={"context": {"meeting_id": meeting_id}})
        alert_error("Fireflies fetch failed", {"meeting_id": meeting_id, "error": str(exc)})
    except LinkingError as exc:
        db.rollback()
        logger.error(f"Resolution failed: {exc}", extra={"context": {"meeting_id": meeting_id}}, exc_info=True)
    except Exception as exc:
        db.rollback()
        logger.error(f"Ingest failed: {exc}", extra={"context": {"meeting_id": meeting_id}}, exc_info=True)
        alert_error("Transcript ingest failed", {"meeting_id": meeting_id, "error": str(exc)})
    finally:
        db.close()
