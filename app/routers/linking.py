"""Operator API for transcript linking (dashboard and maintenance scripts)."""

from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status
from sqlalchemy.orm import Session

from app.config import ResolutionConfig, settings
from app.database import get_db
from app.logging_config import get_logger
from app.schemas.linking import (
    LinkingAttemptResponse,
    LinkingHistoryResponse,
    LinkRequest,
    ResolutionResponse,
    TranscriptLinkResponse,
    UnlinkRequest,
)
from app.services.errors import (
    ClientNotFoundError,
    ConcurrentResolutionError,
    ConfigurationError,
    TranscriptNotFoundError,
)
from app.services.health_service import check_linking_invariants, get_linking_health
from app.services.ledger_service import get_history, get_transcript
from app.services.linking_state import InvalidTransitionError
from app.services.resolution_service import (
    ResolutionOutcome,
    list_unlinked,
    manual_link,
    manual_unlink,
    resolve_transcript,
    resolve_unlinked_for_owner,
)

logger = get_logger("linking")

router = APIRouter(prefix="/linking", tags=["linking"])


def _require_admin_token(x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token")) -> None:
    expected = settings.admin_api_token
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="ADMIN_API_TOKEN not configured",
        )
    if not x_admin_token or x_admin_token != expected:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid admin token")


def get_resolution_config() -> ResolutionConfig:
    return ResolutionConfig.from_settings(settings)


def _to_response(outcome: ResolutionOutcome) -> ResolutionResponse:
    return ResolutionResponse(
        transcript_id=outcome.transcript_id,
        status=outcome.status,
        client_id=outcome.client_id,
        confidence=outcome.confidence,
        reason=outcome.reason,
        notification=outcome.notification.status if outcome.notification else None,
    )


@router.get("/health", dependencies=[Depends(_require_admin_token)])
def linking_health(heal: bool = False, db: Session = Depends(get_db)):
    """Status counts plus the ledger/projection consistency check."""
    return {
        **get_linking_health(db),
        "invariants": check_linking_invariants(db, heal=heal),
    }


@router.get("/unlinked", response_model=list[TranscriptLinkResponse], dependencies=[Depends(_require_admin_token)])
def unlinked_transcripts(owner: str = Query(...), db: Session = Depends(get_db)):
    return list_unlinked(db, owner)


@router.post(
    "/process-unlinked",
    response_model=list[ResolutionResponse],
    dependencies=[Depends(_require_admin_token)],
)
def process_unlinked(
    owner: str = Query(...),
    db: Session = Depends(get_db),
    config: ResolutionConfig = Depends(get_resolution_config),
):
    try:
        outcomes = resolve_unlinked_for_owner(db, owner, config)
    except ConfigurationError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    return [_to_response(outcome) for outcome in outcomes]


@router.post("/{transcript_id}/resolve", response_model=ResolutionResponse, dependencies=[Depends(_require_admin_token)])
def resolve(
    transcript_id: str,
    db: Session = Depends(get_db),
    config: ResolutionConfig = Depends(get_resolution_config),
):
    try:
        outcome = resolve_transcript(db, transcript_id, config)
    except TranscriptNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except ConfigurationError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    except ConcurrentResolutionError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return _to_response(outcome)


@router.post("/{transcript_id}/link", response_model=TranscriptLinkResponse, dependencies=[Depends(_require_admin_token)])
def link(transcript_id: str, request: LinkRequest, db: Session = Depends(get_db)):
    try:
        transcript = manual_link(db, transcript_id, request.client_id, request.reason)
    except (TranscriptNotFoundError, ClientNotFoundError) as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except (InvalidTransitionError, ConcurrentResolutionError) as e:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    logger.info("Transcript linked by operator", extra={"context": {"transcript_id": transcript_id}})
    return transcript


@router.post("/{transcript_id}/unlink", response_model=TranscriptLinkResponse, dependencies=[Depends(_require_admin_token)])
def unlink(transcript_id: str, request: Optional[UnlinkRequest] = None, db: Session = Depends(get_db)):
    try:
        transcript = manual_unlink(db, transcript_id, request.reason if request else None)
    except TranscriptNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except (InvalidTransitionError, ConcurrentResolutionError) as e:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    logger.info("Transcript unlinked by operator", extra={"context": {"transcript_id": transcript_id}})
    return transcript


@router.get(
    "/{transcript_id}/history",
    response_model=LinkingHistoryResponse,
    dependencies=[Depends(_require_admin_token)],
)
def history(transcript_id: str, db: Session = Depends(get_db)):
    transcript = get_transcript(db, transcript_id)
    if transcript is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Transcript not found: {transcript_id}")
    return LinkingHistoryResponse(
        transcript=TranscriptLinkResponse.model_validate(transcript),
        attempts=[LinkingAttemptResponse.model_validate(a) for a in get_history(db, transcript_id)],
    )
