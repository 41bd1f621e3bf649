import json
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request, status
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.database import get_db
from app.logging_config import get_logger
from app.models import AccountSettings
from app.schemas.fireflies import FirefliesWebhookPayload, FirefliesWebhookResponse
from app.services.alert_service import alert_warning
from app.services.candidate_service import get_account_settings
from app.services.fireflies_service import ingest_and_resolve, is_completion_event, store_webhook_event
from app.services.signature_service import SignatureCheck, check_webhook_signature

logger = get_logger("fireflies_webhook")

router = APIRouter(prefix="/fireflies", tags=["fireflies"])


def _get_webhook_secret(account: Optional[AccountSettings]) -> Optional[str]:
    if not account or not account.webhook_secret:
        return None
    cleaned = str(account.webhook_secret).strip()
    return cleaned or None


@router.post("/webhook", response_model=FirefliesWebhookResponse)
async def handle_fireflies_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    user: Optional[str] = Query(default=None),
    db: Session = Depends(get_db),
):
    """
    Receive a Fireflies notification:
    - verify the HMAC signature against the owner's webhook secret
    - store the event
    - fetch and resolve the transcript in the background for completion events
    """
    owner_email = (user or "").strip()
    if not owner_email:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing user parameter in query string")

    raw_body = await request.body()
    if not raw_body:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Empty request body")

    try:
        account = get_account_settings(db, owner_email)
    except SQLAlchemyError as e:
        logger.error(f"Failed to read webhook config for {owner_email}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to retrieve webhook configuration",
        )

    check = check_webhook_signature(raw_body, request.headers, _get_webhook_secret(account))
    if check == SignatureCheck.MISSING:
        logger.warning("Fireflies webhook without signature", extra={"context": {"owner": owner_email}})
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing signature header")
    if check == SignatureCheck.INVALID:
        logger.warning("Fireflies webhook signature invalid", extra={"context": {"owner": owner_email}})
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook signature")
    if check == SignatureCheck.UNCONFIGURED:
        alert_warning("Fireflies webhook secret missing", {"owner": owner_email})

    try:
        body = json.loads(raw_body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON payload")

    if not isinstance(body, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing meetingId in webhook payload")

    try:
        payload = FirefliesWebhookPayload.model_validate(body)
    except ValidationError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing meetingId in webhook payload")

    if not payload.meeting_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing meetingId in webhook payload")

    try:
        store_webhook_event(db, owner_email, payload.event_type, payload.meeting_id, body)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to store webhook for {owner_email}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to store webhook payload",
        )

    logger.info(
        "Fireflies webhook accepted",
        extra={
            "context": {
                "owner": owner_email,
                "meeting_id": payload.meeting_id,
                "event_type": payload.event_type,
                "signature": check.value,
            }
        },
    )

    if is_completion_event(payload.event_type):
        background_tasks.add_task(ingest_and_resolve, owner_email, payload.meeting_id)

    return FirefliesWebhookResponse(ok=True)
