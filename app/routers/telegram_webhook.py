import hmac
import json
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from pydantic import ValidationError
from sqlalchemy.orm import Session

from app.config import ResolutionConfig, settings
from app.database import get_db
from app.logging_config import get_logger
from app.schemas.telegram import TelegramUpdate, TelegramWebhookInfo, TelegramWebhookResponse
from app.services.escalation_service import get_telegram_service
from app.services.reply_service import HELP_TEXT, handle_email_suggestion_callback, process_linking_reply
from app.services.telegram_service import TelegramService

logger = get_logger("telegram_webhook")

router = APIRouter(prefix="/telegram", tags=["telegram"])

EMAIL_ACTIONS = {"addemail", "skipemail"}


async def parse_telegram_update(request: Request) -> Optional[dict]:
    """
    Parse Telegram update with tolerant decoding to avoid utf-8 crashes.
    Returns dict or None.
    """
    try:
        return await request.json()
    except Exception as e:
        logger.warning(f"Standard request.json() failed: {e}, fallback decoding")

    raw = await request.body()
    for enc in ("utf-8", "latin-1"):
        try:
            decoded = raw.decode(enc, errors="replace")
            return json.loads(decoded)
        except ValueError:
            continue

    logger.error("Failed to decode Telegram webhook payload after fallbacks")
    return None


def get_telegram() -> Optional[TelegramService]:
    return get_telegram_service()


def _require_webhook_secret(
    secret_token: Optional[str] = Header(default=None, alias="X-Telegram-Bot-Api-Secret-Token"),
) -> None:
    expected = settings.telegram_webhook_secret
    if not expected:
        return
    if not secret_token or not hmac.compare_digest(secret_token.encode("utf-8"), expected.encode("utf-8")):
        logger.warning("Telegram webhook call with a bad secret token")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid secret token")


def _is_escalation_chat(chat_id: int) -> bool:
    """Only the configured escalation chat may resolve transcripts, when one is configured."""
    if not settings.telegram_chat_id:
        return True
    return str(chat_id) == str(settings.telegram_chat_id)


@router.post(
    "/webhook",
    response_model=TelegramWebhookResponse,
    dependencies=[Depends(_require_webhook_secret)],
)
async def handle_telegram_webhook(
    request: Request,
    db: Session = Depends(get_db),
    telegram: Optional[TelegramService] = Depends(get_telegram),
):
    """
    Handle Telegram webhook updates:
    - Replies to linking notifications -> conversational resolver
    - Callback queries (email learning buttons) -> add or skip email
    """
    try:
        body = await parse_telegram_update(request)
        if body is None:
            return TelegramWebhookResponse(ok=False, message="Invalid telegram payload")

        logger.debug(f"Telegram webhook received: {body}")

        try:
            update = TelegramUpdate.model_validate(body)
        except ValidationError as e:
            logger.warning(f"Unrecognised Telegram update: {e}")
            return TelegramWebhookResponse(ok=True, message="Ignored")

        if update.callback_query:
            return handle_callback_query(update, db, telegram)

        message = update.message
        if not message:
            return TelegramWebhookResponse(ok=True, message="No message")

        if message.from_user and message.from_user.is_bot:
            return TelegramWebhookResponse(ok=True, message="Ignoring bot message")

        if not _is_escalation_chat(message.chat.id):
            logger.warning("Message from unexpected chat", extra={"context": {"chat_id": message.chat.id}})
            return TelegramWebhookResponse(ok=True, message="Ignored chat")

        if not message.reply_to_message:
            if telegram is not None:
                telegram.send_message(chat_id=str(message.chat.id), text=HELP_TEXT)
            return TelegramWebhookResponse(ok=True, message="Help sent")

        config = ResolutionConfig.from_settings(settings)
        outcome = process_linking_reply(
            db=db,
            chat_id=str(message.chat.id),
            replied_text=message.replied_text,
            text=message.text,
            config=config,
            telegram=telegram,
        )
        logger.info(
            "Linking reply handled",
            extra={"context": {"action": outcome.action, "transcript_id": outcome.transcript_id}},
        )
        return TelegramWebhookResponse(ok=True, message=outcome.action)

    except Exception as e:
        db.rollback()
        logger.error(f"Telegram webhook error: {e}", exc_info=True)
        return TelegramWebhookResponse(ok=False, message="Internal error")


def handle_callback_query(
    update: TelegramUpdate,
    db: Session,
    telegram: Optional[TelegramService],
) -> TelegramWebhookResponse:
    """Handle email learning buttons: addemail_<id>, skipemail_<id>."""
    callback = update.callback_query

    if not callback.data:
        return TelegramWebhookResponse(ok=False, message="No callback data")

    # Parse callback_data: "action_suggestion_id"
    try:
        first_underscore = callback.data.index("_")
        action = callback.data[:first_underscore]
        suggestion_id = callback.data[first_underscore + 1 :]
    except ValueError:
        return TelegramWebhookResponse(ok=False, message=f"Invalid callback data: {callback.data}")

    logger.info(f"Callback: action={action}, suggestion_id={suggestion_id}")

    if action not in EMAIL_ACTIONS:
        if telegram is not None:
            telegram.answer_callback_query(callback.id, f"❓ Unknown action: {action}")
        return TelegramWebhookResponse(ok=False, message=f"Unknown action: {action}")

    result = handle_email_suggestion_callback(db, action, suggestion_id)

    if telegram is not None:
        text = result.value if result.ok else f"❌ {result.error}"
        telegram.answer_callback_query(callback.id, text)
        if result.ok and callback.message:
            telegram.edit_reply_markup(str(callback.message.chat.id), callback.message.message_id)

    return TelegramWebhookResponse(ok=result.ok, message=result.value if result.ok else result.error)


@router.get("/webhook", response_model=TelegramWebhookInfo)
def get_webhook_status(telegram: Optional[TelegramService] = Depends(get_telegram)):
    if telegram is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="TELEGRAM_BOT_TOKEN not configured",
        )

    info = telegram.get_webhook_info()
    if not info.get("ok") and info.get("error"):
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=info["error"])

    result = info.get("result") or {}
    return TelegramWebhookInfo(
        webhook_configured=bool(info.get("ok") and result.get("url")),
        webhook_url=result.get("url"),
        pending_updates=result.get("pending_update_count") or 0,
        last_error=result.get("last_error_message"),
        last_error_date=result.get("last_error_date"),
    )
