"""Operator alerts posted to the ops Telegram chat."""

import html
from typing import Optional

import httpx

from app.config import settings
from app.logging_config import get_logger

logger = get_logger("alert_service")

ALERT_BOT_TOKEN = settings.alert_bot_token or settings.telegram_bot_token
ALERT_CHAT_ID = settings.alert_chat_id
ALERT_TIMEOUT_SECONDS = 10

LEVEL_EMOJI = {"INFO": "ℹ️", "WARNING": "⚠️", "ERROR": "❌", "CRITICAL": "🔥"}


def send_alert(level: str, message: str, context: Optional[dict] = None) -> bool:
    """Send alert to Telegram.

    Args:
        level: INFO, WARNING, ERROR, CRITICAL
        message: Alert message
        context: Optional context dict (transcript id, owner, ...)

    Returns:
        True if sent successfully
    """
    if not ALERT_BOT_TOKEN or not ALERT_CHAT_ID:
        logger.warning(f"Alert not configured: {level} - {message}", extra={"context": context or {}})
        return False

    text = f"{LEVEL_EMOJI.get(level, '📢')} <b>{level}</b> [transcript-linker]\n\n{html.escape(message)}"

    if context:
        context_str = "\n".join(f"  {k}: {v}" for k, v in context.items())
        text += f"\n\n<pre>{html.escape(context_str)}</pre>"

    try:
        with httpx.Client(timeout=ALERT_TIMEOUT_SECONDS) as client:
            response = client.post(
                f"https://api.telegram.org/bot{ALERT_BOT_TOKEN}/sendMessage",
                json={"chat_id": ALERT_CHAT_ID, "text": text, "parse_mode": "HTML"},
            )
            return response.status_code == 200
    except Exception as e:
        logger.error(f"Failed to send alert: {e}")
        return False


def alert_error(message: str, context: Optional[dict] = None) -> bool:
    """Shortcut for ERROR level alert."""
    return send_alert("ERROR", message, context)


def alert_warning(message: str, context: Optional[dict] = None) -> bool:
    """Shortcut for WARNING level alert."""
    return send_alert("WARNING", message, context)
