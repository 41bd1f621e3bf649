import html
from datetime import datetime
from typing import Optional

import httpx

from app.logging_config import get_logger

logger = get_logger("telegram_service")

PREVIEW_LENGTH = 500


class TelegramService:
    """Service for talking to the Telegram Bot API."""

    BASE_URL = "https://api.telegram.org/bot{token}"

    def __init__(self, bot_token: str, timeout_seconds: float = 10.0):
        self.bot_token = bot_token
        self.base_url = self.BASE_URL.format(token=bot_token)
        self.timeout_seconds = timeout_seconds

    def _make_request(self, method: str, data: Optional[dict] = None) -> dict:
        """Make request to Telegram API. Never raises; failures come back as ok=False."""
        url = f"{self.base_url}/{method}"
        try:
            with httpx.Client(timeout=self.timeout_seconds) as client:
                response = client.post(url, json=data or {})
                payload = response.json()
        except Exception as e:
            logger.error(f"Telegram API error: {e}", extra={"context": {"method": method}})
            return {"ok": False, "error": str(e)}

        if not payload.get("ok"):
            logger.warning(
                f"Telegram API returned error: {payload.get('description')}",
                extra={"context": {"method": method, "status_code": response.status_code}},
            )
        return payload

    def send_message(
        self,
        chat_id: str,
        text: str,
        reply_markup: Optional[dict] = None,
        parse_mode: Optional[str] = "HTML",
    ) -> dict:
        """Send message to Telegram chat. Callers escape interpolated text with html.escape."""
        data = {
            "chat_id": chat_id,
            "text": text,
            "disable_web_page_preview": True,
        }
        if parse_mode:
            data["parse_mode"] = parse_mode
        if reply_markup:
            data["reply_markup"] = reply_markup
        return self._make_request("sendMessage", data)

    def answer_callback_query(self, callback_query_id: str, text: Optional[str] = None) -> dict:
        data = {"callback_query_id": callback_query_id}
        if text:
            data["text"] = text
        return self._make_request("answerCallbackQuery", data)

    def edit_reply_markup(self, chat_id: str, message_id: int, reply_markup: Optional[dict] = None) -> dict:
        """Replace (or with None, remove) the inline keyboard of a sent message."""
        data = {
            "chat_id": chat_id,
            "message_id": message_id,
            "reply_markup": reply_markup or {"inline_keyboard": []},
        }
        return self._make_request("editMessageReplyMarkup", data)

    def get_webhook_info(self) -> dict:
        return self._make_request("getWebhookInfo")


def build_email_learning_buttons(suggestion_id: str) -> dict:
    """Build inline keyboard for an email suggestion."""
    return {
        "inline_keyboard": [
            [
                {"text": "Add email ✅", "callback_data": f"addemail_{suggestion_id}"},
                {"text": "Skip ❌", "callback_data": f"skipemail_{suggestion_id}"},
            ]
        ]
    }


def _format_date(value: Optional[datetime]) -> str:
    if value is None:
        return "Unknown"
    return value.strftime("%Y-%m-%d %H:%M %Z").strip()


def format_linking_notification(
    transcript_id: str,
    title: str,
    date: Optional[datetime],
    participants: Optional[list[str]],
    status: Optional[str],
    body: Optional[str],
    manual_link: Optional[str] = None,
) -> str:
    """Format the escalation message asking a human which client a transcript belongs to.

    Dynamic values are HTML-escaped.
    """
    participant_list = ", ".join(p for p in (participants or []) if p) or "None listed"

    body = body or ""
    snippet = f"{body[:PREVIEW_LENGTH]}…" if len(body) > PREVIEW_LENGTH else body

    lines = [
        "🤖 <b>Transcript Linking Assistance Required</b>",
        "",
        f"<b>Transcript ID:</b> {html.escape(transcript_id)}",
        f"<b>Title:</b> {html.escape(title or '')}",
        f"<b>Date:</b> {_format_date(date)}",
        f"<b>Participants:</b> {html.escape(participant_list)}",
        f"<b>Current Status:</b> {html.escape(status or 'unlinked')}",
        "",
    ]
    if manual_link:
        lines.append(f"Manual link: {html.escape(manual_link)}")
    lines.extend(
        [
            "Reply to this message with the correct client name or email "
            "(e.g., <code>Best Cleaners Inc</code> or <code>info@acme.com</code>).",
            "If we should hold off, reply with <code>manual</code> and we'll wait for more info.",
            "",
            f"Preview:\n{html.escape(snippet)}",
        ]
    )
    return "\n".join(lines)


def format_email_suggestion(email: str, business_name: str) -> str:
    return (
        f"📧 <b>{html.escape(email)}</b> took part in a meeting linked to <b>{html.escape(business_name)}</b>.\n\n"
        "Add it to the client's known emails so future transcripts link automatically?"
    )
