from app.models.account_settings import AccountSettings
from app.models.client import Client
from app.models.email_suggestion import EmailSuggestion
from app.models.linking_attempt import LinkingAttempt
from app.models.transcript import Transcript
from app.models.webhook_event import WebhookEvent

__all__ = [
    "AccountSettings",
    "Client",
    "EmailSuggestion",
    "LinkingAttempt",
    "Transcript",
    "WebhookEvent",
]
