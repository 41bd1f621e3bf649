from app.schemas.fireflies import FirefliesWebhookPayload, FirefliesWebhookResponse
from app.schemas.linking import (
    LinkingAttemptResponse,
    LinkingHistoryResponse,
    LinkRequest,
    ResolutionResponse,
    TranscriptLinkResponse,
    UnlinkRequest,
)
from app.schemas.telegram import TelegramUpdate, TelegramWebhookResponse

__all__ = [
    "FirefliesWebhookPayload",
    "FirefliesWebhookResponse",
    "LinkRequest",
    "LinkingAttemptResponse",
    "LinkingHistoryResponse",
    "ResolutionResponse",
    "TelegramUpdate",
    "TelegramWebhookResponse",
    "TranscriptLinkResponse",
    "UnlinkRequest",
]
