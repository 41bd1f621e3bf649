from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class FirefliesWebhookPayload(BaseModel):
    """Fireflies webhook notification. Field names vary between Fireflies versions."""

    model_config = ConfigDict(extra="allow")

    meeting_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("meetingId", "meeting_id"))
    event_type: Optional[str] = Field(default=None, validation_alias=AliasChoices("eventType", "event", "type"))


class FirefliesWebhookResponse(BaseModel):
    ok: bool
    message: Optional[str] = None
