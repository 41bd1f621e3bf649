from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict


class LinkRequest(BaseModel):
    client_id: str
    reason: Optional[str] = None


class UnlinkRequest(BaseModel):
    reason: Optional[str] = None


class LinkingAttemptResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    sequence: int
    stage: str
    outcome: str
    timestamp: datetime
    confidence: Optional[float] = None
    client_id: Optional[str] = None
    reason: Optional[str] = None


class TranscriptLinkResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    transcript_id: str
    owner_email: str
    title: str
    date: Optional[datetime] = None
    linking_status: str
    client_id: Optional[str] = None
    last_link_attempt_at: Optional[datetime] = None


class ResolutionResponse(BaseModel):
    transcript_id: str
    status: str
    client_id: Optional[str] = None
    confidence: Optional[float] = None
    reason: Optional[str] = None
    notification: Optional[str] = None


class LinkingHistoryResponse(BaseModel):
    transcript: TranscriptLinkResponse
    attempts: list[LinkingAttemptResponse]
