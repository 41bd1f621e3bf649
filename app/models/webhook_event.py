import uuid

from sqlalchemy import JSON, Column, DateTime, String, Text

from app.database import Base


class WebhookEvent(Base):
    __tablename__ = "webhook_events"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    owner_email = Column(Text, nullable=False, index=True)
    event_type = Column(Text)
    meeting_id = Column(String(128), index=True)
    payload = Column(JSON)
    received_at = Column(DateTime(timezone=True), nullable=False)
