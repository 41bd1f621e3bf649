import uuid

from sqlalchemy import Column, DateTime, ForeignKey, String, Text

from app.database import Base


class EmailSuggestion(Base):
    """Participant email offered to the operator for adding to a client's known emails."""

    __tablename__ = "email_suggestions"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    transcript_id = Column(String(128), ForeignKey("transcripts.transcript_id"), nullable=False)
    client_id = Column(String(36), ForeignKey("clients.id"), nullable=False)
    email = Column(Text, nullable=False)
    status = Column(Text, nullable=False, default="pending")  # pending, accepted, skipped
    created_at = Column(DateTime(timezone=True), nullable=False)
    decided_at = Column(DateTime(timezone=True))
