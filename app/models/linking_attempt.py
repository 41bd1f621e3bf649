import uuid

from sqlalchemy import Column, DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from app.database import Base


class LinkingAttempt(Base):
    """Append-only ledger entry: one resolution stage's outcome for one transcript."""

    __tablename__ = "linking_attempts"
    __table_args__ = (UniqueConstraint("transcript_id", "sequence", name="uq_linking_attempt_sequence"),)

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    transcript_id = Column(String(128), ForeignKey("transcripts.transcript_id"), nullable=False, index=True)
    sequence = Column(Integer, nullable=False)
    stage = Column(Text, nullable=False)  # auto, ai, telegram, manual
    outcome = Column(Text, nullable=False)  # success, no_match, error
    timestamp = Column(DateTime(timezone=True), nullable=False)
    confidence = Column(Float)
    client_id = Column(String(36))
    reason = Column(Text)

    transcript = relationship("Transcript", back_populates="attempts")
