from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from app.database import Base


class Transcript(Base):
    __tablename__ = "transcripts"

    transcript_id = Column(String(128), primary_key=True)
    owner_email = Column(Text, nullable=False, index=True)
    meeting_id = Column(String(128), index=True)
    title = Column(Text, nullable=False, default="Untitled Meeting")
    date = Column(DateTime(timezone=True))
    duration = Column(Integer)
    participants = Column(JSON, nullable=False, default=list)
    transcript = Column(Text, nullable=False, default="")
    notes = Column(Text)
    linking_status = Column(Text, nullable=False, default="unlinked", index=True)
    client_id = Column(String(36), ForeignKey("clients.id"), index=True)
    last_link_attempt_at = Column(DateTime(timezone=True))
    synced_at = Column(DateTime(timezone=True))
    # Bumped on every ledger append; guards the read-decide-write of linking_status
    version = Column(Integer, nullable=False, default=0)

    client = relationship("Client", back_populates="transcripts")
    attempts = relationship(
        "LinkingAttempt",
        back_populates="transcript",
        order_by="LinkingAttempt.sequence",
    )
