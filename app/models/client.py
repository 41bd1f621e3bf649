import uuid

from sqlalchemy import JSON, Column, DateTime, String, Text
from sqlalchemy.orm import relationship

from app.database import Base
from app.services.normalization import normalize_email, normalize_email_set


class Client(Base):
    __tablename__ = "clients"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    owner_email = Column(Text, nullable=False, index=True)
    business_name = Column(Text, nullable=False)
    business_email = Column(Text, index=True)
    business_emails = Column(JSON, nullable=False, default=list)
    contact_first_name = Column(Text)
    contact_last_name = Column(Text)
    status = Column(Text, default="active")  # active, paused, inactive
    notes = Column(Text)
    created_at = Column(DateTime(timezone=True))
    updated_at = Column(DateTime(timezone=True))

    transcripts = relationship("Transcript", back_populates="client")

    @property
    def contact_name(self) -> str:
        return f"{self.contact_first_name or ''} {self.contact_last_name or ''}".strip()

    def known_emails(self) -> list[str]:
        """Primary email followed by the extra known emails, normalized and deduplicated."""
        return normalize_email_set([self.business_email, *(self.business_emails or [])])

    def has_email(self, email: str) -> bool:
        return normalize_email(email) in self.known_emails()
