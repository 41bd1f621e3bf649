from sqlalchemy import Column, DateTime, Text

from app.database import Base


class AccountSettings(Base):
    __tablename__ = "account_settings"

    owner_email = Column(Text, primary_key=True)
    webhook_secret = Column(Text)
    fireflies_api_key = Column(Text)
    llm_api_key = Column(Text)
    created_at = Column(DateTime(timezone=True))
    updated_at = Column(DateTime(timezone=True))
