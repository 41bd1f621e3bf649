import json
import os
from datetime import datetime, timezone
from unittest.mock import Mock

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("CREATE_TABLES", "false")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.config import ResolutionConfig
from app.database import Base
from app.models import AccountSettings, Client, Transcript
from app.services.llm import LLMProvider, LLMResponse
from app.services.telegram_service import TelegramService

OWNER = "owner@agency.io"


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db_session(engine):
    """Real SQLAlchemy session over in-memory SQLite."""
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    yield session
    session.close()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def config():
    return ResolutionConfig(
        app_base_url="https://app.example.com",
        telegram_chat_id="-1001",
    )


@pytest.fixture
def telegram():
    """TelegramService mock whose sends succeed."""
    service = Mock(spec=TelegramService)
    service.send_message.return_value = {"ok": True, "result": {"message_id": 42}}
    service.answer_callback_query.return_value = {"ok": True}
    service.edit_reply_markup.return_value = {"ok": True}
    return service


@pytest.fixture
def make_llm():
    """Build an LLM provider mock answering with the given verdict."""

    def _make(verdict=None, content=None, side_effect=None):
        llm = Mock(spec=LLMProvider)
        if side_effect is not None:
            llm.generate.side_effect = side_effect
        else:
            body = content if content is not None else json.dumps(verdict or {})
            llm.generate.return_value = LLMResponse(content=body, model="test-model")
        return llm

    return _make


@pytest.fixture
def make_client(db_session):
    def _make(business_name, business_email=None, owner_email=OWNER, **kwargs):
        client = Client(
            owner_email=owner_email,
            business_name=business_name,
            business_email=business_email,
            business_emails=kwargs.pop("business_emails", []),
            created_at=datetime.now(timezone.utc),
            **kwargs,
        )
        db_session.add(client)
        db_session.commit()
        return client

    return _make


@pytest.fixture
def make_transcript(db_session):
    def _make(transcript_id="tr-1", participants=None, owner_email=OWNER, **kwargs):
        transcript = Transcript(
            transcript_id=transcript_id,
            owner_email=owner_email,
            meeting_id=transcript_id,
            title=kwargs.pop("title", "Weekly sync"),
            date=kwargs.pop("date", datetime(2024, 5, 1, 15, 0, tzinfo=timezone.utc)),
            participants=participants or [],
            transcript=kwargs.pop("transcript", "We talked about the spring campaign."),
            linking_status=kwargs.pop("linking_status", "unlinked"),
            version=0,
            **kwargs,
        )
        db_session.add(transcript)
        db_session.commit()
        return transcript

    return _make


@pytest.fixture
def make_account(db_session):
    def _make(owner_email=OWNER, **kwargs):
        account = AccountSettings(owner_email=owner_email, **kwargs)
        db_session.add(account)
        db_session.commit()
        return account

    return _make
