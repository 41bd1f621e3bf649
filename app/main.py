import os

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session

from app.config import settings
from app.database import Base, engine, get_db
from app.logging_config import get_logger, setup_logging
from app.models import Client, LinkingAttempt, Transcript
from app.routers import fireflies_webhook, linking, telegram_webhook

setup_logging(settings.log_level)

logger = get_logger("main")

app = FastAPI(
    title="Transcript Linker",
    description="Links meeting transcripts to clients: email match, language model, then a human in Telegram",
    version="0.1.0",
)

cors_env = os.environ.get("CORS_ALLOW_ORIGINS", "*")
cors_origins = [origin.strip() for origin in cors_env.split(",") if origin.strip()]
if not cors_origins:
    cors_origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(fireflies_webhook.router)
app.include_router(telegram_webhook.router)
app.include_router(linking.router)


@app.on_event("startup")
def create_tables() -> None:
    if not settings.create_tables:
        return
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables ensured")


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/db-check")
def db_check(db: Session = Depends(get_db)):
    return {
        "status": "ok",
        "clients": db.query(Client).count(),
        "transcripts": db.query(Transcript).count(),
        "linking_attempts": db.query(LinkingAttempt).count(),
    }
