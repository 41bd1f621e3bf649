"""Read/write access to an owner's client records used as linking candidates."""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from app.logging_config import get_logger
from app.models import AccountSettings, Client
from app.services.normalization import normalize_email, normalize_email_set
from app.services.result import Result

logger = get_logger("candidate_service")


def list_clients_for_owner(db: Session, owner_email: str) -> list[Client]:
    return (
        db.query(Client)
        .filter(Client.owner_email == owner_email)
        .order_by(Client.business_name)
        .all()
    )


def get_client(db: Session, client_id: str) -> Optional[Client]:
    return db.query(Client).filter(Client.id == client_id).first()


def resolve_client_by_id(db: Session, owner_email: str, client_id: str) -> Optional[Client]:
    """Client by id, only if it belongs to the owner."""
    client = get_client(db, client_id)
    if not client or client.owner_email != owner_email:
        return None
    return client


def resolve_client_by_email(db: Session, owner_email: str, email: str) -> Optional[Client]:
    """Client of this owner whose known emails contain the given address."""
    normalized = normalize_email(email)
    if not normalized:
        return None
    for client in list_clients_for_owner(db, owner_email):
        if normalized in client.known_emails():
            return client
    return None


def add_client_email(db: Session, client: Client, email: str) -> Result[list[str]]:
    """Append an email to the client's extra known emails (deduplicated)."""
    normalized = normalize_email(email)
    if not normalized or "@" not in normalized:
        return Result.failure(f"Not an email address: {email!r}", "invalid_email")

    if client.has_email(normalized):
        return Result.success(list(client.business_emails or []))

    # Reassign rather than mutate so the JSON column is flagged dirty
    client.business_emails = normalize_email_set([*(client.business_emails or []), normalized])
    client.updated_at = datetime.now(timezone.utc)
    db.flush()

    logger.info(
        "Client email learned",
        extra={"context": {"client_id": client.id, "email": normalized}},
    )
    return Result.success(list(client.business_emails))


def get_account_settings(db: Session, owner_email: str) -> Optional[AccountSettings]:
    return db.query(AccountSettings).filter(AccountSettings.owner_email == owner_email).first()
