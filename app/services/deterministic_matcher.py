from dataclasses import dataclass
from typing import Iterable, Optional

from app.models import Client
from app.services.normalization import extract_domain, is_public_domain, normalize_email


@dataclass
class MatchResult:
    client: Client
    confidence: float
    reason: str


def filter_external_participants(owner_email: str, participants: Iterable[Optional[str]]) -> list[str]:
    """Participants that are neither the owner nor on the owner's own (non-public) domain.

    Returned in the original order, normalized, without duplicates.
    """
    owner = normalize_email(owner_email)
    owner_domain = extract_domain(owner)
    skip_domain = owner_domain if owner_domain and not is_public_domain(owner_domain) else None

    external: list[str] = []
    for participant in participants:
        email = normalize_email(participant)
        if not email or email == owner or email in external:
            continue
        if skip_domain and extract_domain(email) == skip_domain:
            continue
        external.append(email)
    return external


def match_by_participant_emails(
    owner_email: str,
    participants: Optional[Iterable[Optional[str]]],
    clients: Iterable[Client],
) -> Optional[MatchResult]:
    """First exact participant-email hit against any client's known emails."""
    if not participants:
        return None

    clients = list(clients)
    known = [(client, set(client.known_emails())) for client in clients]

    for email in filter_external_participants(owner_email, participants):
        for client, emails in known:
            if email in emails:
                return MatchResult(
                    client=client,
                    confidence=1.0,
                    reason=f'Participant email "{email}" matches client business email.',
                )
    return None


def no_match_reason(owner_email: str, participants: Optional[Iterable[Optional[str]]]) -> str:
    if not participants or not filter_external_participants(owner_email, participants):
        return "Transcript contained no participant emails to evaluate."
    return "No matching client found for participant emails."
