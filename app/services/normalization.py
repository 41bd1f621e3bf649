import re
from typing import Iterable, Optional

# Shared mailbox providers: a common domain says nothing about who a participant works for.
PUBLIC_EMAIL_DOMAINS = {
    "gmail.com",
    "googlemail.com",
    "outlook.com",
    "hotmail.com",
    "live.com",
    "yahoo.com",
    "icloud.com",
    "me.com",
    "aol.com",
    "proton.me",
    "protonmail.com",
}


def normalize_email(email: Optional[str]) -> str:
    if not email:
        return ""
    return email.strip().lower()


def normalize_email_set(emails: Iterable[Optional[str]]) -> list[str]:
    """Normalize emails, dropping blanks and duplicates while keeping first-seen order."""
    normalized: list[str] = []
    seen: set[str] = set()
    for email in emails:
        value = normalize_email(email)
        if not value or value in seen:
            continue
        normalized.append(value)
        seen.add(value)
    return normalized


def normalize_key(value: Optional[str]) -> str:
    """Comparison key: lower-case ASCII letters and digits only."""
    if not value:
        return ""
    return re.sub(r"[^a-z0-9]", "", value.strip().lower())


def extract_domain(email: Optional[str]) -> Optional[str]:
    normalized = normalize_email(email)
    at_index = normalized.rfind("@")
    if at_index == -1:
        return None
    domain = normalized[at_index + 1 :].strip()
    return domain or None


def is_public_domain(domain: Optional[str]) -> bool:
    return bool(domain) and domain in PUBLIC_EMAIL_DOMAINS
