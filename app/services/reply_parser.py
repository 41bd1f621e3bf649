"""Pure parsing of operator replies in the Telegram escalation chat.

Nothing here touches the database or the network. ``match_client_from_reply``
is versioned: bump REPLY_MATCHER_VERSION whenever scoring changes so ledger
reasons can be traced back to the rules that produced them.
"""

import re
from dataclasses import dataclass
from typing import Optional, Union

from app.config import DEFAULT_REPLY_TIER_CONFIDENCE, ResolutionConfig
from app.models import Client
from app.services.normalization import normalize_email, normalize_key

REPLY_MATCHER_VERSION = "2"

TRANSCRIPT_ID_PATTERNS = [
    re.compile(r"Transcript ID:\s*([A-Za-z0-9\-_]+)", re.IGNORECASE),
    re.compile(r"transcript[_\s]*id[:\s]*([A-Za-z0-9\-_]+)", re.IGNORECASE),
    # Legacy test transcripts were announced without a label
    re.compile(r"test-\d+-[a-z0-9]+", re.IGNORECASE),
]

FILLER_PREFIXES = [
    re.compile(r"^link\s+"),
    re.compile(r"^belongs\s+to\s+"),
    re.compile(r"^this\s+is\s+"),
    re.compile(r"^that\s+is\s+"),
    re.compile(r"^it'?s?\s+"),
]

TIER_EXACT_BUSINESS = 3.0
TIER_PARTIAL_BUSINESS = 2.0
TIER_EXACT_CONTACT = 2.0
TIER_PARTIAL_CONTACT = 1.5

EMAIL_MATCH_REASON = "Matched business email provided in Telegram reply."


@dataclass
class ReplyMatch:
    client: Client
    confidence: float
    reason: str
    rule: str


@dataclass
class AmbiguousMatch:
    candidates: list[Client]


def extract_transcript_id(source: Optional[str]) -> Optional[str]:
    if not source:
        return None
    for pattern in TRANSCRIPT_ID_PATTERNS:
        match = pattern.search(source)
        if match:
            return match.group(1) if match.groups() else match.group(0)
    return None


def is_manual_request(text: Optional[str]) -> bool:
    return "manual" in (text or "").lower()


def strip_filler(text: Optional[str]) -> str:
    """Lower-case the reply and drop one leading phrase like "link" or "belongs to"."""
    sanitized = (text or "").strip().lower()
    for prefix in FILLER_PREFIXES:
        sanitized = prefix.sub("", sanitized)
    return sanitized.strip()


def _score_client(client: Client, key: str) -> Optional[tuple[float, str, str]]:
    """Best (tier, reason, rule) for one client, or None."""
    business_key = normalize_key(client.business_name)
    contact_key = normalize_key(client.contact_name)

    if business_key and business_key == key:
        return TIER_EXACT_BUSINESS, "Exact business name match.", "exact_business"

    best: Optional[tuple[float, str, str]] = None
    if business_key and (key in business_key or business_key in key):
        best = (TIER_PARTIAL_BUSINESS, "Partial business name match.", "partial_business")

    if contact_key:
        if contact_key == key:
            candidate = (TIER_EXACT_CONTACT, "Exact contact name match.", "exact_contact")
        elif key in contact_key or contact_key in key:
            candidate = (TIER_PARTIAL_CONTACT, "Partial contact name match.", "partial_contact")
        else:
            candidate = None
        if candidate and (best is None or candidate[0] > best[0]):
            best = candidate

    return best


def tier_confidence(tier: float, config: Optional[ResolutionConfig] = None) -> float:
    table = config.reply_tier_confidence if config else DEFAULT_REPLY_TIER_CONFIDENCE
    if tier in table:
        return table[tier]
    lower = [value for threshold, value in table.items() if threshold <= tier]
    return max(lower) if lower else 0.0


def match_client_from_reply(
    text: Optional[str],
    clients: list[Client],
    config: Optional[ResolutionConfig] = None,
) -> Union[ReplyMatch, AmbiguousMatch, None]:
    """Map a free-text reply (business name, contact name or email) to one client."""
    sanitized = strip_filler(text)
    if not sanitized:
        return None

    if "@" in sanitized:
        email = normalize_email(sanitized)
        for client in clients:
            if client.business_email and normalize_email(client.business_email) == email:
                confidence = config.reply_email_confidence if config else 0.95
                return ReplyMatch(client=client, confidence=confidence, reason=EMAIL_MATCH_REASON, rule="email")

    key = normalize_key(sanitized)
    if not key:
        return None

    scored = []
    for client in clients:
        result = _score_client(client, key)
        if result:
            scored.append((client, *result))

    if not scored:
        return None

    top_tier = max(entry[1] for entry in scored)
    top = [entry for entry in scored if entry[1] == top_tier]
    if len(top) > 1:
        return AmbiguousMatch(candidates=[entry[0] for entry in top])

    client, tier, reason, rule = top[0]
    confidence = tier_confidence(tier, config)
    floor = config.reply_confidence_floor if config else 0.5
    if confidence < floor:
        return None
    return ReplyMatch(client=client, confidence=confidence, reason=reason, rule=rule)
