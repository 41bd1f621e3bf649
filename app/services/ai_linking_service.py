"""Language-model stage: ask a chat model which candidate client a transcript belongs to."""

import json
import re
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import httpx

from app.config import ResolutionConfig
from app.logging_config import get_logger
from app.models import Client, Transcript
from app.services.errors import ConfigurationError, LLMRequestError, VerdictParseError
from app.services.linking_state import Outcome
from app.services.llm import LLMProvider, OpenAIProvider

logger = get_logger("ai_linking_service")

NO_CLIENTS_REASON = "No clients available for matching."
NO_REASON = "No reason provided."
UNKNOWN_ID_PREVIEW = 64

SYSTEM_PROMPT = """You link meeting transcripts with the correct client from a provided list.
- Only choose from the provided clients.
- Evaluate participant emails, domains, transcript content, and context clues.
- Respond with strict JSON matching this schema:
  {"decision":"link|no_link","clientId":null or client id string,"confidence":number between 0 and 1,"reason":"explanation"}
- If unsure, set decision to "no_link"."""

_FENCED_JSON = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL | re.IGNORECASE)


@dataclass
class AIVerdict:
    decision: str
    client_id: Optional[str]
    confidence: float
    reason: str

    @property
    def wants_link(self) -> bool:
        return self.decision == "link" and bool(self.client_id)


@dataclass
class AIStageResult:
    """What the model stage decided, ready to be appended to the ledger."""

    outcome: Outcome
    reason: str
    confidence: Optional[float] = None
    client: Optional[Client] = None
    suggested_client_id: Optional[str] = None

    @property
    def linked(self) -> bool:
        return self.outcome == Outcome.SUCCESS and self.client is not None


def get_llm_provider(api_key: Optional[str], config: ResolutionConfig, base_url: Optional[str] = None) -> LLMProvider:
    if not api_key:
        raise ConfigurationError("LLM API key is not configured. Set LLM_API_KEY or the account's llm_api_key.")
    if base_url:
        return OpenAIProvider(api_key=api_key, default_model=config.llm_model, base_url=base_url)
    return OpenAIProvider(api_key=api_key, default_model=config.llm_model)


def _format_date(value: Optional[datetime]) -> str:
    if value is None:
        return "Unknown"
    return value.isoformat()


def _format_candidate(client: Client) -> str:
    return (
        f"- ID: {client.id}\n"
        f"  Name: {client.business_name or ''}\n"
        f"  Email: {client.business_email or 'N/A'}\n"
        f"  Contact: {client.contact_name or 'Unknown'}\n"
        f"  Status: {client.status or 'unspecified'}"
    )


def build_linking_prompt(transcript: Transcript, clients: list[Client]) -> str:
    participants = transcript.participants or []
    participant_list = ", ".join(p for p in participants if p) or "None listed"

    sections = [
        f"Owner email: {transcript.owner_email}",
        f"Transcript title: {transcript.title}",
        f"Transcript date: {_format_date(transcript.date)}",
        f"Participants: {participant_list}",
        "Candidate clients:",
        *[_format_candidate(client) for client in clients],
        f'Transcript content:\n"""{transcript.transcript or ""}"""',
    ]
    return "\n\n".join(sections)


def _load_json_object(content: str) -> object:
    fenced = _FENCED_JSON.search(content)
    if fenced:
        return json.loads(fenced.group(1))
    try:
        return json.loads(content)
    except json.JSONDecodeError:
        match = re.search(r"\{.*\}", content, re.DOTALL)
        if not match:
            raise
        return json.loads(match.group(0))


def parse_ai_verdict(content: Optional[str]) -> AIVerdict:
    """Read the model reply. Raises VerdictParseError if it is not a JSON object."""
    if content is not None and not isinstance(content, str):
        raise VerdictParseError("AI response content is not text.")
    text = (content or "").strip()
    if not text:
        raise VerdictParseError("AI response missing content.")

    try:
        payload = _load_json_object(text)
    except json.JSONDecodeError as exc:
        raise VerdictParseError(f"AI response is not valid JSON: {exc.msg}") from exc

    if not isinstance(payload, dict):
        raise VerdictParseError("AI response is not a JSON object.")

    decision = "link" if payload.get("decision") == "link" else "no_link"

    client_id = payload.get("clientId")
    if not isinstance(client_id, str) or not client_id.strip():
        client_id = None
    else:
        client_id = client_id.strip()

    confidence = payload.get("confidence")
    # bool is an int subclass; a true/false confidence is not a number here
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        confidence = 0.0
    confidence = max(0.0, min(1.0, float(confidence)))

    reason = payload.get("reason")
    if not isinstance(reason, str) or not reason.strip():
        reason = NO_REASON

    return AIVerdict(decision=decision, client_id=client_id, confidence=confidence, reason=reason)


def evaluate_verdict(verdict: AIVerdict, clients: list[Client], config: ResolutionConfig) -> AIStageResult:
    """Accept the verdict only for an offered candidate at or above the confidence threshold."""
    target = next((client for client in clients if client.id == verdict.client_id), None)
    if verdict.wants_link:
        if target is not None and verdict.confidence >= config.ai_confidence_threshold:
            return AIStageResult(
                outcome=Outcome.SUCCESS,
                reason=verdict.reason,
                confidence=verdict.confidence,
                client=target,
            )
        if target is None:
            logger.warning(
                "Model picked a client outside the candidate list",
                extra={"context": {"client_id": verdict.client_id[:UNKNOWN_ID_PREVIEW]}},
            )

    reason = verdict.reason
    suggested = None
    if target is not None:
        suggested = target.id
    elif verdict.client_id:
        reason = f"{reason} (unknown client {verdict.client_id[:UNKNOWN_ID_PREVIEW]})"

    return AIStageResult(
        outcome=Outcome.NO_MATCH,
        reason=reason,
        confidence=verdict.confidence,
        suggested_client_id=suggested,
    )


def run_ai_stage(
    transcript: Transcript,
    clients: list[Client],
    config: ResolutionConfig,
    llm: Optional[LLMProvider],
) -> AIStageResult:
    """Run the model stage. Raises ConfigurationError when no provider is available.

    Every other failure is folded into the returned result as an ``error`` outcome.
    """
    if not clients:
        return AIStageResult(outcome=Outcome.NO_MATCH, reason=NO_CLIENTS_REASON, confidence=0.0)

    if llm is None:
        raise ConfigurationError("LLM provider is not configured.")

    messages = [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": build_linking_prompt(transcript, clients)},
    ]

    started = time.monotonic()
    try:
        response = llm.generate(
            messages=messages,
            model=config.llm_model,
            temperature=0.1,
            timeout_seconds=config.llm_timeout_seconds,
            json_mode=True,
        )
        verdict = parse_ai_verdict(response.content)
    except httpx.TimeoutException:
        logger.warning(
            f"LLM timeout after {config.llm_timeout_seconds}s",
            extra={"context": {"transcript_id": transcript.transcript_id}},
        )
        return AIStageResult(
            outcome=Outcome.ERROR,
            reason=f"AI invocation failed: request timed out after {config.llm_timeout_seconds}s",
        )
    except (httpx.HTTPError, LLMRequestError, VerdictParseError) as exc:
        logger.warning(
            f"LLM linking failed: {exc}",
            extra={"context": {"transcript_id": transcript.transcript_id}},
        )
        return AIStageResult(outcome=Outcome.ERROR, reason=f"AI invocation failed: {exc}")

    logger.info(
        "LLM verdict",
        extra={
            "context": {
                "transcript_id": transcript.transcript_id,
                "decision": verdict.decision,
                "client_id": verdict.client_id,
                "confidence": verdict.confidence,
                "elapsed_ms": round((time.monotonic() - started) * 1000, 2),
            }
        },
    )
    return evaluate_verdict(verdict, clients, config)
