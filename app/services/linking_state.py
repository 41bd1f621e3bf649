from enum import Enum
from typing import Optional

from app.services.errors import LinkingError


class LinkingStatus(str, Enum):
    UNLINKED = "unlinked"
    AUTO_LINKED = "auto_linked"
    AI_LINKED = "ai_linked"
    MANUALLY_LINKED = "manually_linked"
    NEEDS_HUMAN = "needs_human"


class Stage(str, Enum):
    AUTO = "auto"  # deterministic participant-email match
    AI = "ai"  # language-model classifier
    TELEGRAM = "telegram"  # human reply in the escalation chat
    MANUAL = "manual"  # operator action from the dashboard


class Outcome(str, Enum):
    SUCCESS = "success"
    NO_MATCH = "no_match"
    ERROR = "error"


LINKED_STATUSES = {LinkingStatus.AUTO_LINKED, LinkingStatus.AI_LINKED, LinkingStatus.MANUALLY_LINKED}

LINKED_STATUS_BY_STAGE = {
    Stage.AUTO: LinkingStatus.AUTO_LINKED,
    Stage.AI: LinkingStatus.AI_LINKED,
    Stage.TELEGRAM: LinkingStatus.MANUALLY_LINKED,
    Stage.MANUAL: LinkingStatus.MANUALLY_LINKED,
}

VALID_TRANSITIONS = {
    LinkingStatus.UNLINKED: [
        LinkingStatus.UNLINKED,
        LinkingStatus.AUTO_LINKED,
        LinkingStatus.AI_LINKED,
        LinkingStatus.MANUALLY_LINKED,
        LinkingStatus.NEEDS_HUMAN,
    ],
    LinkingStatus.NEEDS_HUMAN: [
        LinkingStatus.NEEDS_HUMAN,
        LinkingStatus.AUTO_LINKED,
        LinkingStatus.AI_LINKED,
        LinkingStatus.MANUALLY_LINKED,
    ],
    # Leaving a linked state is the operator unlink action only
    LinkingStatus.AUTO_LINKED: [LinkingStatus.UNLINKED],
    LinkingStatus.AI_LINKED: [LinkingStatus.UNLINKED],
    LinkingStatus.MANUALLY_LINKED: [LinkingStatus.UNLINKED],
}


class InvalidTransitionError(LinkingError):
    def __init__(self, from_state: LinkingStatus, to_state: LinkingStatus):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Invalid transition: {from_state.value} -> {to_state.value}")


def is_linked(status: LinkingStatus | str | None) -> bool:
    if status is None:
        return False
    return LinkingStatus(status) in LINKED_STATUSES


def can_transition(from_state: LinkingStatus, to_state: LinkingStatus) -> bool:
    """Check if transition is valid."""
    allowed = VALID_TRANSITIONS.get(from_state, [])
    return to_state in allowed


def transition(from_state: LinkingStatus, to_state: LinkingStatus) -> LinkingStatus:
    """Perform state transition. Raises InvalidTransitionError if not allowed."""
    if not can_transition(from_state, to_state):
        raise InvalidTransitionError(from_state, to_state)
    return to_state


def derive_status(
    stage: Stage | str,
    outcome: Outcome | str,
    client_id: Optional[str],
    current: LinkingStatus | str | None = None,
) -> LinkingStatus:
    """Project a ledger entry onto the transcript's linking status.

    A success that names a client links the transcript (the flavour depends on the
    stage). A deterministic miss leaves the transcript unlinked, or keeps it in
    needs_human when ``current`` already is. An operator miss (unlink) always
    gives unlinked. Model and human stages otherwise put it into needs_human.
    """
    stage = Stage(stage)
    outcome = Outcome(outcome)

    if outcome == Outcome.SUCCESS and client_id:
        return LINKED_STATUS_BY_STAGE[stage]

    if stage == Stage.AUTO:
        if current is not None and LinkingStatus(current) == LinkingStatus.NEEDS_HUMAN:
            return LinkingStatus.NEEDS_HUMAN
        return LinkingStatus.UNLINKED

    if stage == Stage.MANUAL:
        return LinkingStatus.UNLINKED

    return LinkingStatus.NEEDS_HUMAN
