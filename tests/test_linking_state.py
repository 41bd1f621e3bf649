import pytest

from app.services.linking_state import (
    InvalidTransitionError,
    LinkingStatus,
    Outcome,
    Stage,
    can_transition,
    derive_status,
    is_linked,
    transition,
)


class TestValidTransitions:
    def test_unlinked_to_auto_linked(self):
        result = transition(LinkingStatus.UNLINKED, LinkingStatus.AUTO_LINKED)
        assert result == LinkingStatus.AUTO_LINKED

    def test_unlinked_to_needs_human(self):
        result = transition(LinkingStatus.UNLINKED, LinkingStatus.NEEDS_HUMAN)
        assert result == LinkingStatus.NEEDS_HUMAN

    def test_needs_human_to_manually_linked(self):
        result = transition(LinkingStatus.NEEDS_HUMAN, LinkingStatus.MANUALLY_LINKED)
        assert result == LinkingStatus.MANUALLY_LINKED

    def test_needs_human_self_loop(self):
        assert can_transition(LinkingStatus.NEEDS_HUMAN, LinkingStatus.NEEDS_HUMAN)

    def test_linked_to_unlinked(self):
        for status in (LinkingStatus.AUTO_LINKED, LinkingStatus.AI_LINKED, LinkingStatus.MANUALLY_LINKED):
            assert transition(status, LinkingStatus.UNLINKED) == LinkingStatus.UNLINKED


class TestInvalidTransitions:
    def test_needs_human_back_to_unlinked(self):
        with pytest.raises(InvalidTransitionError):
            transition(LinkingStatus.NEEDS_HUMAN, LinkingStatus.UNLINKED)

    def test_linked_to_other_link(self):
        with pytest.raises(InvalidTransitionError):
            transition(LinkingStatus.AI_LINKED, LinkingStatus.MANUALLY_LINKED)

    def test_linked_to_needs_human(self):
        assert not can_transition(LinkingStatus.MANUALLY_LINKED, LinkingStatus.NEEDS_HUMAN)


class TestDeriveStatus:
    def test_success_with_client_by_stage(self):
        assert derive_status(Stage.AUTO, Outcome.SUCCESS, "c1") == LinkingStatus.AUTO_LINKED
        assert derive_status(Stage.AI, Outcome.SUCCESS, "c1") == LinkingStatus.AI_LINKED
        assert derive_status(Stage.TELEGRAM, Outcome.SUCCESS, "c1") == LinkingStatus.MANUALLY_LINKED
        assert derive_status(Stage.MANUAL, Outcome.SUCCESS, "c1") == LinkingStatus.MANUALLY_LINKED

    def test_auto_miss_stays_unlinked(self):
        assert derive_status("auto", "no_match", None) == LinkingStatus.UNLINKED
        assert derive_status("auto", "no_match", None, LinkingStatus.UNLINKED) == LinkingStatus.UNLINKED

    def test_auto_miss_keeps_needs_human(self):
        assert derive_status(Stage.AUTO, Outcome.NO_MATCH, None, "needs_human") == LinkingStatus.NEEDS_HUMAN
        assert derive_status(Stage.AUTO, Outcome.ERROR, None, LinkingStatus.NEEDS_HUMAN) == LinkingStatus.NEEDS_HUMAN

    def test_manual_miss_ignores_current(self):
        assert derive_status(Stage.MANUAL, Outcome.NO_MATCH, None, "needs_human") == LinkingStatus.UNLINKED

    def test_ai_failure_needs_human(self):
        assert derive_status("ai", "error", None) == LinkingStatus.NEEDS_HUMAN
        assert derive_status("ai", "no_match", "c1") == LinkingStatus.NEEDS_HUMAN

    def test_notification_delivered_needs_human(self):
        assert derive_status(Stage.TELEGRAM, Outcome.SUCCESS, None) == LinkingStatus.NEEDS_HUMAN

    def test_manual_unlink(self):
        assert derive_status(Stage.MANUAL, Outcome.NO_MATCH, None) == LinkingStatus.UNLINKED


def test_is_linked():
    assert is_linked("auto_linked")
    assert is_linked(LinkingStatus.MANUALLY_LINKED)
    assert not is_linked("needs_human")
    assert not is_linked(None)
