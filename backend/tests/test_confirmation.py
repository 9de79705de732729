"""
Tests for confirmation.py - the yes/no gate in front of destructive changes.
"""
import pytest
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from confirmation import (
    ConversationState,
    TurnKind,
    cancelled_proposal,
    classify_turn,
    conversation_state,
    defer,
    is_affirmative,
    is_negative,
    pending_proposal,
    requires_confirmation,
)
from models import Message, PendingBatch, ProposalStatus, ScheduleProposal
from conftest import make_task


def awaiting(status=ProposalStatus.DELETION_CONFIRMATION) -> ScheduleProposal:
    return ScheduleProposal(
        message="Delete Lunch?",
        status=status,
        pending=PendingBatch(delete_ids=["t1"], delete_names=["Lunch"]),
    )


def history_with(proposal) -> list[Message]:
    return [
        Message(role="user", content="delete lunch"),
        Message(role="assistant", content=proposal.message, proposal=proposal),
    ]


class TestReplies:
    """Tests for recognising confirm/cancel replies."""

    @pytest.mark.parametrize("text", ["yes", "Yes", "  YES  ", "confirm", "do it", "Do it!", "proceed."])
    def test_affirmative(self, text):
        assert is_affirmative(text) is True
        assert is_negative(text) is False

    @pytest.mark.parametrize("text", ["no", "No.", "cancel", " STOP "])
    def test_negative(self, text):
        assert is_negative(text) is True
        assert is_affirmative(text) is False

    @pytest.mark.parametrize("text", ["yes please move it to 3pm", "yeah", "not now", ""])
    def test_other_text(self, text):
        assert is_affirmative(text) is False
        assert is_negative(text) is False


class TestDefer:
    """Tests for holding a batch back."""

    def test_requires_confirmation(self):
        for status in (ProposalStatus.NEEDS_CONFIRMATION, ProposalStatus.RESCHEDULE_CONFIRMATION,
                       ProposalStatus.DELETION_CONFIRMATION):
            assert requires_confirmation(ScheduleProposal(message="", status=status)) is True
        assert requires_confirmation(ScheduleProposal(message="", status=ProposalStatus.COMPLETE)) is False
        assert requires_confirmation(ScheduleProposal(message="")) is False

    def test_defer_empties_committable_fields(self):
        task = make_task("Gym")
        proposal = ScheduleProposal(
            message="Replace Lunch with Gym?",
            tasks=[task],
            tasks_to_delete=["Lunch"],
            status=ProposalStatus.DELETION_CONFIRMATION,
            pending=PendingBatch(tasks=[task], delete_ids=["t1"], delete_names=["Lunch"]),
        )

        deferred = defer(proposal)

        assert deferred.tasks == []
        assert deferred.tasks_to_delete == []
        assert [t.name for t in deferred.pending.tasks] == ["Gym"]
        assert deferred.pending.delete_ids == ["t1"]
        assert deferred.status == ProposalStatus.DELETION_CONFIRMATION
        # Original is left untouched
        assert proposal.tasks == [task]


class TestStateMachine:
    """Tests for deriving state from the conversation history."""

    def test_idle_without_history(self):
        assert conversation_state([]) == ConversationState.IDLE
        assert classify_turn("yes", []) == (TurnKind.NEW_REQUEST, None)

    def test_awaiting_after_confirmable_proposal(self):
        history = history_with(awaiting())
        assert conversation_state(history) == ConversationState.AWAITING_CONFIRMATION

    def test_confirm(self):
        proposal = awaiting()
        kind, pending = classify_turn("Yes", history_with(proposal))
        assert kind == TurnKind.CONFIRM
        assert pending.pending.delete_ids == ["t1"]

    def test_cancel(self):
        kind, _ = classify_turn("cancel", history_with(awaiting()))
        assert kind == TurnKind.CANCEL

    def test_unrelated_turn_is_new_request(self):
        kind, pending = classify_turn("add gym at 5pm", history_with(awaiting()))
        assert kind == TurnKind.NEW_REQUEST
        assert pending is None

    def test_only_latest_assistant_reply_counts(self):
        history = history_with(awaiting()) + [
            Message(role="user", content="never mind, what's on tomorrow?"),
            Message(role="assistant", content="You have nothing tomorrow.",
                    proposal=ScheduleProposal(message="", status=ProposalStatus.COMPLETE)),
        ]
        assert pending_proposal(history) is None

    def test_clarifying_question_is_not_pending(self):
        """needs_confirmation with nothing held back leaves the machine idle."""
        question = ScheduleProposal(message="What time?", status=ProposalStatus.NEEDS_CONFIRMATION,
                                    pending=PendingBatch())
        assert conversation_state(history_with(question)) == ConversationState.IDLE

    def test_pending_survives_json_round_trip(self):
        """History sent back by the client restores the pending batch."""
        history = history_with(awaiting())
        payload = [m.model_dump(mode="json", by_alias=True) for m in history]
        restored = [Message.model_validate(m) for m in payload]
        assert classify_turn("proceed", restored)[0] == TurnKind.CONFIRM

    def test_cancelled_proposal(self):
        proposal = cancelled_proposal()
        assert proposal.status == ProposalStatus.COMPLETE
        assert "Nothing was changed" in proposal.message
