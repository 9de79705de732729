"""Hold irreversible changes until the user explicitly says yes or no.

There is no server-side lock: the pending batch lives on the last assistant
message of the caller-supplied history, so any unrelated request simply
replaces it.
"""

from enum import Enum
from typing import Optional

from models import Message, PendingBatch, ProposalStatus, ScheduleProposal

AFFIRMATIVE_REPLIES = {"yes", "confirm", "do it", "proceed"}
NEGATIVE_REPLIES = {"no", "cancel", "stop"}

CONFIRMABLE_STATUSES = {
    ProposalStatus.NEEDS_CONFIRMATION,
    ProposalStatus.RESCHEDULE_CONFIRMATION,
    ProposalStatus.DELETION_CONFIRMATION,
}

CANCELLED_MESSAGE = "Okay, I've cancelled that. Nothing was changed."


class ConversationState(str, Enum):
    IDLE = "idle"
    AWAITING_CONFIRMATION = "awaiting_confirmation"


class TurnKind(str, Enum):
    CONFIRM = "confirm"
    CANCEL = "cancel"
    NEW_REQUEST = "new_request"


def normalize_reply(text: str) -> str:
    return text.strip().lower().rstrip(".!").strip()


def is_affirmative(text: str) -> bool:
    return normalize_reply(text) in AFFIRMATIVE_REPLIES


def is_negative(text: str) -> bool:
    return normalize_reply(text) in NEGATIVE_REPLIES


def requires_confirmation(proposal: ScheduleProposal) -> bool:
    return proposal.status in CONFIRMABLE_STATUSES


def defer(proposal: ScheduleProposal) -> ScheduleProposal:
    """Move the committable batch into `pending`; nothing is left to commit."""
    pending = proposal.pending or PendingBatch(tasks=proposal.tasks)
    return proposal.model_copy(update={
        "tasks": [],
        "tasks_to_delete": [],
        "pending": pending,
    })


def pending_proposal(history: Optional[list[Message]]) -> Optional[ScheduleProposal]:
    """The proposal awaiting confirmation, if the last assistant reply holds one.

    A confirmable proposal with an empty batch (a clarifying question) does
    not count: there is nothing to confirm, so the reply goes back through
    intent extraction.
    """
    for message in reversed(history or []):
        if message.role != "assistant":
            continue
        proposal = message.proposal
        if (
            proposal is not None
            and requires_confirmation(proposal)
            and proposal.pending is not None
            and not proposal.pending.is_empty()
        ):
            return proposal
        return None
    return None


def conversation_state(history: Optional[list[Message]]) -> ConversationState:
    if pending_proposal(history) is not None:
        return ConversationState.AWAITING_CONFIRMATION
    return ConversationState.IDLE


def classify_turn(
    user_input: str, history: Optional[list[Message]]
) -> tuple[TurnKind, Optional[ScheduleProposal]]:
    """Decide whether this turn answers a pending confirmation."""
    pending = pending_proposal(history)
    if pending is None:
        return TurnKind.NEW_REQUEST, None
    if is_affirmative(user_input):
        return TurnKind.CONFIRM, pending
    if is_negative(user_input):
        return TurnKind.CANCEL, pending
    return TurnKind.NEW_REQUEST, None


def cancelled_proposal() -> ScheduleProposal:
    return ScheduleProposal(message=CANCELLED_MESSAGE, status=ProposalStatus.COMPLETE)
