from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

# JSON uses camelCase (startTime, tasksToDelete); Python uses snake_case
CAMEL_CONFIG = ConfigDict(alias_generator=to_camel, populate_by_name=True)

COLOR_PALETTE = ("red", "blue", "yellow", "orange", "green", "purple")


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ProposalStatus(str, Enum):
    COMPLETE = "complete"
    NEEDS_CONFIRMATION = "needs_confirmation"
    RESCHEDULE_CONFIRMATION = "reschedule_confirmation"
    DELETION_CONFIRMATION = "deletion_confirmation"

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]


_STATUS_RANK = {
    ProposalStatus.COMPLETE: 0,
    ProposalStatus.NEEDS_CONFIRMATION: 1,
    ProposalStatus.RESCHEDULE_CONFIRMATION: 2,
    ProposalStatus.DELETION_CONFIRMATION: 3,
}


def upgrade_status(current: Optional[ProposalStatus], new: ProposalStatus) -> ProposalStatus:
    """Return whichever status ranks higher. A missing status ranks lowest."""
    if current is None or new.rank > current.rank:
        return new
    return current


class Task(BaseModel):
    model_config = CAMEL_CONFIG

    id: Optional[str] = None  # absent until persisted
    user_id: Optional[int] = None
    name: str = Field(min_length=1)
    description: Optional[str] = None
    date: str  # YYYY-MM-DD
    start_time: str  # HH:MM, 24-hour
    end_time: str  # HH:MM, 24-hour
    priority: Priority = Priority.MEDIUM
    color_tag: Optional[str] = None
    recurrence_rule: Optional[list[str]] = None  # e.g. ["RRULE:FREQ=WEEKLY;BYDAY=MO"]
    external_link_id: Optional[str] = None
    depends_on: Optional[list[str]] = None

    @field_validator("color_tag", mode="before")
    @classmethod
    def _palette_colour(cls, value):
        if isinstance(value, str) and value.strip().lower() in COLOR_PALETTE:
            return value.strip().lower()
        return None

    @field_validator("recurrence_rule", "depends_on", mode="before")
    @classmethod
    def _wrap_single_string(cls, value):
        if isinstance(value, str):
            return [value] if value.strip() else None
        return value or None

    def identity(self) -> tuple[str, str, str, str]:
        """The (name, date, start, end) key that must be unique per user."""
        return (self.name.strip(), self.date, self.start_time, self.end_time)

    def slot_label(self) -> str:
        return f"{self.start_time}-{self.end_time}"


class TaskCreate(Task):
    user_id: int


class TaskUpdate(BaseModel):
    model_config = CAMEL_CONFIG

    name: Optional[str] = None
    description: Optional[str] = None
    date: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    priority: Optional[Priority] = None
    color_tag: Optional[str] = None
    recurrence_rule: Optional[list[str]] = None
    depends_on: Optional[list[str]] = None


class ExternalBlockedEvent(BaseModel):
    """A read-only event from the external calendar. No times means all day."""
    model_config = CAMEL_CONFIG

    name: str
    date: str
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    source_id: str

    @property
    def all_day(self) -> bool:
        return not self.start_time or not self.end_time


class PlannedMove(BaseModel):
    """A displaced task and the slots it may move to, in preference order."""
    model_config = CAMEL_CONFIG

    task_id: str
    name: str
    date: str
    options: list[str] = []


class PendingBatch(BaseModel):
    """Mutations held back until the user confirms."""
    model_config = CAMEL_CONFIG

    tasks: list[Task] = []
    delete_ids: list[str] = []
    delete_names: list[str] = []
    moves: list[PlannedMove] = []

    def is_empty(self) -> bool:
        return not (self.tasks or self.delete_ids or self.moves)


class ScheduleProposal(BaseModel):
    model_config = CAMEL_CONFIG

    message: str
    tasks: list[Task] = []
    tasks_to_delete: list[str] = []
    tasks_to_reschedule: list[str] = []
    rescheduling_options: dict[str, list[str]] = {}
    suggested_alternatives: list[str] = []
    conflicts: list[str] = []
    missing_info: list[str] = []
    errors: list[str] = []
    status: Optional[ProposalStatus] = None
    tasks_created: int = 0
    pending: Optional[PendingBatch] = None


class Message(BaseModel):
    model_config = CAMEL_CONFIG

    role: str  # "user" or "assistant"
    content: str
    proposal: Optional[ScheduleProposal] = None


class AssistantRequest(BaseModel):
    model_config = CAMEL_CONFIG

    input: str
    user_id: int
    user_timezone: Optional[str] = None
    conversation_history: Optional[list[Message]] = None
