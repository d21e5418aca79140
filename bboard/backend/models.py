"""Pydantic models for standup summaries and API request/response."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from standup_window import parse_timestamp

Role = Literal["ADMIN", "PO", "DEV", "QA", "VIEWER"]
Severity = Literal["low", "med", "high"]
ActionType = Literal[
    "UNBLOCK_DECISION",
    "REQUEST_HELP",
    "FOLLOW_UP_STATUS",
    "ASSIGN_OWNER",
    "ESCALATE_BLOCKER",
    "CLARIFY_SCOPE",
]
QuestionCategory = Literal[
    "MISSING_UPDATE",
    "LINK_WORK",
    "DEPENDENCY_OWNER",
    "DEFINE_NEXT_STEP",
    "UNBLOCK_PATH",
]
FeedbackType = Literal["USEFUL", "INCORRECT", "NEEDS_IMPROVEMENT"]
ActionState = Literal["OPEN", "DONE", "SNOOZED", "DISMISSED"]
ClarificationStatus = Literal["ANSWERED", "DISMISSED"]

SUMMARY_SECTIONS = ("achievements", "blockers", "dependencies", "assignment_gaps")


# --------------- Reference data ---------------

class User(BaseModel):
    """Tracker user."""

    id: str
    name: str | None = None
    email: str | None = None
    role: Role = "DEV"

    @property
    def display_name(self) -> str:
        return self.name or self.email or self.id


class WorkItem(BaseModel):
    """An issue or research item linked from a standup entry."""

    id: str
    key: str | None = None
    title: str = ""
    status: str = ""
    assignee_id: str | None = None

    @property
    def reference(self) -> str:
        return self.key or self.id


class StandupEntry(BaseModel):
    """A member's daily standup entry together with its user and linked work."""

    id: str
    project_id: str
    user_id: str
    date: str
    summary_today: str | None = None
    progress_since_yesterday: str | None = None
    blockers: str | None = None
    dependencies: str | None = None
    notes: str | None = None
    is_complete: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None
    user: User
    issues: list[WorkItem] = []
    research: list[WorkItem] = []

    @property
    def linked_work(self) -> list[WorkItem]:
        return [*self.issues, *self.research]


# --------------- Summary schema (v1) ---------------

class SummaryBullet(BaseModel):
    id: str
    text: str
    source_entry_ids: list[str] = []
    linked_work_ids: list[str] = []


class OpenQuestion(BaseModel):
    id: str
    category: QuestionCategory
    question_text: str
    ask_to_user_id: str
    entry_id: str
    priority: Severity = "med"
    source_entry_ids: list[str] = []
    linked_work_ids: list[str] = []


class ActionItem(BaseModel):
    id: str = ""
    title: str
    owner_user_id: str
    target_user_id: str | None = None
    action_type: ActionType
    reason: str
    due: str = "today"
    severity: Severity = "med"
    source_entry_ids: list[str] = []
    linked_work_ids: list[str] = []


class StandupSummaryV1(BaseModel):
    """Versioned structured summary stored in ai_summary_versions.output_json."""

    summary_id: str
    project_id: str
    date: str
    overall_progress: str
    actions_required: list[ActionItem] = []
    open_questions: list[OpenQuestion] = []
    achievements: list[SummaryBullet] = []
    blockers: list[SummaryBullet] = []
    dependencies: list[SummaryBullet] = []
    assignment_gaps: list[SummaryBullet] = []

    def bullets(self) -> list[SummaryBullet]:
        return [bullet for section in SUMMARY_SECTIONS for bullet in getattr(self, section)]


class ModelBullet(BaseModel):
    """A bullet as returned by the model; ids and evidence are optional."""

    id: str | None = None
    text: str = Field(min_length=1)
    source_entry_ids: list[str] = []
    linked_work_ids: list[str] = []

    @field_validator("text")
    @classmethod
    def text_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("bullet text must not be blank")
        return value


class ModelSummaryPayload(BaseModel):
    """The part of StandupSummaryV1 the model is asked to produce."""

    model_config = {"extra": "ignore"}

    overall_progress: str = Field(min_length=1)
    achievements: list[ModelBullet] = []
    blockers: list[ModelBullet] = []
    dependencies: list[ModelBullet] = []
    assignment_gaps: list[ModelBullet] = []
    actions_required: list[ActionItem] = []


class StandupSummaryRendered(BaseModel):
    overall_progress: str
    actions_required: list[str] = []
    achievements: list[str] = []
    blockers: list[str] = []
    dependencies: list[str] = []
    assignment_gaps: list[str] = []


class ValidationFlag(BaseModel):
    flag_type: str
    details: dict


class SummaryConfidence(BaseModel):
    confidence_score: float = Field(ge=0.0, le=1.0)
    evidence_coverage: float = Field(ge=0.0, le=1.0)
    validation_penalty: float = Field(ge=0.0, le=1.0)


class GeneratedSummary(BaseModel):
    """Result of one run of the summary pipeline."""

    summary: StandupSummaryV1
    model: str
    prompt_version: str
    input_hash: str


# --------------- Request models ---------------

class StandupEntryUpsert(BaseModel):
    date: str
    summary_today: str | None = None
    progress_since_yesterday: str | None = None
    blockers: str | None = None
    dependencies: str | None = None
    notes: str | None = None
    is_complete: bool = False
    issue_ids: list[str] = []
    research_ids: list[str] = []


class FeedbackCreate(BaseModel):
    summary_version_id: str = Field(min_length=1)
    section_type: str = Field(min_length=1)
    bullet_id: str | None = None
    feedback_type: FeedbackType
    comment: str | None = Field(default=None, max_length=1000)


class ActionStateUpdate(BaseModel):
    date: str
    action_id: str = Field(min_length=1)
    state: ActionState
    snooze_until: str | None = None
    summary_version: int | None = None
    client_event_id: str | None = None

    @field_validator("snooze_until")
    @classmethod
    def snooze_until_as_utc(cls, value: str | None) -> str | None:
        """Normalize snooze deadlines to UTC ISO timestamps."""
        if not value:
            return None
        parsed = parse_timestamp(value)
        if parsed is None:
            raise ValueError("snooze_until must be an ISO 8601 date or datetime")
        return parsed.isoformat()


class ClarificationCreate(BaseModel):
    entry_id: str = Field(min_length=1)
    question_id: str = Field(min_length=1)
    answer: str | None = None
    status: ClarificationStatus = "ANSWERED"
    dismissed_until: str | None = None


class FacilitatorNoteCreate(BaseModel):
    date: str
    body: str = Field(min_length=1)
    entry_id: str | None = None


class FacilitatorNoteUpdate(BaseModel):
    resolved: bool


class EventCreate(BaseModel):
    type: str = Field(min_length=1)
    summary_version_id: str | None = None
    client_event_id: str | None = None
    metadata: dict | None = None
