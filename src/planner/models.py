"""
Entity model for the study planner.

One UserState per user key owns every Goal, StudySession and DailyPlan;
each Goal owns its Topics. Topic.goal_id and StudySession.topic_id/goal_id are
back-references used for lookup and cascade deletes only.

Models serialize with camelCase keys (the stored blob and HTTP wire format)
while Python code uses snake_case attributes.
"""

from __future__ import annotations

import uuid
from datetime import UTC, date, datetime
from enum import Enum
from typing import Annotated, Any

from pydantic import AfterValidator, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def ensure_utc(value: datetime) -> datetime:
    """Interpret naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def generate_id() -> str:
    """Generate an opaque unique entity id."""
    return uuid.uuid4().hex


UtcDatetime = Annotated[datetime, AfterValidator(ensure_utc)]
CalendarDay = date


# =============================================================================
# Enumerations
# =============================================================================


class GoalType(str, Enum):
    EXAM = "exam"
    PROJECT = "project"
    COMMITMENT = "commitment"


class GoalStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    ARCHIVED = "archived"


class TaskType(str, Enum):
    STUDY = "study"
    REVIEW = "review"
    PROJECT_WORK = "project_work"


class DecayLevel(str, Enum):
    """
    How overdue a topic is for review.

    GREEN means recently reviewed, RED means overdue (or never studied).
    """

    GREEN = "green"
    YELLOW = "yellow"
    ORANGE = "orange"
    RED = "red"

    @property
    def weight(self) -> int:
        """Ranking weight used by the review queue."""
        return {
            DecayLevel.RED: 4,
            DecayLevel.ORANGE: 3,
            DecayLevel.YELLOW: 2,
            DecayLevel.GREEN: 1,
        }[self]


# =============================================================================
# Entities
# =============================================================================


class PlannerModel(BaseModel):
    """Base model: camelCase aliases, snake_case attributes."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-ready dictionary with camelCase keys."""
        return self.model_dump(mode="json", by_alias=True)


class Topic(PlannerModel):
    """A reviewable unit of material within a goal."""

    id: str
    goal_id: str
    name: str = Field(..., min_length=1)
    last_reviewed: UtcDatetime | None = None
    review_count: int = Field(0, ge=0)
    mastery_level: int = Field(0, ge=0, le=100)
    notes: str = ""


class Goal(PlannerModel):
    """A tracked commitment (exam, project or commitment) with its topics."""

    id: str
    title: str = Field(..., min_length=1)
    type: GoalType
    deadline: UtcDatetime
    priority: int = Field(..., ge=1, le=5)
    status: GoalStatus = GoalStatus.ACTIVE
    created_at: UtcDatetime
    topics: list[Topic] = Field(default_factory=list)

    def find_topic(self, topic_id: str) -> Topic | None:
        return next((t for t in self.topics if t.id == topic_id), None)


class StudySession(PlannerModel):
    """Immutable log record of time spent on a topic."""

    id: str
    topic_id: str
    goal_id: str
    date: UtcDatetime
    duration_minutes: float = Field(..., ge=0)
    notes: str = ""


class PlannedTask(PlannerModel):
    """A recommendation line item inside a DailyPlan."""

    topic_id: str
    goal_id: str
    type: TaskType
    estimated_minutes: int = Field(..., ge=0)
    priority: int = Field(..., ge=1, le=5)
    reasoning: str = ""


class DailyPlan(PlannerModel):
    """The plan for one calendar day."""

    date: CalendarDay
    generated_at: UtcDatetime
    tasks: list[PlannedTask] = Field(default_factory=list)
    reasoning: str = ""


class UserState(PlannerModel):
    """Root aggregate holding everything stored for one user key."""

    user_id: str
    goals: list[Goal] = Field(default_factory=list)
    sessions: list[StudySession] = Field(default_factory=list)
    daily_plans: list[DailyPlan] = Field(default_factory=list)
    last_plan_generated: UtcDatetime | None = None

    @classmethod
    def empty(cls, user_id: str) -> UserState:
        """Create the default state for a user seen for the first time."""
        return cls(user_id=user_id)

    def find_goal(self, goal_id: str) -> Goal | None:
        return next((g for g in self.goals if g.id == goal_id), None)

    def find_plan(self, plan_date: date) -> DailyPlan | None:
        return next((p for p in self.daily_plans if p.date == plan_date), None)

    def active_goals(self) -> list[Goal]:
        return [g for g in self.goals if g.status == GoalStatus.ACTIVE]


# =============================================================================
# Operation payloads
# =============================================================================


class GoalCreate(PlannerModel):
    """Payload for add_goal. Topics are given by name."""

    title: str = Field(..., min_length=1)
    type: GoalType
    deadline: UtcDatetime
    priority: int = Field(..., ge=1, le=5)
    status: GoalStatus = GoalStatus.ACTIVE
    topics: list[str] = Field(default_factory=list)


class GoalUpdate(PlannerModel):
    """
    Partial update for a goal.

    id, createdAt and topics are not updatable and are ignored if present.
    """

    model_config = ConfigDict(extra="ignore")

    title: str | None = Field(None, min_length=1)
    type: GoalType | None = None
    deadline: UtcDatetime | None = None
    priority: int | None = Field(None, ge=1, le=5)
    status: GoalStatus | None = None


class TopicCreate(PlannerModel):
    name: str = Field(..., min_length=1)
    notes: str = ""


class SessionCreate(PlannerModel):
    """Payload for record_session; date defaults to now."""

    topic_id: str = Field(..., min_length=1)
    goal_id: str = Field(..., min_length=1)
    duration_minutes: float = Field(..., ge=0)
    date: UtcDatetime | None = None
    notes: str = ""


class PlanCreate(PlannerModel):
    """Payload for storing an already generated plan."""

    date: CalendarDay
    reasoning: str = ""
    tasks: list[PlannedTask]


# =============================================================================
# Read-only projections
# =============================================================================


class TopicWithDecay(Topic):
    decay_level: DecayLevel
    next_review_date: UtcDatetime | None = None
    is_due: bool


class GoalWithDecay(Goal):
    topics_with_decay: list[TopicWithDecay] = Field(default_factory=list)
