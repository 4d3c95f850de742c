"""
Study planner operations.

Every mutation follows the same shape:

1. Validate the payload (one pass, before anything changes)
2. Take the user's lock and load the state
3. Check references (goal/topic ids) against the loaded state
4. Mutate the loaded copy
5. Persist the whole state and return the affected entity

A failure at any step raises a PlannerError subclass and persists nothing.
Step 5 only writes if nobody else wrote the user since step 2; otherwise the
whole mutation runs again from a fresh load.
Queries load the state, derive views with the decay functions and never write.
"""

from __future__ import annotations

import functools
import re
from collections.abc import Callable, Mapping
from datetime import UTC, date, datetime, time
from typing import Any, ParamSpec, TypeVar

from loguru import logger
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from config import Settings, get_settings

from .decay import (
    apply_session_to_mastery,
    calculate_memory_decay_level,
    combined_topic_urgency,
    get_next_review_date,
    get_urgency_score,
    is_topic_due_for_review,
)
from .errors import NotFoundError, StateConflict, ValidationError
from .models import (
    DailyPlan,
    Goal,
    GoalCreate,
    GoalUpdate,
    GoalWithDecay,
    PlanCreate,
    PlannedTask,
    SessionCreate,
    StudySession,
    Topic,
    TopicCreate,
    TopicWithDecay,
    UserState,
    ensure_utc,
    generate_id,
    utc_now,
)
from .plan_generation import FALLBACK_REASONING, PlanGenerator, build_fallback_tasks, request_plan
from .state_store import StateStore

ModelT = TypeVar("ModelT", bound=BaseModel)
P = ParamSpec("P")
R = TypeVar("R")

NO_TOPICS_FOR_PLANNING = "no topics available for planning"

# Plan keys are calendar days written exactly as YYYY-MM-DD
PLAN_DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")

# Attempts per mutation when another process writes the same user in between
CONFLICT_RETRY_ATTEMPTS = 3


def _validate(model_cls: type[ModelT], payload: Any) -> ModelT:
    """Parse an operation payload, converting pydantic errors into ValidationError."""
    if isinstance(payload, model_cls):
        return payload
    if payload is None:
        raise ValidationError(f"{model_cls.__name__} payload is required")
    try:
        return model_cls.model_validate(payload)
    except PydanticValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first["loc"]) or None
        message = f"{field}: {first['msg']}" if field else first["msg"]
        raise ValidationError(message, field=field) from e


def parse_plan_date(value: date | str) -> date:
    """Accept a date or a YYYY-MM-DD string as a plan key."""
    if isinstance(value, datetime):
        return ensure_utc(value).date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not PLAN_DATE_PATTERN.match(value):
        raise ValidationError(f"Invalid date {value!r}. Use YYYY-MM-DD", field="date")
    try:
        return date.fromisoformat(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Invalid date {value!r}. Use YYYY-MM-DD", field="date") from e


def _retry_on_conflict(func: Callable[P, R]) -> Callable[P, R]:
    """Re-run a mutation from a fresh load when its write lost a version race."""

    @functools.wraps(func)
    def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
        attempt = 1
        while True:
            try:
                return func(*args, **kwargs)
            except StateConflict as e:
                if attempt >= CONFLICT_RETRY_ATTEMPTS:
                    logger.error(f"{func.__name__} gave up after {attempt} conflicting writes: {e.message}")
                    raise
                logger.warning(f"{func.__name__} retrying after conflicting write ({attempt}/{CONFLICT_RETRY_ATTEMPTS})")
                attempt += 1

    return wrapper


def _as_instant(value: datetime | date) -> datetime:
    if isinstance(value, datetime):
        return ensure_utc(value)
    return datetime.combine(value, time.min, tzinfo=UTC)


class StudyPlannerService:
    """
    Goal, topic, session and daily plan operations over a StateStore.

    All methods take the user key first; user keys are fully independent.
    """

    def __init__(
        self,
        store: StateStore | None = None,
        plan_generator: PlanGenerator | None = None,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Initialize the service.

        Args:
            store: State store (defaults to one on the configured database)
            plan_generator: External plan generator (None = fallback plans only)
            settings: Settings for fallback plan sizing
            clock: Source of "now" for timestamps and decay calculations
        """
        self.store = store or StateStore()
        self.plan_generator = plan_generator
        self.settings = settings or get_settings()
        self.clock = clock

    def close(self) -> None:
        """Release the plan generator's resources (its HTTP client, if any)."""
        close = getattr(self.plan_generator, "close", None)
        if callable(close):
            close()

    # =========================================================================
    # Goals
    # =========================================================================

    @_retry_on_conflict
    def add_goal(self, user_key: str, payload: GoalCreate | Mapping[str, Any]) -> Goal:
        """
        Create a goal, turning each topic name into a fresh Topic.

        Raises:
            ValidationError: If title, type, deadline or priority is missing or invalid
        """
        data = _validate(GoalCreate, payload)
        goal_id = generate_id()
        goal = Goal(
            id=goal_id,
            title=data.title,
            type=data.type,
            deadline=data.deadline,
            priority=data.priority,
            status=data.status,
            created_at=self.clock(),
            topics=[Topic(id=generate_id(), goal_id=goal_id, name=name) for name in data.topics],
        )

        with self.store.transaction(user_key) as state:
            state.goals.append(goal)

        logger.info(f"Added goal {goal.id} ({goal.title!r}) with {len(goal.topics)} topics for {user_key}")
        return goal

    @_retry_on_conflict
    def update_goal(
        self,
        user_key: str,
        goal_id: str,
        updates: GoalUpdate | Mapping[str, Any],
    ) -> Goal:
        """
        Merge a partial update into a goal. id, createdAt and topics never change.

        Raises:
            NotFoundError: If the goal does not exist
            ValidationError: If the merged goal is invalid
        """
        changes = _validate(GoalUpdate, updates).model_dump(exclude_unset=True)

        with self.store.transaction(user_key) as state:
            index = next((i for i, g in enumerate(state.goals) if g.id == goal_id), None)
            if index is None:
                raise NotFoundError("goal", goal_id)

            current = state.goals[index]
            merged = {**current.model_dump(), **changes, "id": current.id, "created_at": current.created_at}
            updated = _validate(Goal, merged)
            state.goals[index] = updated

        logger.info(f"Updated goal {goal_id} for {user_key}: {sorted(changes)}")
        return updated

    @_retry_on_conflict
    def delete_goal(self, user_key: str, goal_id: str) -> None:
        """
        Delete a goal with its sessions and every planned task that references it.

        Plans stay in place with fewer tasks.

        Raises:
            NotFoundError: If the goal does not exist
        """
        with self.store.transaction(user_key) as state:
            if state.find_goal(goal_id) is None:
                raise NotFoundError("goal", goal_id)

            state.goals = [g for g in state.goals if g.id != goal_id]
            sessions_before = len(state.sessions)
            state.sessions = [s for s in state.sessions if s.goal_id != goal_id]
            for plan in state.daily_plans:
                plan.tasks = [t for t in plan.tasks if t.goal_id != goal_id]

        logger.info(
            f"Deleted goal {goal_id} for {user_key} "
            f"({sessions_before - len(state.sessions)} sessions removed)"
        )

    @_retry_on_conflict
    def add_topic(
        self,
        user_key: str,
        goal_id: str,
        payload: TopicCreate | Mapping[str, Any],
    ) -> Topic:
        """
        Append a new topic to a goal.

        Raises:
            NotFoundError: If the goal does not exist
            ValidationError: If the topic has no name
        """
        data = _validate(TopicCreate, payload)

        with self.store.transaction(user_key) as state:
            goal = state.find_goal(goal_id)
            if goal is None:
                raise NotFoundError("goal", goal_id)

            topic = Topic(id=generate_id(), goal_id=goal_id, name=data.name, notes=data.notes)
            goal.topics.append(topic)

        logger.info(f"Added topic {topic.id} ({topic.name!r}) to goal {goal_id} for {user_key}")
        return topic

    # =========================================================================
    # Sessions
    # =========================================================================

    @_retry_on_conflict
    def record_session(self, user_key: str, payload: SessionCreate | Mapping[str, Any]) -> StudySession:
        """
        Log a study session and update the topic it covers.

        The topic's lastReviewed becomes the session date, its review count goes up
        by one and its mastery rises per the diminishing-returns policy. Any task
        for the same topic in that day's plan is retired.

        Raises:
            NotFoundError: If the goal or topic does not exist
            ValidationError: If ids or durationMinutes are missing/invalid
        """
        data = _validate(SessionCreate, payload)
        session = StudySession(
            id=generate_id(),
            topic_id=data.topic_id,
            goal_id=data.goal_id,
            date=data.date or self.clock(),
            duration_minutes=data.duration_minutes,
            notes=data.notes,
        )

        with self.store.transaction(user_key) as state:
            goal = state.find_goal(session.goal_id)
            if goal is None:
                raise NotFoundError("goal", session.goal_id)
            topic = goal.find_topic(session.topic_id)
            if topic is None:
                raise NotFoundError("topic", session.topic_id, parent=f"goal {goal.id}")

            state.sessions.append(session)

            previous_mastery = topic.mastery_level
            topic.last_reviewed = session.date
            topic.review_count += 1
            topic.mastery_level = apply_session_to_mastery(
                previous_mastery, topic.review_count, session.duration_minutes
            )

            plan = state.find_plan(session.date.date())
            retired = 0
            if plan is not None:
                remaining = [
                    t
                    for t in plan.tasks
                    if not (t.topic_id == session.topic_id and t.goal_id == session.goal_id)
                ]
                retired = len(plan.tasks) - len(remaining)
                plan.tasks = remaining

        logger.info(
            f"Recorded {session.duration_minutes:g}min session on topic {topic.id} for {user_key}: "
            f"mastery {previous_mastery} -> {topic.mastery_level}, reviews {topic.review_count}"
            + (f", retired {retired} planned task(s)" if retired else "")
        )
        return session

    # =========================================================================
    # Queries
    # =========================================================================

    def get_state(self, user_key: str) -> UserState:
        """Get the full state for a user (created empty on first access)."""
        return self.store.get_state(user_key)

    def replace_state(self, user_key: str, payload: UserState | Mapping[str, Any]) -> UserState:
        """
        Replace a user's whole state.

        The stored userId always equals the user key.

        Raises:
            ValidationError: If the payload is not a valid UserState
        """
        if isinstance(payload, Mapping):
            payload = {k: v for k, v in payload.items() if k not in ("userId", "user_id")}
            payload["userId"] = user_key
        state = _validate(UserState, payload).model_copy(update={"user_id": user_key})
        with self.store.lock(user_key):
            self.store.set_state(user_key, state)

        logger.info(f"Replaced state for {user_key} ({len(state.goals)} goals)")
        return state

    def _review_queue(self, state: UserState, now: datetime) -> list[Topic]:
        ranked: list[tuple[float, Topic]] = []
        for goal in state.active_goals():
            goal_urgency = get_urgency_score(goal.deadline, goal.priority, now)
            for topic in goal.topics:
                if not is_topic_due_for_review(topic.last_reviewed, topic.review_count, now):
                    continue
                decay_level = calculate_memory_decay_level(topic.last_reviewed, topic.review_count, now)
                ranked.append((combined_topic_urgency(decay_level, goal_urgency), topic))

        ranked.sort(key=lambda item: item[0], reverse=True)
        return [topic for _, topic in ranked]

    def get_topics_needing_review(
        self,
        user_key: str,
        as_of: datetime | date | None = None,
    ) -> list[Topic]:
        """
        Topics of active goals that are due for review, most urgent first.

        Urgency combines the topic's decay level (dominant) with its goal's
        deadline/priority urgency.

        Args:
            user_key: User key
            as_of: Evaluation time (defaults to now); a plain date means midnight UTC
        """
        now = _as_instant(as_of) if as_of is not None else self.clock()
        return self._review_queue(self.store.get_state(user_key), now)

    def get_goals_with_decay(self, user_key: str) -> list[GoalWithDecay]:
        """All goals (any status) with each topic's decay level, next review date and due flag."""
        now = self.clock()
        state = self.store.get_state(user_key)

        return [
            GoalWithDecay(
                **goal.model_dump(),
                topics_with_decay=[
                    TopicWithDecay(
                        **topic.model_dump(),
                        decay_level=calculate_memory_decay_level(topic.last_reviewed, topic.review_count, now),
                        next_review_date=get_next_review_date(topic.last_reviewed, topic.review_count),
                        is_due=is_topic_due_for_review(topic.last_reviewed, topic.review_count, now),
                    )
                    for topic in goal.topics
                ],
            )
            for goal in state.goals
        ]

    # =========================================================================
    # Daily Plans
    # =========================================================================

    @_retry_on_conflict
    def generate_daily_plan(
        self,
        user_key: str,
        plan_date: date | str,
        reasoning: str,
        tasks: list[PlannedTask | Mapping[str, Any]],
    ) -> DailyPlan:
        """
        Store the plan for a date, replacing any existing plan for that date.

        Every task must reference an existing topic within an existing goal;
        the check covers all tasks before anything is changed.

        Raises:
            ValidationError: If a task is malformed or references an unknown id
        """
        data = _validate(PlanCreate, {"date": parse_plan_date(plan_date), "reasoning": reasoning, "tasks": tasks})

        with self.store.transaction(user_key) as state:
            for task in data.tasks:
                goal = state.find_goal(task.goal_id)
                if goal is None:
                    raise ValidationError(f"Goal with id {task.goal_id} not found", field="goalId")
                if goal.find_topic(task.topic_id) is None:
                    raise ValidationError(
                        f"Topic with id {task.topic_id} not found in goal {task.goal_id}",
                        field="topicId",
                    )

            now = self.clock()
            plan = DailyPlan(date=data.date, generated_at=now, tasks=data.tasks, reasoning=data.reasoning)
            state.daily_plans = [p for p in state.daily_plans if p.date != plan.date]
            state.daily_plans.append(plan)
            state.last_plan_generated = now

        logger.info(f"Stored plan for {plan.date} with {len(plan.tasks)} tasks for {user_key}")
        return plan

    def get_daily_plan(self, user_key: str, plan_date: date | str) -> DailyPlan | None:
        """Get the plan for a date, or None if there is none."""
        return self.store.get_state(user_key).find_plan(parse_plan_date(plan_date))

    @_retry_on_conflict
    def delete_daily_plan(self, user_key: str, plan_date: date | str) -> bool:
        """
        Delete the plan for a date. Deleting a missing plan is a no-op.

        Returns:
            True if a plan was removed
        """
        day = parse_plan_date(plan_date)
        with self.store.lock(user_key):
            state, version = self.store.load(user_key)
            if state.find_plan(day) is None:
                return False
            state.daily_plans = [p for p in state.daily_plans if p.date != day]
            self.store.set_state(user_key, state, expected_version=version)

        logger.info(f"Deleted plan for {day} for {user_key}")
        return True

    def plan_for_date(self, user_key: str, plan_date: date | str | None = None) -> DailyPlan:
        """
        Generate and store a plan for a date (defaults to today, UTC).

        Uses the external plan generator when configured; falls back to review
        tasks for the most urgent topics if it fails or returns nothing usable.

        Raises:
            ValidationError: If there is nothing to plan (no active goal or no topic to review)
        """
        now = self.clock()
        day = parse_plan_date(plan_date) if plan_date is not None else now.date()
        state = self.store.get_state(user_key)

        if not state.active_goals():
            raise ValidationError(f"{NO_TOPICS_FOR_PLANNING}: no active goals")

        proposal = request_plan(self.plan_generator, state, day) if self.plan_generator else None

        if proposal is None:
            fallback = self.settings.get_fallback_config()
            tasks = build_fallback_tasks(
                self._review_queue(state, now),
                max_tasks=fallback["max_tasks"],
                task_minutes=fallback["task_minutes"],
                task_priority=fallback["task_priority"],
                now=now,
            )
            if not tasks:
                raise ValidationError(NO_TOPICS_FOR_PLANNING)
            logger.info(f"Using fallback plan for {user_key} on {day}")
            proposal = (FALLBACK_REASONING, tasks)

        reasoning, tasks = proposal
        return self.generate_daily_plan(user_key, day, reasoning, tasks)
