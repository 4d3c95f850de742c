"""
Daily plan proposals.

The planner does not build prompts or parse model output. A plan generator is
any callable taking ``(UserState, "YYYY-MM-DD")`` and returning a proposal with
``reasoning`` and ``tasks``; it may raise. Proposed tasks are filtered down to
the ones that are well-formed and reference topics of active goals.

When the generator is missing, fails, or yields no usable task, a fallback plan
is built from the review queue: up to N topics, each a fixed-length review task.
"""

from __future__ import annotations

import math
from collections.abc import Callable, Mapping
from datetime import date, datetime
from typing import Any

from loguru import logger
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from .decay import SECONDS_PER_DAY
from .models import PlannedTask, TaskType, Topic, UserState, ensure_utc, utc_now

MIN_TASK_MINUTES = 15
MAX_TASK_MINUTES = 180

FALLBACK_REASONING = "Generated a basic study plan focusing on topics that need review."
DEFAULT_REASONING = "AI-generated daily study plan based on your goals and topics."


class PlanProposal(BaseModel):
    """Unvalidated output of a plan generator."""

    reasoning: str = ""
    tasks: list[Any] = Field(default_factory=list)


PlanGenerator = Callable[[UserState, str], PlanProposal | Mapping[str, Any]]


def filter_valid_tasks(raw_tasks: list[Any], state: UserState) -> list[PlannedTask]:
    """
    Keep the proposed tasks that can be stored.

    A task survives if it parses as a PlannedTask, estimates 15-180 minutes and
    references a topic of an active goal in ``state``.
    """
    valid_ids = {
        (goal.id, topic.id) for goal in state.active_goals() for topic in goal.topics
    }

    tasks: list[PlannedTask] = []
    for raw in raw_tasks:
        try:
            task = PlannedTask.model_validate(raw)
        except PydanticValidationError:
            continue
        if not MIN_TASK_MINUTES <= task.estimated_minutes <= MAX_TASK_MINUTES:
            continue
        if (task.goal_id, task.topic_id) not in valid_ids:
            continue
        tasks.append(task)

    dropped = len(raw_tasks) - len(tasks)
    if dropped:
        logger.debug(f"Discarded {dropped} of {len(raw_tasks)} proposed tasks")
    return tasks


def request_plan(
    generator: PlanGenerator,
    state: UserState,
    plan_date: date,
) -> tuple[str, list[PlannedTask]] | None:
    """
    Ask the external generator for a plan.

    Returns:
        (reasoning, tasks) or None if the generator failed or produced nothing usable
    """
    try:
        result = generator(state, plan_date.isoformat())
        proposal = result if isinstance(result, PlanProposal) else PlanProposal.model_validate(result)
    except Exception as e:  # Opaque external capability - any failure means fallback
        logger.warning(f"Plan generator failed for {state.user_id} on {plan_date}: {e}")
        return None

    tasks = filter_valid_tasks(proposal.tasks, state)
    if not tasks:
        logger.warning(f"Plan generator returned no valid tasks for {state.user_id} on {plan_date}")
        return None

    return proposal.reasoning or DEFAULT_REASONING, tasks


def _review_reasoning(topic: Topic, now: datetime) -> str:
    if topic.last_reviewed is None:
        return f"Review {topic.name} - never reviewed"
    elapsed = (ensure_utc(now) - topic.last_reviewed).total_seconds() / SECONDS_PER_DAY
    return f"Review {topic.name} - last reviewed {math.floor(elapsed)} days ago"


def build_fallback_tasks(
    review_topics: list[Topic],
    max_tasks: int = 4,
    task_minutes: int = 45,
    task_priority: int = 4,
    now: datetime | None = None,
) -> list[PlannedTask]:
    """
    Build review tasks for the most urgent topics.

    Args:
        review_topics: Topics needing review, most urgent first
        max_tasks: Maximum number of tasks
        task_minutes: Estimated minutes per task
        task_priority: Priority per task (1-5)
        now: Reference time for the "last reviewed" note
    """
    now = now or utc_now()
    return [
        PlannedTask(
            topic_id=topic.id,
            goal_id=topic.goal_id,
            type=TaskType.REVIEW,
            estimated_minutes=task_minutes,
            priority=task_priority,
            reasoning=_review_reasoning(topic, now),
        )
        for topic in review_topics[:max_tasks]
    ]
