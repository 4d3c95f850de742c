"""
Study planner core.

Per-user goals, topics, study sessions and daily plans, with spaced repetition
scheduling, memory decay classification, urgency scoring and mastery updates.
"""

from .errors import (
    ExternalGenerationFailure,
    NotFoundError,
    PlanGenerationError,
    PlannerError,
    StateConflict,
    StorageFailure,
    ValidationError,
)
from .service import StudyPlannerService
from .state_store import StateStore

__all__ = [
    "StudyPlannerService",
    "StateStore",
    "PlannerError",
    "ValidationError",
    "NotFoundError",
    "StorageFailure",
    "StateConflict",
    "ExternalGenerationFailure",
    "PlanGenerationError",
]
