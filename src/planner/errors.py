"""
Error taxonomy for the planner core.

Every failure an operation can report is one of these types:

- ValidationError: malformed or missing input (caller's fault, never retried)
- NotFoundError: a referenced goal/topic id does not exist in the user's state
- StorageFailure: persistence unavailable; nothing was written, safe to retry
  (StateConflict: a concurrent writer won the race for the same user key)
- ExternalGenerationFailure: the plan generator failed or returned unusable output
"""

from __future__ import annotations


class PlannerError(Exception):
    """Base class for all planner errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(PlannerError):
    """Raised when an operation payload is missing fields or malformed."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class NotFoundError(PlannerError):
    """Raised when a referenced entity id is absent from the user's state."""

    def __init__(self, kind: str, entity_id: str, parent: str | None = None):
        message = f"{kind.capitalize()} with id {entity_id} not found"
        if parent:
            message += f" in {parent}"
        super().__init__(message)
        self.kind = kind
        self.entity_id = entity_id


class StorageFailure(PlannerError):
    """Raised when the state store cannot be read or written."""


class StateConflict(StorageFailure):
    """Raised when another writer changed a user's state between load and persist."""

    def __init__(self, user_key: str, expected_version: int):
        super().__init__(f"State for {user_key} changed since version {expected_version}")
        self.user_key = user_key
        self.expected_version = expected_version


class ExternalGenerationFailure(PlannerError):
    """Raised when the external plan generator cannot produce a plan."""


class PlanGenerationError(ExternalGenerationFailure):
    """Raised by the remote plan generator client after exhausting retries."""
