"""API routers for the study planner."""

from src.api.routers import planner_router

__all__ = [
    "planner_router",
]
