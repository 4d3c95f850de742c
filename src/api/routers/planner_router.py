"""
Study planner API router.

Endpoints for goals, topics, study sessions, the review queue and daily plans.
The user key comes from the X-User-Id header or the userId query parameter.
Request bodies are validated by the planner service so that every malformed
payload is reported as a 400 with the same error shape.
"""

from __future__ import annotations

from datetime import datetime
from functools import lru_cache
from typing import Any

from fastapi import APIRouter, Body, Depends, Header, HTTPException, Query, status
from loguru import logger

from config import get_settings
from src.planner import StudyPlannerService
from src.planner.plan_client import RemotePlanGenerator
from src.planner.service import PLAN_DATE_PATTERN

router = APIRouter()


# ========================================
# Dependencies
# ========================================


def get_user_key(
    x_user_id: str | None = Header(None, alias="X-User-Id"),
    user_id: str | None = Query(None, alias="userId"),
) -> str:
    """Resolve the user key for a request."""
    return x_user_id or user_id or get_settings().default_user_id


@lru_cache(maxsize=1)
def get_planner_service() -> StudyPlannerService:
    """Get the shared planner service (remote plan generator if configured)."""
    settings = get_settings()
    generator = None
    if settings.has_plan_generator():
        generator = RemotePlanGenerator(
            api_url=settings.plan_generator_url,
            timeout_ms=settings.plan_generator_timeout_ms,
            retry_attempts=settings.plan_generator_retry_attempts,
        )
        logger.info(f"Using remote plan generator at {settings.plan_generator_url}")
    return StudyPlannerService(plan_generator=generator, settings=settings)


def close_planner_service() -> None:
    """Close the shared planner service, if one was created, and forget it."""
    if get_planner_service.cache_info().currsize:
        get_planner_service().close()
    get_planner_service.cache_clear()


def _check_date_format(value: str) -> str:
    if not PLAN_DATE_PATTERN.match(value):
        raise HTTPException(status_code=400, detail="Invalid date format. Use YYYY-MM-DD")
    return value


# ========================================
# State Endpoints
# ========================================


@router.get("/state", summary="Get full user state")
def get_state(
    user_key: str = Depends(get_user_key),
    service: StudyPlannerService = Depends(get_planner_service),
) -> dict[str, Any]:
    return service.get_state(user_key).to_dict()


@router.put("/state", summary="Replace full user state")
def replace_state(
    body: dict[str, Any] = Body(...),
    user_key: str = Depends(get_user_key),
    service: StudyPlannerService = Depends(get_planner_service),
) -> dict[str, Any]:
    service.replace_state(user_key, body)
    return {"success": True}


# ========================================
# Goal Endpoints
# ========================================


@router.post("/goals", status_code=status.HTTP_201_CREATED, summary="Create goal")
def create_goal(
    body: dict[str, Any] = Body(...),
    user_key: str = Depends(get_user_key),
    service: StudyPlannerService = Depends(get_planner_service),
) -> dict[str, Any]:
    """
    Create a goal.

    Body: title, type (exam|project|commitment), deadline, priority (1-5),
    optional topics (list of names) and status.
    """
    return service.add_goal(user_key, body).to_dict()


@router.get("/goals", summary="List goals with memory decay")
def list_goals(
    user_key: str = Depends(get_user_key),
    service: StudyPlannerService = Depends(get_planner_service),
) -> list[dict[str, Any]]:
    return [goal.to_dict() for goal in service.get_goals_with_decay(user_key)]


@router.put("/goals/{goal_id}", summary="Update goal")
def update_goal(
    goal_id: str,
    body: dict[str, Any] = Body(...),
    user_key: str = Depends(get_user_key),
    service: StudyPlannerService = Depends(get_planner_service),
) -> dict[str, Any]:
    return service.update_goal(user_key, goal_id, body).to_dict()


@router.delete("/goals/{goal_id}", summary="Delete goal")
def delete_goal(
    goal_id: str,
    user_key: str = Depends(get_user_key),
    service: StudyPlannerService = Depends(get_planner_service),
) -> dict[str, bool]:
    """Delete a goal with its sessions and planned tasks."""
    service.delete_goal(user_key, goal_id)
    return {"success": True}


@router.post("/goals/{goal_id}/topics", status_code=status.HTTP_201_CREATED, summary="Add topic")
def add_topic(
    goal_id: str,
    body: dict[str, Any] = Body(...),
    user_key: str = Depends(get_user_key),
    service: StudyPlannerService = Depends(get_planner_service),
) -> dict[str, Any]:
    return service.add_topic(user_key, goal_id, body).to_dict()


# ========================================
# Session & Review Endpoints
# ========================================


@router.post("/sessions", status_code=status.HTTP_201_CREATED, summary="Record study session")
def record_session(
    body: dict[str, Any] = Body(...),
    user_key: str = Depends(get_user_key),
    service: StudyPlannerService = Depends(get_planner_service),
) -> dict[str, Any]:
    """
    Record a study session.

    Body: topicId, goalId, durationMinutes, optional notes and date (defaults to now).
    """
    return service.record_session(user_key, body).to_dict()


@router.get("/review", summary="Get topics needing review")
def get_review_queue(
    as_of_date: str | None = Query(None, alias="asOfDate"),
    user_key: str = Depends(get_user_key),
    service: StudyPlannerService = Depends(get_planner_service),
) -> list[dict[str, Any]]:
    """Topics due for review, sorted by urgency (most urgent first)."""
    as_of = None
    if as_of_date:
        try:
            as_of = datetime.fromisoformat(as_of_date)
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid asOfDate. Use ISO 8601") from None
    return [topic.to_dict() for topic in service.get_topics_needing_review(user_key, as_of)]


# ========================================
# Daily Plan Endpoints
# ========================================


@router.get("/plan/{plan_date}", summary="Get daily plan")
def get_daily_plan(
    plan_date: str,
    user_key: str = Depends(get_user_key),
    service: StudyPlannerService = Depends(get_planner_service),
) -> dict[str, Any]:
    plan = service.get_daily_plan(user_key, _check_date_format(plan_date))
    if plan is None:
        raise HTTPException(status_code=404, detail="Plan not found for this date")
    return plan.to_dict()


@router.post("/plan", status_code=status.HTTP_201_CREATED, summary="Store daily plan")
def store_daily_plan(
    body: dict[str, Any] = Body(...),
    user_key: str = Depends(get_user_key),
    service: StudyPlannerService = Depends(get_planner_service),
) -> dict[str, Any]:
    """Store an already generated plan. Body: date, reasoning, tasks."""
    if not body.get("date") or "reasoning" not in body or body.get("tasks") is None:
        raise HTTPException(status_code=400, detail="date, reasoning, and tasks are required")
    plan_date = _check_date_format(str(body["date"]))
    return service.generate_daily_plan(user_key, plan_date, body["reasoning"], body["tasks"]).to_dict()


@router.post("/plan/generate", status_code=status.HTTP_201_CREATED, summary="Generate daily plan")
def generate_daily_plan(
    body: dict[str, Any] | None = Body(None),
    user_key: str = Depends(get_user_key),
    service: StudyPlannerService = Depends(get_planner_service),
) -> dict[str, Any]:
    """Generate and store a plan. Body: optional date (defaults to today)."""
    plan_date = (body or {}).get("date")
    if plan_date is not None:
        plan_date = _check_date_format(str(plan_date))
    return service.plan_for_date(user_key, plan_date).to_dict()


@router.delete("/plan/{plan_date}", summary="Delete daily plan")
def delete_daily_plan(
    plan_date: str,
    user_key: str = Depends(get_user_key),
    service: StudyPlannerService = Depends(get_planner_service),
) -> dict[str, bool]:
    """Delete a plan. Deleting a date without a plan succeeds."""
    deleted = service.delete_daily_plan(user_key, _check_date_format(plan_date))
    return {"success": True, "deleted": deleted}
