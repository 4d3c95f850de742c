"""
HTTP client for a remote plan generator.

Posts the user's state snapshot and the target date to ``<api_url>/plan`` and
expects ``{"reasoning": str, "tasks": [...]}`` back. Instances are callables
usable as the service's plan generator.
"""

from __future__ import annotations

import time
from typing import Any

import httpx
from loguru import logger

from .errors import PlanGenerationError
from .models import UserState
from .plan_generation import PlanProposal


class RemotePlanGenerator:
    """HTTP client for the plan generation service."""

    def __init__(
        self,
        api_url: str,
        timeout_ms: int = 30000,
        retry_attempts: int = 3,
        backoff_seconds: float = 1.0,
        transport: httpx.BaseTransport | None = None,
    ):
        """
        Initialize the plan generator client.

        Args:
            api_url: Base URL for the plan generation API
            timeout_ms: Request timeout in milliseconds
            retry_attempts: Number of attempts before giving up
            backoff_seconds: Base delay for exponential backoff between attempts
            transport: Optional httpx transport (used by tests)
        """
        self.api_url = api_url.rstrip("/")
        self.timeout_seconds = timeout_ms / 1000.0
        self.retry_attempts = max(1, retry_attempts)
        self.backoff_seconds = backoff_seconds
        self.client = httpx.Client(
            timeout=httpx.Timeout(self.timeout_seconds),
            follow_redirects=True,
            transport=transport,
        )

    def close(self) -> None:
        """Close the HTTP client."""
        self.client.close()

    def __enter__(self) -> RemotePlanGenerator:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _wait(self, attempt: int) -> None:
        if attempt < self.retry_attempts - 1 and self.backoff_seconds > 0:
            time.sleep(self.backoff_seconds * 2**attempt)

    def __call__(self, state: UserState, target_date: str) -> PlanProposal:
        """
        Request a plan for ``target_date`` with retry logic.

        Raises:
            PlanGenerationError: If every attempt failed or the response had no task list
        """
        payload = {"state": state.to_dict(), "date": target_date}
        last_error: Exception | None = None

        for attempt in range(self.retry_attempts):
            try:
                response = self.client.post(f"{self.api_url}/plan", json=payload)
                response.raise_for_status()
                data = response.json()
                if not isinstance(data, dict) or not isinstance(data.get("tasks"), list):
                    raise PlanGenerationError("Plan generator response has no task list")
                return PlanProposal(reasoning=data.get("reasoning") or "", tasks=data["tasks"])

            except httpx.HTTPStatusError as e:
                last_error = e
                if e.response.status_code < 500:
                    # Don't retry on 4xx client errors
                    logger.error(f"Plan generator client error: {e.response.status_code}")
                    break
                logger.warning(
                    f"Plan generator server error {e.response.status_code} on attempt "
                    f"{attempt + 1}/{self.retry_attempts}"
                )
                self._wait(attempt)

            except (httpx.RequestError, ValueError, PlanGenerationError) as e:
                last_error = e
                logger.warning(
                    f"Plan generator request failed on attempt {attempt + 1}/{self.retry_attempts}: {e}"
                )
                self._wait(attempt)

        logger.error(f"Plan generation failed after {self.retry_attempts} attempts: {last_error}")
        raise PlanGenerationError(f"Plan generation failed: {last_error}")

    def health_check(self) -> bool:
        """
        Check if the plan generation API is available.

        Returns:
            True if API is healthy, False otherwise
        """
        try:
            response = self.client.get(f"{self.api_url}/health")
            return response.status_code == 200
        except httpx.HTTPError as e:
            logger.debug(f"Plan generator health check failed: {e}")
            return False
