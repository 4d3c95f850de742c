"""
Unit tests for the remote plan generator client.
"""

import json

import httpx
import pytest

from src.planner.errors import ExternalGenerationFailure, PlanGenerationError
from src.planner.models import UserState
from src.planner.plan_client import RemotePlanGenerator
from src.planner.plan_generation import PlanProposal


@pytest.fixture
def sample_plan():
    """Sample generator response."""
    return {
        "reasoning": "Subnetting is overdue and the exam is close.",
        "tasks": [
            {"goalId": "g1", "topicId": "t1", "type": "review", "estimatedMinutes": 45, "priority": 5},
        ],
    }


def make_client(handler, retry_attempts=3):
    return RemotePlanGenerator(
        api_url="http://planner-ai.local/",
        timeout_ms=5000,
        retry_attempts=retry_attempts,
        backoff_seconds=0,
        transport=httpx.MockTransport(handler),
    )


class TestRemotePlanGenerator:
    """Tests for RemotePlanGenerator."""

    def test_posts_state_and_date(self, sample_plan):
        """State snapshot and date are sent to <url>/plan."""
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json=sample_plan)

        with make_client(handler) as client:
            proposal = client(UserState.empty("alice"), "2026-03-11")

        assert isinstance(proposal, PlanProposal)
        assert proposal.reasoning == sample_plan["reasoning"]
        assert proposal.tasks == sample_plan["tasks"]

        assert len(seen) == 1
        assert seen[0].method == "POST"
        assert str(seen[0].url) == "http://planner-ai.local/plan"
        body = json.loads(seen[0].content)
        assert body["date"] == "2026-03-11"
        assert body["state"]["userId"] == "alice"

    def test_retries_server_errors(self, sample_plan):
        """5xx responses are retried until one succeeds."""
        calls = 0

        def handler(request):
            nonlocal calls
            calls += 1
            if calls < 3:
                return httpx.Response(503)
            return httpx.Response(200, json=sample_plan)

        client = make_client(handler)
        proposal = client(UserState.empty("alice"), "2026-03-11")

        assert calls == 3
        assert len(proposal.tasks) == 1

    def test_retries_connection_errors(self, sample_plan):
        calls = 0

        def handler(request):
            nonlocal calls
            calls += 1
            if calls == 1:
                raise httpx.ConnectError("refused", request=request)
            return httpx.Response(200, json=sample_plan)

        proposal = make_client(handler)(UserState.empty("alice"), "2026-03-11")

        assert calls == 2
        assert proposal.reasoning

    def test_no_retry_on_client_error(self):
        """4xx responses fail immediately."""
        calls = 0

        def handler(request):
            nonlocal calls
            calls += 1
            return httpx.Response(422, json={"detail": "bad state"})

        with pytest.raises(PlanGenerationError):
            make_client(handler)(UserState.empty("alice"), "2026-03-11")
        assert calls == 1

    def test_gives_up_after_retry_attempts(self):
        calls = 0

        def handler(request):
            nonlocal calls
            calls += 1
            return httpx.Response(500)

        with pytest.raises(ExternalGenerationFailure):
            make_client(handler, retry_attempts=2)(UserState.empty("alice"), "2026-03-11")
        assert calls == 2

    @pytest.mark.parametrize("body", [b"not json", b'{"reasoning": "no tasks"}', b"[]"])
    def test_rejects_malformed_bodies(self, body):
        client = make_client(lambda request: httpx.Response(200, content=body), retry_attempts=1)
        with pytest.raises(PlanGenerationError):
            client(UserState.empty("alice"), "2026-03-11")

    def test_health_check(self):
        healthy = make_client(lambda request: httpx.Response(200, json={"status": "ok"}))
        assert healthy.health_check() is True

        def refuse(request):
            raise httpx.ConnectError("refused", request=request)

        assert make_client(refuse).health_check() is False
