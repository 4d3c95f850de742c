"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests.
"""
import sys
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from src.db.database import create_db_engine  # noqa: E402
from src.planner import StateStore, StudyPlannerService  # noqa: E402

# Fixed "now" for every service built by the fixtures below
NOW = datetime(2026, 3, 10, 9, 0, tzinfo=UTC)


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests (HTTP layer, threads)")
    config.addinivalue_line("markers", "smoke: Smoke tests for CLI commands")
    config.addinivalue_line("markers", "slow: Slow tests")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        # Mark based on test file location
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
        elif "smoke" in str(item.fspath):
            item.add_marker(pytest.mark.smoke)


@pytest.fixture(scope="session")
def project_root():
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def now():
    """The fixed clock value used by the service fixture."""
    return NOW


@pytest.fixture
def engine(tmp_path):
    """SQLite engine on a throwaway file."""
    engine = create_db_engine(f"sqlite:///{tmp_path / 'state.db'}")
    yield engine
    engine.dispose()


@pytest.fixture
def store(engine):
    """State store on the throwaway database."""
    return StateStore(engine)


@pytest.fixture
def service(store):
    """Planner service with a fixed clock and no plan generator."""
    return StudyPlannerService(store=store, clock=lambda: NOW)


@pytest.fixture
def goal_payload():
    """Provide a sample goal payload (camelCase, as sent over HTTP)."""
    return {
        "title": "Calc Final",
        "type": "exam",
        "deadline": (NOW + timedelta(days=10)).isoformat(),
        "priority": 5,
        "topics": ["Limits"],
    }


@pytest.fixture
def seeded(service, goal_payload):
    """A user with one goal ("Calc Final") holding one topic ("Limits")."""
    goal = service.add_goal("alice", goal_payload)
    return goal, goal.topics[0]
