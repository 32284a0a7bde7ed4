"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests.
"""
import copy
import sys
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from cql_clinic.config import Settings  # noqa: E402


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "smoke: Smoke tests for CLI commands")
    config.addinivalue_line("markers", "slow: Slow tests")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        # Mark based on test file location
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "smoke" in str(item.fspath):
            item.add_marker(pytest.mark.smoke)


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_exercise(exercise_id: str, **overrides):
    """Build a minimal valid raw exercise record."""
    record = {
        "id": exercise_id,
        "version": "1.0.0",
        "title": f"Exercise {exercise_id}",
        "description": f"Description of {exercise_id}",
        "difficulty": "beginner",
        "estimatedTime": 10,
        "prerequisites": [],
        "concepts": [],
        "tags": [],
        "type": "practice",
        "content": {"instructions": f"Solve {exercise_id}"},
    }
    record.update(overrides)
    return record


@pytest.fixture(scope="session")
def project_root():
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def exercise_factory():
    """Provide the raw exercise record builder."""
    return make_exercise


@pytest.fixture
def fake_clock():
    """Provide a controllable clock for TTL tests."""
    return FakeClock()


@pytest.fixture
def settings():
    """Settings isolated from the environment and any .env file."""
    return Settings(_env_file=None, exercise_source="bundled")


@pytest.fixture
def sample_exercises():
    """Provide a small prerequisite chain: basics -> literals -> queries."""
    records = [
        make_exercise(
            "basics",
            title="CQL Basics",
            description="Whitespace and comments",
            concepts=["syntax", "comments"],
            tags=["fundamentals"],
            type="tutorial",
            estimatedTime=10,
            metadata={"qualityScore": 95, "created": "2024-01-01T00:00:00Z"},
        ),
        make_exercise(
            "literals",
            title="Literals",
            description="Integer and String literals",
            prerequisites=["basics"],
            concepts=["literals", "types"],
            tags=["fundamentals", "types"],
            estimatedTime=20,
            metadata={"qualityScore": 80, "created": "2024-02-01T00:00:00Z"},
        ),
        make_exercise(
            "queries",
            title="Queries",
            description="Retrieve and filter clinical data",
            difficulty="intermediate",
            prerequisites=["literals"],
            concepts=["queries", "retrieve"],
            tags=["clinical"],
            type="challenge",
            estimatedTime=30,
            metadata={"qualityScore": 60, "created": "2024-03-01T00:00:00Z"},
        ),
    ]
    return copy.deepcopy(records)
