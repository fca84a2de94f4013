"""
Shared test fixtures for the quality engine.
"""

import os
import tempfile

import pytest

# Set test environment BEFORE importing modules
os.environ["ENVIRONMENT"] = "test"
os.environ["LOG_DIR"] = tempfile.mkdtemp(prefix="quality_engine_logs_")

from quality_engine.core.database import build_engine, build_session_factory
from quality_engine.services.evaluation.rubric import Rubric, default_rubric
from quality_engine.services.review_queue import ManualReviewQueue
from quality_engine.services.review_store import (
    InMemoryReviewStore,
    RedisReviewStore,
    SqlReviewStore,
)
from tests.helpers import FakeRedis

# =============================================================================
# PYTEST CONFIGURATION
# =============================================================================


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests (fast, isolated)")
    config.addinivalue_line("markers", "slow: Slow running tests")


# =============================================================================
# RUBRIC FIXTURES
# =============================================================================


@pytest.fixture
def rubric() -> Rubric:
    return default_rubric()


@pytest.fixture
def equal_rubric() -> Rubric:
    """Five equal-weight (0.2) criteria."""
    return Rubric.from_weight_classes(
        "equal-v1",
        [
            {"id": f"c{i}", "description": f"criterion {i}", "weight_class": "medium"}
            for i in range(1, 6)
        ],
    )


# =============================================================================
# STORAGE FIXTURES
# =============================================================================


@pytest.fixture
def sql_session_factory():
    """In-memory SQLite shared across sessions."""
    engine = build_engine("sqlite://")
    yield build_session_factory(engine)
    engine.dispose()


@pytest.fixture(params=["memory", "sql", "redis"])
def review_store(request, sql_session_factory):
    if request.param == "memory":
        return InMemoryReviewStore()
    if request.param == "sql":
        return SqlReviewStore(sql_session_factory)
    return RedisReviewStore(FakeRedis())


@pytest.fixture
def review_queue() -> ManualReviewQueue:
    return ManualReviewQueue(InMemoryReviewStore())
