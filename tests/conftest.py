"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests.
"""
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from src.review.card_scheduler import CardScheduler
from src.review.config import SchedulerConfig
from src.review.engine import ReviewEngine
from src.review.memory_model import MemoryModel
from src.review.models import (
    Card,
    LearningState,
    MistakeEntry,
    MistakeRecord,
    MistakeType,
)
from src.review.priority_queue import PriorityQueue
from src.review.quality_scorer import QualityScorer
from src.review.state_store import InMemoryStore, StateStore


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "smoke: Smoke tests for CLI commands")
    config.addinivalue_line("markers", "slow: Slow tests")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "smoke" in str(item.fspath):
            item.add_marker(pytest.mark.smoke)


@pytest.fixture(scope="session")
def project_root():
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def now():
    """A fixed review instant."""
    return datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def config():
    return SchedulerConfig()


@pytest.fixture
def scorer():
    return QualityScorer()


@pytest.fixture
def memory(config):
    return MemoryModel(config)


@pytest.fixture
def scheduler(config, memory):
    return CardScheduler(config, memory)


@pytest.fixture
def queue(config, memory):
    return PriorityQueue(config, memory)


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def sqlite_store(tmp_path):
    state = StateStore(tmp_path / "state.db")
    yield state
    state.close()


@pytest.fixture
def engine(store, config):
    return ReviewEngine(store, config)


@pytest.fixture
def make_card(now):
    """Build a card with sensible defaults; keyword overrides win."""

    def _make(item_id="s1", user_id="u1", **overrides):
        fields = {
            "user_id": user_id,
            "item_id": item_id,
            "next_review": now,
            "created_at": now - timedelta(days=30),
        }
        fields.update(overrides)
        return Card(**fields)

    return _make


@pytest.fixture
def review_card(make_card, now):
    """A graduated REVIEW card, due now."""

    def _make(item_id="s1", **overrides):
        fields = {
            "learning_state": LearningState.REVIEW,
            "graduated": True,
            "ease_factor": 2.5,
            "interval": 6.0,
            "repetition_count": 3,
            "total_reviews": 4,
            "last_reviewed": now - timedelta(days=6),
            "next_review": now,
        }
        fields.update(overrides)
        return make_card(item_id, **fields)

    return _make


@pytest.fixture
def make_mistake(now):
    """Build a mistake record whose last mistake was `days_ago` days before now."""

    def _make(
        sentence_id="m1",
        user_id="u1",
        incorrect_count=1,
        days_ago=1,
        mistake_type=MistakeType.STRUCTURE,
        entries=1,
    ):
        when = now - timedelta(days=days_ago)
        return MistakeRecord(
            sentence_id=sentence_id,
            user_id=user_id,
            incorrect_count=incorrect_count,
            last_incorrect_date=when,
            recent_mistakes=[
                MistakeEntry(when, mistake_type, "wrong", "right") for _ in range(entries)
            ],
        )

    return _make
