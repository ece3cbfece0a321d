"""
Spaced-repetition review engine.

Components, leaves first:
- QualityScorer: answer event -> 0-5 quality grade
- MemoryModel: exponential forgetting curve per card
- CardScheduler: NEW/LEARNING/REVIEW/RELEARNING state machine
- PriorityQueue: mistake-weighted session composer

ReviewEngine ties them to a ReviewStore.
"""

from src.review.card_scheduler import CardScheduler, ScheduleResult
from src.review.config import SchedulerConfig, load_scheduler_config
from src.review.engine import (
    BatchResult,
    ReviewEngine,
    ReviewEvent,
    ReviewOutcome,
    SessionQuery,
)
from src.review.errors import (
    ConfigurationError,
    InsufficientDataWarning,
    ReviewEngineError,
    ValidationError,
)
from src.review.memory_model import MemoryModel, RetentionForecast, snap_to_study_hours
from src.review.models import (
    Card,
    ItemType,
    LearningState,
    MistakeEntry,
    MistakeRecord,
    MistakeType,
    ReviewSession,
    SessionType,
    SortBy,
    ValidationResult,
    new_card,
    validate_card,
    validate_mistake_record,
)
from src.review.priority_queue import (
    MistakeStatistics,
    PriorityQueue,
    append_mistake,
    mistake_statistics,
    mistake_weight,
)
from src.review.quality_scorer import (
    DetailedScoreAnalysis,
    QualityCategory,
    QualityResult,
    QualityScorer,
)
from src.review.state_store import InMemoryStore, StateStore

__all__ = [
    # Components
    "QualityScorer",
    "MemoryModel",
    "CardScheduler",
    "PriorityQueue",
    "ReviewEngine",
    # Config
    "SchedulerConfig",
    "load_scheduler_config",
    # Records
    "Card",
    "MistakeEntry",
    "MistakeRecord",
    "ReviewSession",
    "ItemType",
    "LearningState",
    "MistakeType",
    "SessionType",
    "SortBy",
    "ValidationResult",
    "new_card",
    "validate_card",
    "validate_mistake_record",
    # Results
    "QualityResult",
    "QualityCategory",
    "DetailedScoreAnalysis",
    "RetentionForecast",
    "ScheduleResult",
    "ReviewEvent",
    "ReviewOutcome",
    "SessionQuery",
    "BatchResult",
    "MistakeStatistics",
    # Mistake log
    "append_mistake",
    "mistake_weight",
    "snap_to_study_hours",
    "mistake_statistics",
    # Stores
    "InMemoryStore",
    "StateStore",
    # Errors
    "ReviewEngineError",
    "ValidationError",
    "ConfigurationError",
    "InsufficientDataWarning",
]
